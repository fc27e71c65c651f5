"""
SACCO Ledger API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import (
    AuthorizationError,
    BusyError,
    ConcurrentModificationError,
    GuarantorPendingError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    SaccoError,
)
from ..logging_config import get_logger
from ..system import SaccoSystem
from .deps import get_system
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .loans import router as loans_router
from .admin import router as admin_router


logger = get_logger("sacco.api")

# Most specific first; the first isinstance match wins
ERROR_STATUS_CODES = (
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (GuarantorPendingError, 409),
    (InsufficientFundsError, 409),
    (InvalidStateError, 409),
    (BusyError, 503),
    (ConcurrentModificationError, 503),
    (SaccoError, 400),
)


def status_code_for(error: Exception) -> int:
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return 400


async def sacco_error_handler(request: Request, exc: SaccoError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=code,
        content={"detail": str(exc), "error": type(exc).__name__}
    )


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    # Unknown enum values in query strings and unparsable amounts
    return JSONResponse(status_code=400, content={"detail": str(exc), "error": "ValueError"})


def create_app(system: Optional[SaccoSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="SACCO Ledger API",
        description="Savings, loan and welfare ledger for a savings and credit cooperative",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SaccoError, sacco_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    if system is not None:
        app.dependency_overrides[get_system] = lambda: system

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "sacco_ledger_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "SACCO Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "transactions": "/transactions",
                "loans": "/loans",
                "admin": "/admin",
            }
        }

    return app

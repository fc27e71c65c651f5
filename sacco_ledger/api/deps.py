"""
Request dependencies: the system instance and the calling identity.

Authentication happens upstream; the gateway forwards the authenticated
identity in X-Caller-* headers and the engine trusts them.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ..identity import Caller, Role
from ..system import SaccoSystem, get_sacco_system


def get_system() -> SaccoSystem:
    return get_sacco_system()


def get_caller(
    x_caller_id: Optional[str] = Header(None),
    x_caller_role: str = Header("member"),
    x_caller_accounts: str = Header("")
) -> Caller:
    if not x_caller_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Caller-Id header")
    try:
        role = Role(x_caller_role.strip().lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Unknown caller role: {x_caller_role}")
    account_ids = frozenset(a.strip() for a in x_caller_accounts.split(",") if a.strip())
    return Caller(user_id=x_caller_id, role=role, account_ids=account_ids)


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    caller.require_admin("perform administrative actions")
    return caller

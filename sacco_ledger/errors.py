"""
Error Types Module

Exceptions raised by the ledger engine. Input-shaped errors also subclass
ValueError so callers that catch ValueError keep working.
"""

from typing import Optional


class SaccoError(Exception):
    """Base class for all ledger engine errors"""


class ValidationError(SaccoError, ValueError):
    """Non-positive amount, missing field or otherwise malformed request"""


class NotFoundError(SaccoError, ValueError):
    """Referenced account, loan or transaction does not exist"""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} {entity_id} not found")


class InvalidStateError(SaccoError, ValueError):
    """Operation not allowed from the entity's current status"""


class InsufficientFundsError(SaccoError, ValueError):
    """Withdrawal or repayment exceeds the current account balance"""

    def __init__(self, account_id: str, requested: str, available: str):
        self.account_id = account_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds in account {account_id}: "
            f"requested {requested}, available {available}"
        )


class GuarantorPendingError(SaccoError, ValueError):
    """Loan cannot be approved until its guarantor has approved"""

    def __init__(self, loan_id: str, guarantor_status: Optional[str]):
        self.loan_id = loan_id
        self.guarantor_status = guarantor_status
        super().__init__(
            f"Loan {loan_id} guarantor has not approved "
            f"(guarantor status: {guarantor_status or 'none'})"
        )


class ConcurrentModificationError(SaccoError):
    """Row version changed between read and write"""


class BusyError(SaccoError):
    """Retries on a contended row were exhausted"""


class AuthorizationError(SaccoError):
    """Caller is not allowed to perform the operation"""

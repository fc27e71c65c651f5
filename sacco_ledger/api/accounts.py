"""
Account endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status

from .deps import get_caller, get_system, require_admin
from .schemas import (
    CreateAccountRequest,
    CreateSubAccountRequest,
    RecordSavingsRequest,
    account_to_json,
    eligibility_to_json,
    loan_to_json,
    reminder_to_json,
    savings_to_json,
    transaction_to_json,
    welfare_to_json,
)
from ..identity import Caller
from ..system import SaccoSystem


router = APIRouter()


def _load_account(system: SaccoSystem, caller: Caller, account_id: str, action: str = "view"):
    account = system.account_manager.get_account(account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    caller.require_account_access(account_id, action)
    return account


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_account(
    request: CreateAccountRequest,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    """Open a main account for a member"""
    account = system.account_manager.create_account(
        owner_id=request.owner_id,
        holder_name=request.holder_name,
        holder_email=request.holder_email,
        account_number=request.account_number,
        created_by=caller.user_id
    )
    return account_to_json(account)


@router.get("")
async def list_accounts(
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    return {"accounts": [account_to_json(a) for a in system.account_manager.list_accounts()]}


@router.get("/{account_id}")
async def get_account(
    account_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    return account_to_json(_load_account(system, caller, account_id))


@router.post("/{account_id}/sub-accounts", status_code=status.HTTP_201_CREATED)
async def create_sub_account(
    account_id: str,
    request: CreateSubAccountRequest,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    """Open a dependent account under the member's main account"""
    _load_account(system, caller, account_id, "open sub accounts")
    account = system.account_manager.create_sub_account(
        parent_account_id=account_id,
        holder_name=request.holder_name,
        account_number=request.account_number,
        created_by=caller.user_id
    )
    return account_to_json(account)


@router.get("/{account_id}/sub-accounts")
async def list_sub_accounts(
    account_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    return {"accounts": [account_to_json(a) for a in system.account_manager.get_sub_accounts(account_id)]}


@router.get("/{account_id}/transactions")
async def list_account_transactions(
    account_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    transactions = system.transactions.list_transactions(account_id=account_id)
    return {"transactions": [transaction_to_json(t) for t in transactions]}


@router.get("/{account_id}/loans")
async def list_account_loans(
    account_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    return {"loans": [loan_to_json(loan) for loan in system.loan_manager.list_loans(account_id=account_id)]}


@router.post("/{account_id}/savings", status_code=status.HTTP_201_CREATED)
async def record_savings(
    account_id: str,
    request: RecordSavingsRequest,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    record = system.savings_manager.record_weekly_savings(
        account_id=account_id,
        amount=request.amount,
        week_of=request.week_of,
        recorded_by=caller.user_id
    )
    return savings_to_json(record)


@router.get("/{account_id}/savings")
async def list_savings(
    account_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    return {"savings": [savings_to_json(r) for r in system.savings_manager.get_account_savings(account_id)]}


@router.get("/{account_id}/eligibility")
async def check_eligibility(
    account_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    return eligibility_to_json(system.eligibility.check_eligibility(account_id))


@router.get("/{account_id}/guarantor-candidates")
async def guarantor_candidates(
    account_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    candidates = system.eligibility.guarantor_candidates(account_id)
    # Members only see who they can ask, not balances
    return {
        "candidates": [
            {"id": a.id, "account_number": a.account_number, "holder_name": a.holder_name}
            for a in candidates
        ]
    }


@router.get("/{account_id}/guarantor-requests")
async def guarantor_requests(
    account_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    return {"loans": [loan_to_json(loan) for loan in system.loan_manager.get_guarantor_requests(account_id)]}


@router.get("/{account_id}/welfare")
async def list_welfare(
    account_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    entries = system.welfare_manager.list_entries(account_id)
    return {
        "entries": [welfare_to_json(e) for e in entries],
        "total": str(system.welfare_manager.total_welfare(account_id).amount)
    }


@router.get("/{account_id}/reminders")
async def list_reminders(
    account_id: str,
    unread_only: bool = False,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    reminders = system.reminder_manager.list_reminders(account_id=account_id, unread_only=unread_only)
    return {"reminders": [reminder_to_json(r) for r in reminders]}


@router.post("/{account_id}/reminders/{reminder_id}/read")
async def mark_reminder_read(
    account_id: str,
    reminder_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_account(system, caller, account_id)
    reminder = system.reminder_manager.get_reminder(reminder_id)
    if not reminder or reminder.account_id != account_id:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder_to_json(system.reminder_manager.mark_read(reminder_id))

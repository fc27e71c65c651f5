"""
Loan endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .deps import get_caller, get_system, require_admin
from .schemas import (
    ApplyLoanRequest,
    AssignGuarantorRequest,
    EditLoanRequest,
    GuarantorResponseRequest,
    loan_to_json,
    schedule_to_json,
    split_to_json,
    transaction_to_json,
)
from ..identity import Caller
from ..system import SaccoSystem


router = APIRouter()


def _load_loan(system: SaccoSystem, caller: Caller, loan_id: str):
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")
    # The guarantor may look at the loan they are asked to back
    if not (caller.is_admin or caller.owns_account(loan.account_id)
            or (loan.guarantor_account_id and caller.owns_account(loan.guarantor_account_id))):
        caller.require_account_access(loan.account_id, "view loans")
    return loan


@router.post("", status_code=status.HTTP_201_CREATED)
async def apply_for_loan(
    request: ApplyLoanRequest,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    caller.require_account_access(request.account_id, "apply for loans")
    loan = system.loan_manager.apply(
        account_id=request.account_id,
        amount=request.amount,
        repayment_months=request.repayment_months,
        guarantor_account_id=request.guarantor_account_id,
        applied_by=caller.user_id
    )
    return loan_to_json(loan)


@router.get("")
async def list_loans(
    account_id: Optional[str] = None,
    loan_status: Optional[str] = None,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    loans = system.loan_manager.list_loans(account_id=account_id, status=loan_status)
    return {"loans": [loan_to_json(loan) for loan in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    return loan_to_json(_load_loan(system, caller, loan_id))


@router.post("/{loan_id}/guarantor")
async def assign_guarantor(
    loan_id: str,
    request: AssignGuarantorRequest,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    loan = _load_loan(system, caller, loan_id)
    caller.require_account_access(loan.account_id, "assign guarantors")
    loan = system.loan_manager.assign_guarantor(loan_id, request.guarantor_account_id, assigned_by=caller.user_id)
    return loan_to_json(loan)


@router.post("/{loan_id}/guarantor/respond")
async def guarantor_respond(
    loan_id: str,
    request: GuarantorResponseRequest,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    loan = system.loan_manager.guarantor_respond(
        loan_id, request.guarantor_account_id, request.decision, caller=caller
    )
    return loan_to_json(loan)


@router.post("/{loan_id}/approve")
async def approve_loan(
    loan_id: str,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    return loan_to_json(system.loan_manager.approve(loan_id, caller.user_id))


@router.post("/{loan_id}/reject")
async def reject_loan(
    loan_id: str,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    return loan_to_json(system.loan_manager.reject(loan_id, caller.user_id))


@router.post("/{loan_id}/disburse")
async def disburse_loan(
    loan_id: str,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    """Mark the loan disbursed; returns the pending disbursement transaction"""
    transaction = system.loan_manager.disburse(loan_id, disbursed_by=caller.user_id)
    return {
        "loan": loan_to_json(system.loan_manager.get_loan(loan_id)),
        "transaction": transaction_to_json(transaction)
    }


@router.patch("/{loan_id}")
async def edit_loan(
    loan_id: str,
    request: EditLoanRequest,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    loan = system.loan_manager.edit_details(
        loan_id,
        repayment_months=request.repayment_months,
        disbursed_at=request.disbursed_at,
        guarantor_account_id=request.guarantor_account_id,
        editor_id=caller.user_id
    )
    return loan_to_json(loan)


@router.get("/{loan_id}/schedule")
async def get_schedule(
    loan_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_loan(system, caller, loan_id)
    return schedule_to_json(system.loan_manager.get_schedule(loan_id))


@router.get("/{loan_id}/breakdown")
async def get_repayment_breakdown(
    loan_id: str,
    amount: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    _load_loan(system, caller, loan_id)
    return split_to_json(system.loan_manager.get_repayment_breakdown(loan_id, amount))

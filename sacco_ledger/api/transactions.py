"""
Transaction endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .deps import get_caller, get_system, require_admin
from .schemas import CreateTransactionRequest, ReceiptNumberRequest, transaction_to_json
from ..identity import Caller
from ..system import SaccoSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    request: CreateTransactionRequest,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    """Record a pending transaction for admin approval"""
    caller.require_account_access(request.account_id, "record transactions")
    transaction = system.transactions.create(
        account_id=request.account_id,
        transaction_type=request.transaction_type,
        amount=request.amount,
        description=request.description,
        loan_id=request.loan_id,
        created_by=caller.user_id
    )
    return transaction_to_json(transaction)


@router.get("")
async def list_transactions(
    account_id: Optional[str] = None,
    status: Optional[str] = None,
    transaction_type: Optional[str] = None,
    loan_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    transactions = system.transactions.list_transactions(
        account_id=account_id,
        status=status,
        transaction_type=transaction_type,
        loan_id=loan_id,
        start=start,
        end=end
    )
    return {"transactions": [transaction_to_json(t) for t in transactions]}


@router.get("/pending")
async def list_pending(
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    return {"transactions": [transaction_to_json(t) for t in system.transactions.get_pending_transactions()]}


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    caller: Caller = Depends(get_caller),
    system: SaccoSystem = Depends(get_system)
):
    transaction = system.transactions.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    caller.require_account_access(transaction.account_id, "view transactions")
    return transaction_to_json(transaction)


@router.post("/{transaction_id}/approve")
async def approve_transaction(
    transaction_id: str,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    return transaction_to_json(system.transactions.approve(transaction_id, caller.user_id))


@router.post("/{transaction_id}/reject")
async def reject_transaction(
    transaction_id: str,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    return transaction_to_json(system.transactions.reject(transaction_id, caller.user_id))


@router.put("/{transaction_id}/receipt")
async def set_receipt_number(
    transaction_id: str,
    request: ReceiptNumberRequest,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    transaction = system.transactions.set_receipt_number(
        transaction_id, request.receipt_number, set_by=caller.user_id
    )
    return transaction_to_json(transaction)


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(
    transaction_id: str,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    """Delete a transaction, reversing it first if it was approved"""
    system.transactions.delete(transaction_id, deleted_by=caller.user_id)

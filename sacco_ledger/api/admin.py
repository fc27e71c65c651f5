"""
Administrative endpoints: batch jobs, manual welfare charges, reminders
and audit verification
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .deps import get_system, require_admin
from .schemas import (
    BatchRunRequest,
    BulkReminderRequest,
    CreateReminderRequest,
    WelfareChargeRequest,
    reminder_to_json,
    welfare_to_json,
)
from ..identity import Caller
from ..system import SaccoSystem


router = APIRouter()


@router.post("/batch/welfare")
async def run_weekly_welfare(
    request: Optional[BatchRunRequest] = None,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    as_of = request.as_of if request else None
    result = system.batch_jobs.weekly_welfare_deduction(run_by=caller, as_of=as_of)
    return result.to_dict()


@router.post("/batch/overdue-interest")
async def run_overdue_interest(
    request: Optional[BatchRunRequest] = None,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    as_of = request.as_of if request else None
    result = system.batch_jobs.apply_overdue_interest(run_by=caller, as_of=as_of)
    return result.to_dict()


@router.post("/welfare/charge", status_code=status.HTTP_201_CREATED)
async def charge_welfare(
    request: WelfareChargeRequest,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    entry = system.welfare_manager.charge(
        account_id=request.account_id,
        amount=request.amount,
        week_date=request.week_date,
        description=request.description,
        charged_by=caller.user_id
    )
    return welfare_to_json(entry)


@router.post("/reminders", status_code=status.HTTP_201_CREATED)
async def create_reminder(
    request: CreateReminderRequest,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    reminder = system.reminder_manager.create_reminder(
        account_id=request.account_id,
        reminder_type=request.reminder_type,
        title=request.title,
        message=request.message,
        due_date=request.due_date,
        created_by=caller.user_id
    )
    return reminder_to_json(reminder)


@router.post("/reminders/savings", status_code=status.HTTP_201_CREATED)
async def create_savings_reminders(
    request: Optional[BulkReminderRequest] = None,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    reminders = system.reminder_manager.create_savings_reminders(
        created_by=caller.user_id, due_date=request.due_date if request else None
    )
    return {"created": len(reminders)}


@router.post("/reminders/loans", status_code=status.HTTP_201_CREATED)
async def create_loan_reminders(
    request: Optional[BulkReminderRequest] = None,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    reminders = system.reminder_manager.create_loan_reminders(
        created_by=caller.user_id, due_date=request.due_date if request else None
    )
    return {"created": len(reminders)}


@router.post("/reminders/{reminder_id}/email-sent")
async def mark_reminder_email_sent(
    reminder_id: str,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    return reminder_to_json(system.reminder_manager.mark_email_sent(reminder_id))


@router.delete("/reminders/{reminder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reminder(
    reminder_id: str,
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    system.reminder_manager.delete_reminder(reminder_id)


@router.get("/audit/verify")
async def verify_audit_trail(
    caller: Caller = Depends(require_admin),
    system: SaccoSystem = Depends(get_system)
):
    return system.audit_trail.verify_integrity()

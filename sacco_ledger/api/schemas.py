"""
Pydantic schemas for API requests, and response serializers
"""

from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..currency import Money
from ..interest import RepaymentSchedule, RepaymentSplit
from ..eligibility import EligibilityReport
from ..ledger import Account, Loan, SavingsRecord, Transaction, WelfareEntry
from ..reminders import Reminder


# Account schemas
class CreateAccountRequest(BaseModel):
    owner_id: str
    holder_name: str
    holder_email: Optional[str] = None
    account_number: Optional[str] = None


class CreateSubAccountRequest(BaseModel):
    holder_name: str
    account_number: Optional[str] = None


class RecordSavingsRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    week_of: Optional[date] = None


# Transaction schemas
class CreateTransactionRequest(BaseModel):
    account_id: str
    transaction_type: str = Field(..., description="deposit, withdrawal, loan_disbursement or loan_repayment")
    amount: str = Field(..., description="Decimal amount as string")
    description: str = ""
    loan_id: Optional[str] = None


class ReceiptNumberRequest(BaseModel):
    receipt_number: str


# Loan schemas
class ApplyLoanRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Decimal amount as string")
    repayment_months: Optional[int] = Field(None, ge=1)
    guarantor_account_id: Optional[str] = None


class AssignGuarantorRequest(BaseModel):
    guarantor_account_id: str


class GuarantorResponseRequest(BaseModel):
    guarantor_account_id: str
    decision: str = Field(..., description="approved or rejected")


class EditLoanRequest(BaseModel):
    repayment_months: Optional[int] = Field(None, ge=1)
    disbursed_at: Optional[datetime] = None
    guarantor_account_id: Optional[str] = None


# Admin schemas
class BatchRunRequest(BaseModel):
    as_of: Optional[datetime] = None


class WelfareChargeRequest(BaseModel):
    account_id: str
    amount: str
    week_date: Optional[date] = None
    description: str = "Welfare fee"


class CreateReminderRequest(BaseModel):
    account_id: str
    reminder_type: str = "general"
    title: str
    message: str
    due_date: Optional[date] = None


class BulkReminderRequest(BaseModel):
    due_date: Optional[date] = None


def money(value: Optional[Money]) -> Optional[str]:
    return str(value.amount) if value is not None else None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def account_to_json(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "account_number": account.account_number,
        "owner_id": account.owner_id,
        "account_type": account.account_type.value,
        "parent_account_id": account.parent_account_id,
        "holder_name": account.holder_name,
        "holder_email": account.holder_email,
        "balance": money(account.balance),
        "total_savings": money(account.total_savings),
        "currency": account.currency.code,
        "created_at": _iso(account.created_at)
    }


def transaction_to_json(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "account_id": transaction.account_id,
        "transaction_type": transaction.transaction_type.value,
        "amount": money(transaction.amount),
        "balance_after": money(transaction.balance_after),
        "description": transaction.description,
        "status": transaction.status.value,
        "loan_id": transaction.loan_id,
        "receipt_number": transaction.receipt_number,
        "approved_by": transaction.approved_by,
        "approved_at": _iso(transaction.approved_at),
        "created_at": _iso(transaction.created_at)
    }


def loan_to_json(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "account_id": loan.account_id,
        "amount": money(loan.amount),
        "interest_rate": str(loan.interest_rate),
        "repayment_months": loan.repayment_months,
        "total_amount": money(loan.total_amount),
        "outstanding_balance": money(loan.outstanding_balance),
        "status": loan.status.value,
        "disbursed_at": _iso(loan.disbursed_at),
        "guarantor_account_id": loan.guarantor_account_id,
        "guarantor_status": loan.guarantor_status.value if loan.guarantor_status else None,
        "approved_by": loan.approved_by,
        "approved_at": _iso(loan.approved_at),
        "max_loan_amount": money(loan.max_loan_amount),
        "created_at": _iso(loan.created_at)
    }


def savings_to_json(record: SavingsRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "account_id": record.account_id,
        "week_start": record.week_start.isoformat(),
        "week_end": record.week_end.isoformat(),
        "amount": money(record.amount)
    }


def welfare_to_json(entry: WelfareEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "account_id": entry.account_id,
        "amount": money(entry.amount),
        "week_date": entry.week_date.isoformat(),
        "description": entry.description,
        "transaction_id": entry.transaction_id
    }


def reminder_to_json(reminder: Reminder) -> Dict[str, Any]:
    return {
        "id": reminder.id,
        "account_id": reminder.account_id,
        "reminder_type": reminder.reminder_type.value,
        "title": reminder.title,
        "message": reminder.message,
        "due_date": _iso(reminder.due_date),
        "is_read": reminder.is_read,
        "is_email_sent": reminder.is_email_sent,
        "created_at": _iso(reminder.created_at)
    }


def eligibility_to_json(report: EligibilityReport) -> Dict[str, Any]:
    return {
        "is_eligible": report.is_eligible,
        "qualifying_weeks": report.qualifying_weeks,
        "required_weeks": report.required_weeks,
        "total_savings": money(report.total_savings),
        "max_loan_amount": money(report.max_loan_amount)
    }


def schedule_to_json(schedule: RepaymentSchedule) -> Dict[str, Any]:
    summary = schedule.summary
    return {
        "entries": [
            {
                "month": entry.month,
                "due_date": entry.due_date.isoformat(),
                "principal_portion": money(entry.principal_portion),
                "interest_portion": money(entry.interest_portion),
                "total_due": money(entry.total_due),
                "cumulative_interest": money(entry.cumulative_interest),
                "remaining_balance": money(entry.remaining_balance)
            }
            for entry in schedule.entries
        ],
        "summary": {
            "months_elapsed": summary.months_elapsed,
            "current_interest": money(summary.current_interest),
            "current_total": money(summary.current_total),
            "current_outstanding": money(summary.current_outstanding)
        }
    }


def split_to_json(split: RepaymentSplit) -> Dict[str, Any]:
    return {
        "principal_portion": money(split.principal_portion),
        "interest_portion": money(split.interest_portion)
    }

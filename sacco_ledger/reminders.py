"""
Reminders Module

In-app reminders addressed to member accounts: savings nudges, loan
repayment reminders and loan status updates. Delivery by email is external;
the engine only records whether it happened.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, date
from enum import Enum
from typing import Dict, List, Optional
import uuid

from .audit import AuditTrail, AuditEventType
from .errors import NotFoundError, ValidationError
from .events import EventDispatcher, create_reminder_event
from .ledger import Account, LedgerStore, Loan, LoanStatus
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


logger = get_logger("sacco.reminders")


class ReminderType(Enum):
    SAVINGS = "savings"
    LOAN_REPAYMENT = "loan_repayment"
    LOAN_STATUS = "loan_status"
    GENERAL = "general"


@dataclass
class Reminder(StorageRecord):
    account_id: str
    reminder_type: ReminderType
    title: str
    message: str
    due_date: Optional[date] = None
    created_by: Optional[str] = None
    is_read: bool = False
    is_email_sent: bool = False


def _member_name(account: Optional[Account]) -> str:
    if account and account.holder_name:
        return account.holder_name
    return "Member"


def loan_status_message(loan: Loan, member_name: str) -> Dict[str, str]:
    """Title and message announcing a loan's new status to its member"""
    amount = loan.amount.to_string()
    status = loan.status

    if status == LoanStatus.APPROVED or (status == LoanStatus.ACTIVE and loan.disbursed_at is None):
        return {
            "title": "Loan Application Approved",
            "message": f"Dear {member_name}, your loan application of {amount} has been approved. "
                       f"Please wait for disbursement."
        }
    if status.is_running:
        return {
            "title": "Loan Disbursed Successfully",
            "message": f"Dear {member_name}, your loan of {amount} has been disbursed to your account. "
                       f"Total amount to repay: {loan.outstanding_balance.to_string()}."
        }
    if status.is_paid:
        return {
            "title": "Loan Fully Repaid - Congratulations!",
            "message": f"Dear {member_name}, congratulations! Your loan of {amount} has been fully repaid. "
                       f"Thank you for your timely payments."
        }
    if status == LoanStatus.REJECTED:
        return {
            "title": "Loan Application Update",
            "message": f"Dear {member_name}, we regret to inform you that your loan application of {amount} "
                       f"could not be approved at this time. Please contact the office for more information."
        }
    return {
        "title": "Loan Status Update",
        "message": f"Dear {member_name}, your loan status has been updated to: {status.value}."
    }


class ReminderManager:
    """Creates and tracks member reminders"""

    def __init__(
        self,
        storage: StorageInterface,
        ledger: LedgerStore,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.ledger = ledger
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.reminders_table = "reminders"

    def create_reminder(
        self,
        account_id: str,
        reminder_type: ReminderType,
        title: str,
        message: str,
        due_date: Optional[date] = None,
        created_by: Optional[str] = None
    ) -> Reminder:
        """
        Create a reminder for one account

        Raises:
            ValidationError: Empty title or message
            NotFoundError: Account does not exist
        """
        if not title or not title.strip():
            raise ValidationError("Reminder title is required")
        if not message or not message.strip():
            raise ValidationError("Reminder message is required")
        self.ledger.require_account(account_id)

        now = datetime.now(timezone.utc)
        reminder = Reminder(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            reminder_type=ReminderType(reminder_type),
            title=title.strip(),
            message=message.strip(),
            due_date=due_date,
            created_by=created_by
        )
        self._save_reminder(reminder)

        self.audit_trail.log_event(
            event_type=AuditEventType.REMINDER_CREATED,
            entity_type="reminder",
            entity_id=reminder.id,
            metadata={
                "account_id": account_id,
                "reminder_type": reminder.reminder_type.value,
                "title": reminder.title
            },
            user_id=created_by
        )
        if self._event_dispatcher:
            self._event_dispatcher.publish(create_reminder_event(reminder))
        return reminder

    def create_savings_reminders(self, created_by: Optional[str] = None,
                                 due_date: Optional[date] = None) -> List[Reminder]:
        """Remind every account to make its weekly savings contribution"""
        reminders = []
        for account in self.ledger.list_accounts():
            reminders.append(self.create_reminder(
                account_id=account.id,
                reminder_type=ReminderType.SAVINGS,
                title="Weekly Savings Reminder",
                message=(
                    f"Dear {_member_name(account)}, this is a friendly reminder to make your weekly "
                    f"savings contribution. Consistent savings help you build financial security and "
                    f"maintain loan eligibility. Current balance: {account.balance.to_string()}."
                ),
                due_date=due_date,
                created_by=created_by
            ))
        log_action(logger, "info", "Savings reminders created", user_id=created_by,
                   action="create_savings_reminders", extra={"count": len(reminders)})
        return reminders

    def create_loan_reminders(self, created_by: Optional[str] = None,
                              due_date: Optional[date] = None) -> List[Reminder]:
        """Remind every member with a disbursed, unpaid loan"""
        reminders = []
        for loan in self.ledger.find_loans():
            if not loan.status.is_running or not loan.outstanding_balance.is_positive():
                continue
            account = self.ledger.get_account(loan.account_id)
            reminders.append(self.create_reminder(
                account_id=loan.account_id,
                reminder_type=ReminderType.LOAN_REPAYMENT,
                title="Loan Repayment Reminder",
                message=(
                    f"Dear {_member_name(account)}, this is a reminder about your outstanding loan. "
                    f"Outstanding balance: {loan.outstanding_balance.to_string()}. "
                    f"Please ensure timely repayment to maintain a good standing."
                ),
                due_date=due_date,
                created_by=created_by
            ))
        log_action(logger, "info", "Loan repayment reminders created", user_id=created_by,
                   action="create_loan_reminders", extra={"count": len(reminders)})
        return reminders

    def create_loan_status_reminder(self, loan: Loan, account: Optional[Account] = None,
                                    created_by: Optional[str] = None) -> Reminder:
        account = account or self.ledger.get_account(loan.account_id)
        content = loan_status_message(loan, _member_name(account))
        return self.create_reminder(
            account_id=loan.account_id,
            reminder_type=ReminderType.LOAN_STATUS,
            title=content["title"],
            message=content["message"],
            created_by=created_by
        )

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        data = self.storage.load(self.reminders_table, reminder_id)
        return self._reminder_from_dict(data) if data else None

    def _require(self, reminder_id: str) -> Reminder:
        reminder = self.get_reminder(reminder_id)
        if reminder is None:
            raise NotFoundError("reminder", reminder_id)
        return reminder

    def mark_read(self, reminder_id: str) -> Reminder:
        reminder = self._require(reminder_id)
        reminder.is_read = True
        reminder.updated_at = datetime.now(timezone.utc)
        self._save_reminder(reminder)
        return reminder

    def mark_email_sent(self, reminder_id: str) -> Reminder:
        reminder = self._require(reminder_id)
        reminder.is_email_sent = True
        reminder.updated_at = datetime.now(timezone.utc)
        self._save_reminder(reminder)
        return reminder

    def delete_reminder(self, reminder_id: str) -> None:
        if not self.storage.delete(self.reminders_table, reminder_id):
            raise NotFoundError("reminder", reminder_id)

    def list_reminders(self, account_id: Optional[str] = None, unread_only: bool = False) -> List[Reminder]:
        """Reminders, newest first"""
        filters = {"account_id": account_id} if account_id else {}
        if unread_only:
            filters["is_read"] = False
        reminders = [self._reminder_from_dict(d) for d in self.storage.find(self.reminders_table, filters)]
        reminders.sort(key=lambda r: r.created_at, reverse=True)
        return reminders

    def _save_reminder(self, reminder: Reminder) -> None:
        self.storage.save(self.reminders_table, reminder.id, self._reminder_to_dict(reminder))

    def _reminder_to_dict(self, reminder: Reminder) -> Dict:
        result = reminder.to_dict()
        result['reminder_type'] = reminder.reminder_type.value
        result['due_date'] = reminder.due_date.isoformat() if reminder.due_date else None
        return result

    def _reminder_from_dict(self, data: Dict) -> Reminder:
        return Reminder(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_id=data['account_id'],
            reminder_type=ReminderType(data['reminder_type']),
            title=data['title'],
            message=data['message'],
            due_date=date.fromisoformat(data['due_date']) if data.get('due_date') else None,
            created_by=data.get('created_by'),
            is_read=data.get('is_read', False),
            is_email_sent=data.get('is_email_sent', False)
        )

"""
Weekly savings feed.

Records what a member saved in a given Sunday-to-Saturday week. The records
drive loan eligibility only; account balances move through deposits.
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple
import uuid

from .audit import AuditTrail, AuditEventType
from .currency import as_money
from .errors import ValidationError
from .ledger import LedgerStore, SavingsRecord
from .logging_config import get_logger, log_action


logger = get_logger("sacco.savings")


def week_bounds(day: date) -> Tuple[date, date]:
    """The Sunday starting day's week and the Saturday ending it"""
    if isinstance(day, datetime):
        day = day.date()
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


class SavingsManager:

    def __init__(self, ledger: LedgerStore, audit_trail: AuditTrail):
        self.ledger = ledger
        self.audit_trail = audit_trail

    def record_weekly_savings(
        self,
        account_id: str,
        amount,
        week_of: Optional[date] = None,
        recorded_by: Optional[str] = None
    ) -> SavingsRecord:
        """Record a week's savings; week_of may be any day in that week"""
        account = self.ledger.require_account(account_id)
        try:
            amount = as_money(amount, account.currency)
        except ValueError as e:
            raise ValidationError(str(e))
        if not amount.is_positive():
            raise ValidationError("Savings amount must be positive")

        week_start, week_end = week_bounds(week_of or datetime.now(timezone.utc).date())
        now = datetime.now(timezone.utc)
        record = SavingsRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            week_start=week_start,
            week_end=week_end,
            amount=amount
        )
        with self.ledger.atomic():
            self.ledger.insert_savings_record(record)
            self.audit_trail.log_event(
                event_type=AuditEventType.SAVINGS_RECORDED,
                entity_type="savings",
                entity_id=record.id,
                metadata={"account_id": account_id, "week_start": week_start, "amount": amount.amount},
                user_id=recorded_by
            )

        log_action(logger, "info", "Weekly savings recorded", user_id=recorded_by,
                   action="record_savings", resource=f"account:{account_id}",
                   extra={"week_start": week_start.isoformat(), "amount": str(amount.amount)})
        return record

    def get_account_savings(self, account_id: str) -> List[SavingsRecord]:
        """Savings records for an account, oldest week first"""
        return self.ledger.find_savings_records(account_id=account_id)

"""
Welfare Module

Welfare fees are taken from a member's balance and total savings, clamped at
zero, and always paired with an already-approved withdrawal so the charge
shows in the member's statement.
"""

from datetime import date, datetime, timezone
from typing import List, Optional
import uuid

from .audit import AuditTrail, AuditEventType
from .config import SaccoConfig, get_config
from .currency import Money, as_money
from .errors import ValidationError
from .events import EventDispatcher, EventPayload, DomainEvent
from .ledger import LedgerStore, WelfareEntry
from .logging_config import get_logger, log_action
from .savings import week_bounds
from .transactions import TransactionWorkflow


logger = get_logger("sacco.welfare")


class WelfareManager:
    """
    Charges welfare fees and reports on them
    """

    def __init__(
        self,
        ledger: LedgerStore,
        transactions: TransactionWorkflow,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None,
        config: Optional[SaccoConfig] = None
    ):
        self.ledger = ledger
        self.transactions = transactions
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.config = config or get_config()

    def charge(
        self,
        account_id: str,
        amount,
        week_date: Optional[date] = None,
        description: str = "Welfare fee",
        charged_by: Optional[str] = None
    ) -> WelfareEntry:
        """
        Charge a welfare fee.

        The entry, the clamped deduction and the paired withdrawal are
        written together or not at all. week_date defaults to the start
        (Sunday) of the current week.
        """
        account = self.ledger.require_account(account_id)
        try:
            amount = as_money(amount, account.currency)
        except ValueError as e:
            raise ValidationError(str(e))
        if not amount.is_positive():
            raise ValidationError("Welfare amount must be positive")
        if week_date is None:
            week_date = week_bounds(datetime.now(timezone.utc).date())[0]

        with self.ledger.atomic():
            withdrawal = self.transactions.record_approved_withdrawal(
                account_id=account_id,
                amount=amount,
                description=description,
                approver_id=charged_by,
                clamp=True,
                publish=False
            )
            now = datetime.now(timezone.utc)
            entry = WelfareEntry(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_id=account_id,
                amount=amount,
                week_date=week_date,
                description=description,
                transaction_id=withdrawal.id,
                charged_by=charged_by
            )
            self.ledger.insert_welfare_entry(entry)
            self.audit_trail.log_event(
                event_type=AuditEventType.WELFARE_CHARGED,
                entity_type="welfare",
                entity_id=entry.id,
                metadata={
                    "account_id": account_id,
                    "amount": amount.amount,
                    "week_date": week_date,
                    "transaction_id": withdrawal.id,
                    "balance_after": withdrawal.balance_after.amount
                },
                user_id=charged_by
            )

        self.transactions.publish(DomainEvent.TRANSACTION_APPROVED, withdrawal)
        log_action(logger, "info", "Welfare charged", user_id=charged_by,
                   action="charge_welfare", resource=f"account:{account_id}",
                   extra={"amount": str(amount.amount), "week_date": week_date.isoformat()})
        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=DomainEvent.WELFARE_CHARGED,
                entity_type="welfare",
                entity_id=entry.id,
                data={
                    "account_id": account_id,
                    "amount": str(amount.amount),
                    "week_date": week_date.isoformat(),
                    "transaction_id": withdrawal.id
                }
            ))
        return entry

    def list_entries(self, account_id: Optional[str] = None) -> List[WelfareEntry]:
        filters = {"account_id": account_id} if account_id else {}
        return self.ledger.find_welfare_entries(**filters)

    def total_welfare(self, account_id: Optional[str] = None) -> Money:
        total = Money.zero(self.config.currency_enum)
        for entry in self.list_entries(account_id):
            total = total + entry.amount
        return total

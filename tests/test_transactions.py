"""
Test suite for the transaction workflow

Balances move once, on approval, and an approved transaction that is deleted
is reversed exactly. Balances never go negative.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from sacco_ledger.audit import AuditEventType
from sacco_ledger.config import SaccoConfig
from sacco_ledger.currency import Money, Currency
from sacco_ledger.errors import (
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from sacco_ledger.events import DomainEvent
from sacco_ledger.ledger import TransactionStatus, TransactionType
from sacco_ledger.storage import InMemoryStorage, SQLiteStorage
from sacco_ledger.system import SaccoSystem


def ugx(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.UGX)


class TestTransactionWorkflow:
    """Test transaction creation, approval, rejection and deletion"""

    def setup_method(self):
        """Set up test fixtures"""
        self.system = SaccoSystem(storage=InMemoryStorage(), config=SaccoConfig(currency="UGX"))
        self.workflow = self.system.transactions
        self.account = self.system.account_manager.create_account(
            owner_id="user_1", holder_name="Jane Nakato", holder_email="jane@example.com"
        )

    def _balance(self):
        return self.system.ledger.require_account(self.account.id)

    def _deposit(self, amount):
        transaction = self.workflow.create(self.account.id, "deposit", amount, "Savings deposit")
        return self.workflow.approve(transaction.id, "admin_1")

    def test_create_records_pending_transaction(self):
        transaction = self.workflow.create(
            self.account.id, TransactionType.DEPOSIT, "10,000", "Weekly savings", created_by="user_1"
        )

        assert transaction.status == TransactionStatus.PENDING
        assert transaction.amount == ugx(10000)
        assert transaction.balance_after == ugx(0)
        assert transaction.created_by == "user_1"
        # Nothing moves until approval
        assert self._balance().balance == ugx(0)

    def test_create_validates_input(self):
        with pytest.raises(ValidationError):
            self.workflow.create(self.account.id, "deposit", 0)
        with pytest.raises(ValidationError):
            self.workflow.create(self.account.id, "deposit", -500)
        with pytest.raises(ValidationError):
            self.workflow.create(self.account.id, "transfer", 500)
        with pytest.raises(ValidationError):
            self.workflow.create(self.account.id, "loan_repayment", 500)
        with pytest.raises(NotFoundError):
            self.workflow.create("missing", "deposit", 500)

    def test_balance_after_is_a_creation_snapshot(self):
        self._deposit(20000)
        pending = self.workflow.create(self.account.id, "withdrawal", 5000)
        assert pending.balance_after == ugx(20000)

        approved = self.workflow.approve(pending.id, "admin_1")
        assert approved.balance_after == ugx(15000)

    def test_approve_deposit_credits_balance_and_savings(self):
        transaction = self._deposit(10000)

        assert transaction.status == TransactionStatus.APPROVED
        assert transaction.approved_by == "admin_1"
        assert transaction.approved_at is not None
        assert transaction.balance_after == ugx(10000)
        account = self._balance()
        assert account.balance == ugx(10000)
        assert account.total_savings == ugx(10000)

    def test_withdrawal_leaves_total_savings(self):
        self._deposit(10000)
        withdrawal = self.workflow.create(self.account.id, "withdrawal", 4000)
        self.workflow.approve(withdrawal.id, "admin_1")

        account = self._balance()
        assert account.balance == ugx(6000)
        assert account.total_savings == ugx(10000)

    def test_withdrawal_above_balance_is_refused(self):
        self._deposit(3000)
        withdrawal = self.workflow.create(self.account.id, "withdrawal", 5000)

        with pytest.raises(InsufficientFundsError) as exc_info:
            self.workflow.approve(withdrawal.id, "admin_1")

        assert exc_info.value.account_id == self.account.id
        assert self._balance().balance == ugx(3000)
        assert self.workflow.get_transaction(withdrawal.id).status == TransactionStatus.PENDING

    def test_approve_only_once(self):
        transaction = self._deposit(10000)
        with pytest.raises(InvalidStateError):
            self.workflow.approve(transaction.id, "admin_2")
        assert self._balance().balance == ugx(10000)

    def test_reject_does_not_touch_balances(self):
        transaction = self.workflow.create(self.account.id, "deposit", 10000)
        rejected = self.workflow.reject(transaction.id, "admin_1")

        assert rejected.status == TransactionStatus.REJECTED
        assert self._balance().balance == ugx(0)
        with pytest.raises(InvalidStateError):
            self.workflow.approve(transaction.id, "admin_1")
        with pytest.raises(InvalidStateError):
            self.workflow.reject(transaction.id, "admin_1")

    def test_approve_unknown_transaction(self):
        with pytest.raises(NotFoundError):
            self.workflow.approve("missing", "admin_1")

    def test_delete_approved_deposit_restores_balances(self):
        self._deposit(5000)
        deposit = self._deposit(12000)

        self.workflow.delete(deposit.id, deleted_by="admin_1")

        account = self._balance()
        assert account.balance == ugx(5000)
        assert account.total_savings == ugx(5000)
        assert self.workflow.get_transaction(deposit.id) is None

    def test_delete_approved_withdrawal_restores_balance(self):
        self._deposit(10000)
        withdrawal = self.workflow.create(self.account.id, "withdrawal", 7000)
        self.workflow.approve(withdrawal.id, "admin_1")

        self.workflow.delete(withdrawal.id)

        account = self._balance()
        assert account.balance == ugx(10000)
        assert account.total_savings == ugx(10000)

    def test_delete_pending_transaction_has_no_balance_effect(self):
        self._deposit(10000)
        pending = self.workflow.create(self.account.id, "withdrawal", 3000)
        self.workflow.delete(pending.id)

        assert self._balance().balance == ugx(10000)
        assert self.workflow.get_transaction(pending.id) is None

    def test_delete_deposit_already_spent_is_refused(self):
        deposit = self._deposit(10000)
        withdrawal = self.workflow.create(self.account.id, "withdrawal", 8000)
        self.workflow.approve(withdrawal.id, "admin_1")

        with pytest.raises(InsufficientFundsError):
            self.workflow.delete(deposit.id)

        # Nothing changed
        assert self._balance().balance == ugx(2000)
        assert self.workflow.get_transaction(deposit.id).status == TransactionStatus.APPROVED

    def test_delete_unknown_transaction(self):
        with pytest.raises(NotFoundError):
            self.workflow.delete("missing")

    def test_balances_never_negative_across_mixed_sequence(self):
        deposits = [self._deposit(amount) for amount in (5000, 2500, 10000)]
        for amount in (4000, 9000, 20000):
            withdrawal = self.workflow.create(self.account.id, "withdrawal", amount)
            try:
                self.workflow.approve(withdrawal.id, "admin_1")
            except InsufficientFundsError:
                self.workflow.reject(withdrawal.id, "admin_1")
            account = self._balance()
            assert not account.balance.is_negative()
            assert not account.total_savings.is_negative()

        for deposit in deposits:
            try:
                self.workflow.delete(deposit.id)
            except InsufficientFundsError:
                pass
            account = self._balance()
            assert not account.balance.is_negative()
            assert not account.total_savings.is_negative()

    def test_receipt_number_can_be_set_after_approval(self):
        deposit = self._deposit(10000)
        updated = self.workflow.set_receipt_number(deposit.id, "RCPT-0042", set_by="admin_1")

        assert updated.receipt_number == "RCPT-0042"
        assert updated.status == TransactionStatus.APPROVED
        assert self.workflow.get_transaction(deposit.id).receipt_number == "RCPT-0042"

    def test_record_approved_withdrawal_clamps_at_zero(self):
        self._deposit(1500)
        withdrawal = self.workflow.record_approved_withdrawal(
            self.account.id, ugx(2000), "Welfare fee", "admin_1"
        )

        assert withdrawal.status == TransactionStatus.APPROVED
        assert withdrawal.balance_after == ugx(0)
        assert withdrawal.balance_delta == ugx(-1500)
        account = self._balance()
        assert account.balance == ugx(0)
        assert account.total_savings == ugx(0)

        # Reversal puts back only what was taken
        self.workflow.delete(withdrawal.id)
        account = self._balance()
        assert account.balance == ugx(1500)
        assert account.total_savings == ugx(1500)

    def test_list_transactions_filters(self):
        other = self.system.account_manager.create_account(owner_id="user_2", holder_name="Peter Okello")
        self._deposit(10000)
        pending = self.workflow.create(self.account.id, "withdrawal", 1000)
        self.workflow.create(other.id, "deposit", 3000)

        assert len(self.workflow.list_transactions(account_id=self.account.id)) == 2
        assert [t.id for t in self.workflow.get_pending_transactions(self.account.id)] == [pending.id]
        assert len(self.workflow.get_pending_transactions()) == 2
        assert len(self.workflow.list_transactions(transaction_type="deposit")) == 2
        assert len(self.workflow.list_transactions(status=TransactionStatus.APPROVED)) == 1

        now = datetime.now(timezone.utc)
        assert len(self.workflow.list_transactions(start=now - timedelta(minutes=5))) == 3
        assert self.workflow.list_transactions(end=now - timedelta(days=1)) == []

    def test_transaction_events_and_audit(self):
        received = []
        self.system.event_dispatcher.subscribe(DomainEvent.TRANSACTION_APPROVED, received.append)

        deposit = self._deposit(10000)

        assert [event.entity_id for event in received] == [deposit.id]
        assert received[0].data["balance_after"] == "10000"
        types = [e.event_type for e in self.system.audit_trail.get_events_for_entity("transaction", deposit.id)]
        assert types == [AuditEventType.TRANSACTION_CREATED, AuditEventType.TRANSACTION_APPROVED]
        assert self.system.audit_trail.verify_integrity()["valid"]

    def test_approve_with_sqlite_storage(self, tmp_path):
        system = SaccoSystem(storage=SQLiteStorage(tmp_path / "sacco.db"), config=SaccoConfig(currency="UGX"))
        account = system.account_manager.create_account(owner_id="user_9", holder_name="Grace Auma")
        deposit = system.transactions.create(account.id, "deposit", 8000)
        system.transactions.approve(deposit.id, "admin_1")
        withdrawal = system.transactions.create(account.id, "withdrawal", 9000)

        with pytest.raises(InsufficientFundsError):
            system.transactions.approve(withdrawal.id, "admin_1")

        assert system.ledger.require_account(account.id).balance == ugx(8000)
        system.close()

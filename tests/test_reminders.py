"""
Test suite for member reminders
"""

import pytest
from datetime import date

from sacco_ledger.config import SaccoConfig
from sacco_ledger.errors import NotFoundError, ValidationError
from sacco_ledger.events import DomainEvent
from sacco_ledger.ledger import LoanStatus
from sacco_ledger.reminders import ReminderType, loan_status_message
from sacco_ledger.storage import InMemoryStorage, SQLiteStorage
from sacco_ledger.system import SaccoSystem


class TestReminderManager:

    def setup_method(self):
        """Set up test fixtures"""
        self.system = SaccoSystem(storage=InMemoryStorage(), config=SaccoConfig(currency="UGX"))
        self.reminders = self.system.reminder_manager
        accounts = self.system.account_manager
        self.jane = accounts.create_account("user_1", "Jane Nakato", holder_email="jane@example.com")
        self.peter = accounts.create_account("user_2", "Peter Okello")

    def _fund(self, account, amount):
        deposit = self.system.transactions.create(account.id, "deposit", amount)
        self.system.transactions.approve(deposit.id, "admin_1")

    def test_create_reminder(self):
        reminder = self.reminders.create_reminder(
            self.jane.id, ReminderType.GENERAL, "  AGM notice ", "The AGM is on Saturday.",
            due_date=date(2024, 6, 1), created_by="admin_1"
        )

        assert reminder.title == "AGM notice"
        assert reminder.due_date == date(2024, 6, 1)
        assert not reminder.is_read
        assert not reminder.is_email_sent
        assert self.reminders.get_reminder(reminder.id).message == "The AGM is on Saturday."

    def test_create_reminder_validation(self):
        with pytest.raises(ValidationError):
            self.reminders.create_reminder(self.jane.id, ReminderType.GENERAL, "   ", "body")
        with pytest.raises(ValidationError):
            self.reminders.create_reminder(self.jane.id, ReminderType.GENERAL, "title", "")
        with pytest.raises(NotFoundError):
            self.reminders.create_reminder("missing", ReminderType.GENERAL, "title", "body")

    def test_reminder_created_event(self):
        received = []
        self.system.event_dispatcher.subscribe(DomainEvent.REMINDER_CREATED, received.append)

        reminder = self.reminders.create_reminder(self.jane.id, "savings", "Save", "Please save")

        assert reminder.reminder_type == ReminderType.SAVINGS
        assert received[0].entity_id == reminder.id
        assert received[0].data["account_id"] == self.jane.id
        assert received[0].data["reminder_type"] == "savings"

    def test_savings_reminders_for_every_account(self):
        self._fund(self.jane, 12500)

        created = self.reminders.create_savings_reminders(created_by="admin_1")

        assert {r.account_id for r in created} == {self.jane.id, self.peter.id}
        assert all(r.reminder_type == ReminderType.SAVINGS for r in created)
        jane_reminder = next(r for r in created if r.account_id == self.jane.id)
        assert "Dear Jane Nakato" in jane_reminder.message
        assert "UGX 12,500" in jane_reminder.message

    def test_loan_reminders_only_for_disbursed_unpaid_loans(self):
        self._fund(self.jane, 50000)
        self._fund(self.peter, 50000)
        loans = self.system.loan_manager
        running = loans.apply(self.jane.id, 30000)
        loans.approve(running.id, "admin_1")
        loans.disburse(running.id)
        loans.apply(self.peter.id, 20000)

        created = self.reminders.create_loan_reminders()

        assert [r.account_id for r in created] == [self.jane.id]
        assert created[0].reminder_type == ReminderType.LOAN_REPAYMENT
        assert "UGX 30,600" in created[0].message

    def test_mark_read_and_unread_filter(self):
        first = self.reminders.create_reminder(self.jane.id, ReminderType.GENERAL, "One", "First")
        self.reminders.create_reminder(self.jane.id, ReminderType.GENERAL, "Two", "Second")
        self.reminders.create_reminder(self.peter.id, ReminderType.GENERAL, "Three", "Third")

        updated = self.reminders.mark_read(first.id)

        assert updated.is_read
        unread = self.reminders.list_reminders(self.jane.id, unread_only=True)
        assert [r.title for r in unread] == ["Two"]
        assert len(self.reminders.list_reminders(self.jane.id)) == 2
        assert len(self.reminders.list_reminders()) == 3

    def test_mark_email_sent(self):
        reminder = self.reminders.create_reminder(self.jane.id, ReminderType.GENERAL, "One", "First")
        self.reminders.mark_email_sent(reminder.id)

        stored = self.reminders.get_reminder(reminder.id)
        assert stored.is_email_sent
        assert not stored.is_read
        with pytest.raises(NotFoundError):
            self.reminders.mark_email_sent("missing")

    def test_delete_reminder(self):
        reminder = self.reminders.create_reminder(self.jane.id, ReminderType.GENERAL, "One", "First")
        self.reminders.delete_reminder(reminder.id)

        assert self.reminders.get_reminder(reminder.id) is None
        with pytest.raises(NotFoundError):
            self.reminders.delete_reminder(reminder.id)

    def test_unread_filter_with_sqlite(self, tmp_path):
        system = SaccoSystem(storage=SQLiteStorage(tmp_path / "sacco.db"), config=SaccoConfig(currency="UGX"))
        account = system.account_manager.create_account("user_9", "Grace Auma")
        read = system.reminder_manager.create_reminder(account.id, ReminderType.GENERAL, "Read", "Body")
        system.reminder_manager.create_reminder(account.id, ReminderType.GENERAL, "Unread", "Body")
        system.reminder_manager.mark_read(read.id)

        unread = system.reminder_manager.list_reminders(account.id, unread_only=True)
        assert [r.title for r in unread] == ["Unread"]
        system.close()


class TestLoanStatusMessage:

    def setup_method(self):
        self.system = SaccoSystem(storage=InMemoryStorage(), config=SaccoConfig(currency="UGX"))
        self.account = self.system.account_manager.create_account("user_1", "Jane Nakato")
        deposit = self.system.transactions.create(self.account.id, "deposit", 50000)
        self.system.transactions.approve(deposit.id, "admin_1")
        self.loan = self.system.loan_manager.apply(self.account.id, 100000)

    def test_wording_follows_status(self):
        loan = self.loan
        loan.status = LoanStatus.APPROVED
        assert loan_status_message(loan, "Jane")["title"] == "Loan Application Approved"

        loan.status = LoanStatus.DISBURSED
        disbursed = loan_status_message(loan, "Jane")
        assert disbursed["title"] == "Loan Disbursed Successfully"
        assert "UGX 102,000" in disbursed["message"]

        loan.status = LoanStatus.FULLY_PAID
        assert loan_status_message(loan, "Jane")["title"] == "Loan Fully Repaid - Congratulations!"

        loan.status = LoanStatus.REJECTED
        rejected = loan_status_message(loan, "Jane")
        assert rejected["title"] == "Loan Application Update"
        assert rejected["message"].startswith("Dear Jane, we regret")

        loan.status = LoanStatus.PENDING
        assert loan_status_message(loan, "Jane")["message"].endswith("updated to: pending.")

    def test_status_change_creates_member_reminder(self):
        self.system.loan_manager.reject(self.loan.id, "admin_1")

        reminders = self.system.reminder_manager.list_reminders(self.account.id)
        assert [r.reminder_type for r in reminders] == [ReminderType.LOAN_STATUS]
        assert reminders[0].title == "Loan Application Update"
        assert "Dear Jane Nakato" in reminders[0].message

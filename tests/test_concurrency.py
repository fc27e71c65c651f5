"""
Test suite for versioned updates under contention
"""

import threading
import pytest
from decimal import Decimal

from sacco_ledger.config import SaccoConfig
from sacco_ledger.currency import Money, Currency
from sacco_ledger.errors import BusyError, InsufficientFundsError
from sacco_ledger.storage import InMemoryStorage
from sacco_ledger.system import SaccoSystem


def ugx(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.UGX)


class ContendedStorage(InMemoryStorage):
    """Loses the next N compare-and-set races"""

    def __init__(self):
        super().__init__()
        self.conflicts_left = 0
        self.attempts = 0

    def save_if_version(self, table, record_id, data, expected_version):
        self.attempts += 1
        if self.conflicts_left > 0:
            self.conflicts_left -= 1
            return False
        return super().save_if_version(table, record_id, data, expected_version)


class TestVersionedUpdates:

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = ContendedStorage()
        self.system = SaccoSystem(
            storage=self.storage,
            config=SaccoConfig(currency="UGX", max_concurrency_retries=3)
        )
        self.account = self.system.account_manager.create_account("user_1", "Jane Nakato")

    def test_retries_until_write_lands(self):
        self.storage.conflicts_left = 2
        self.storage.attempts = 0

        change = self.system.ledger.apply_account_delta(self.account.id, ugx(5000), ugx(5000))

        assert self.storage.attempts == 3
        assert change.account.balance == ugx(5000)
        assert change.account.version == 1
        assert self.system.ledger.require_account(self.account.id).balance == ugx(5000)

    def test_gives_up_with_busy_error(self):
        self.storage.conflicts_left = 10
        self.storage.attempts = 0

        with pytest.raises(BusyError):
            self.system.ledger.apply_account_delta(self.account.id, ugx(5000), ugx(5000))

        assert self.storage.attempts == 4
        assert self.system.ledger.require_account(self.account.id).balance.is_zero()

    def test_busy_approval_leaves_transaction_pending(self):
        deposit = self.system.transactions.create(self.account.id, "deposit", 5000)
        self.storage.conflicts_left = 10

        with pytest.raises(BusyError):
            self.system.transactions.approve(deposit.id, "admin_1")

        self.storage.conflicts_left = 0
        assert self.system.transactions.get_transaction(deposit.id).status.value == "pending"
        assert self.system.ledger.require_account(self.account.id).balance.is_zero()


class TestConcurrentWithdrawals:

    def setup_method(self):
        self.system = SaccoSystem(storage=InMemoryStorage(), config=SaccoConfig(currency="UGX"))
        self.account = self.system.account_manager.create_account("user_1", "Jane Nakato")
        deposit = self.system.transactions.create(self.account.id, "deposit", 10000)
        self.system.transactions.approve(deposit.id, "admin_1")

    def test_racing_withdrawals_cannot_overdraw(self):
        workflow = self.system.transactions
        withdrawals = [workflow.create(self.account.id, "withdrawal", 3000) for _ in range(6)]
        outcomes = []

        def approve(transaction_id):
            try:
                workflow.approve(transaction_id, "admin_1")
                outcomes.append("approved")
            except InsufficientFundsError:
                outcomes.append("refused")

        threads = [threading.Thread(target=approve, args=(w.id,)) for w in withdrawals]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("approved") == 3
        assert outcomes.count("refused") == 3
        assert self.system.ledger.require_account(self.account.id).balance == ugx(1000)

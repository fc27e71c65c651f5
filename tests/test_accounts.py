"""
Test suite for accounts module

Accounts open at zero, sub accounts hang off a main account and share its
owner, and account numbers are unique.
"""

import re
import pytest
from decimal import Decimal

from sacco_ledger.audit import AuditEventType
from sacco_ledger.config import SaccoConfig
from sacco_ledger.currency import Money, Currency
from sacco_ledger.errors import NotFoundError, ValidationError
from sacco_ledger.events import DomainEvent
from sacco_ledger.ledger import AccountType
from sacco_ledger.storage import InMemoryStorage
from sacco_ledger.system import SaccoSystem


class TestAccountManager:

    def setup_method(self):
        """Set up test fixtures"""
        self.system = SaccoSystem(storage=InMemoryStorage(), config=SaccoConfig(currency="UGX"))
        self.accounts = self.system.account_manager

    def test_create_account_opens_at_zero(self):
        account = self.accounts.create_account(
            "user_1", " Jane Nakato ", holder_email="jane@example.com", created_by="admin_1"
        )

        assert account.account_type == AccountType.MAIN
        assert account.holder_name == "Jane Nakato"
        assert account.balance == Money(Decimal("0"), Currency.UGX)
        assert account.total_savings.is_zero()
        assert account.parent_account_id is None
        assert re.fullmatch(r"ACC\d{12}", account.account_number)
        assert self.accounts.get_account(account.id).account_number == account.account_number

    def test_create_account_validation(self):
        with pytest.raises(ValidationError):
            self.accounts.create_account("", "Jane Nakato")
        with pytest.raises(ValidationError):
            self.accounts.create_account("user_1", "  ")

    def test_account_numbers_are_unique(self):
        self.accounts.create_account("user_1", "Jane Nakato", account_number="ACC0001")

        with pytest.raises(ValidationError):
            self.accounts.create_account("user_2", "Peter Okello", account_number="ACC0001")

        generated = {self.accounts.create_account(f"user_{i}", "Member").account_number for i in range(20)}
        assert len(generated) == 20

    def test_sub_account_belongs_to_parent_owner(self):
        parent = self.accounts.create_account("user_1", "Jane Nakato", account_number="ACC0001")
        child = self.accounts.create_sub_account(parent.id, "Baby Nakato", created_by="user_1")

        assert child.account_type == AccountType.SUB
        assert child.owner_id == "user_1"
        assert child.parent_account_id == parent.id
        assert child.balance.is_zero()
        assert [a.id for a in self.accounts.get_sub_accounts(parent.id)] == [child.id]

        audited = self.system.audit_trail.get_events_for_entity("account", child.id)
        assert audited[0].event_type == AuditEventType.SUB_ACCOUNT_CREATED

    def test_sub_account_rules(self):
        parent = self.accounts.create_account("user_1", "Jane Nakato")
        child = self.accounts.create_sub_account(parent.id, "Baby Nakato")

        with pytest.raises(ValidationError):
            self.accounts.create_sub_account(child.id, "Grandchild")
        with pytest.raises(ValidationError):
            self.accounts.create_sub_account(parent.id, "")
        with pytest.raises(NotFoundError):
            self.accounts.create_sub_account("missing", "Orphan")

    def test_lookups(self):
        first = self.accounts.create_account("user_1", "Jane Nakato", account_number="ACC0002")
        second = self.accounts.create_account("user_1", "Jane Nakato", account_number="ACC0001")
        other = self.accounts.create_account("user_2", "Peter Okello", account_number="ACC0003")

        assert self.accounts.get_account_by_number("ACC0003").id == other.id
        assert self.accounts.get_account_by_number("ACC9999") is None
        assert self.accounts.get_account("missing") is None
        assert [a.id for a in self.accounts.get_owner_accounts("user_1")] == [second.id, first.id]
        assert [a.account_number for a in self.accounts.list_accounts()] == ["ACC0001", "ACC0002", "ACC0003"]

    def test_account_created_event(self):
        received = []
        self.system.event_dispatcher.subscribe(DomainEvent.ACCOUNT_CREATED, received.append)

        account = self.accounts.create_account("user_1", "Jane Nakato", holder_email="jane@example.com")

        assert received[0].entity_id == account.id
        assert received[0].data["holder_email"] == "jane@example.com"

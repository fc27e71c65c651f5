"""
Account Management Module

Member accounts and their dependent sub accounts. Balances start at zero and
only move through approved transactions or batch jobs; accounts are never
deleted.
"""

from datetime import datetime, timezone
from typing import List, Optional
import random
import uuid

from .audit import AuditTrail, AuditEventType
from .config import SaccoConfig, get_config
from .currency import Money
from .errors import ValidationError
from .events import EventDispatcher, EventPayload, DomainEvent
from .ledger import Account, AccountType, LedgerStore
from .logging_config import get_logger, log_action


logger = get_logger("sacco.accounts")


class AccountManager:
    """
    Opens accounts and looks them up
    """

    def __init__(
        self,
        ledger: LedgerStore,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None,
        config: Optional[SaccoConfig] = None
    ):
        self.ledger = ledger
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.config = config or get_config()

    def _generate_account_number(self) -> str:
        """ACC + date + four random digits, unique among existing accounts"""
        prefix = "ACC" + datetime.now(timezone.utc).strftime("%Y%m%d")
        while True:
            candidate = f"{prefix}{random.randint(0, 9999):04d}"
            if not self.ledger.find_accounts(account_number=candidate):
                return candidate

    def _open(
        self,
        owner_id: str,
        account_type: AccountType,
        holder_name: str,
        holder_email: Optional[str],
        account_number: Optional[str],
        parent_account_id: Optional[str],
        created_by: Optional[str]
    ) -> Account:
        if account_number:
            if self.ledger.find_accounts(account_number=account_number):
                raise ValidationError(f"Account number {account_number} is already in use")
        else:
            account_number = self._generate_account_number()

        currency = self.config.currency_enum
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_number=account_number,
            owner_id=owner_id,
            account_type=account_type,
            balance=Money.zero(currency),
            total_savings=Money.zero(currency),
            holder_name=holder_name,
            holder_email=holder_email,
            parent_account_id=parent_account_id
        )
        self.ledger.insert_account(account)

        self.audit_trail.log_event(
            event_type=(AuditEventType.SUB_ACCOUNT_CREATED if account_type == AccountType.SUB
                        else AuditEventType.ACCOUNT_CREATED),
            entity_type="account",
            entity_id=account.id,
            metadata={
                "account_number": account_number,
                "owner_id": owner_id,
                "account_type": account_type.value,
                "parent_account_id": parent_account_id
            },
            user_id=created_by
        )
        log_action(logger, "info", "Account opened", user_id=created_by,
                   action="create_account", resource=f"account:{account.id}",
                   extra={"account_number": account_number, "account_type": account_type.value})

        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=DomainEvent.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                data={
                    "account_number": account_number,
                    "owner_id": owner_id,
                    "account_type": account_type.value,
                    "holder_name": holder_name,
                    "holder_email": holder_email
                }
            ))
        return account

    def create_account(
        self,
        owner_id: str,
        holder_name: str,
        holder_email: Optional[str] = None,
        account_number: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Account:
        """
        Open a main account for a member

        Raises:
            ValidationError: Missing owner or holder name, or a duplicate account number
        """
        if not owner_id:
            raise ValidationError("owner_id is required")
        if not holder_name or not holder_name.strip():
            raise ValidationError("Holder name is required")
        return self._open(owner_id, AccountType.MAIN, holder_name.strip(), holder_email,
                          account_number, None, created_by)

    def create_sub_account(
        self,
        parent_account_id: str,
        holder_name: str,
        account_number: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Account:
        """
        Open a dependent account (e.g. for a child) under a member's main
        account. It belongs to the same owner.
        """
        parent = self.ledger.require_account(parent_account_id)
        if parent.account_type != AccountType.MAIN:
            raise ValidationError("Sub accounts can only be opened under a main account")
        if not holder_name or not holder_name.strip():
            raise ValidationError("Full name is required for sub-account")
        return self._open(parent.owner_id, AccountType.SUB, holder_name.strip(), None,
                          account_number, parent.id, created_by)

    def get_account(self, account_id: str) -> Optional[Account]:
        return self.ledger.get_account(account_id)

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        accounts = self.ledger.find_accounts(account_number=account_number)
        return accounts[0] if accounts else None

    def get_owner_accounts(self, owner_id: str) -> List[Account]:
        accounts = self.ledger.find_accounts(owner_id=owner_id)
        accounts.sort(key=lambda a: a.account_number)
        return accounts

    def get_sub_accounts(self, parent_account_id: str) -> List[Account]:
        accounts = self.ledger.find_accounts(
            parent_account_id=parent_account_id,
            account_type=AccountType.SUB.value
        )
        accounts.sort(key=lambda a: a.account_number)
        return accounts

    def list_accounts(self) -> List[Account]:
        return self.ledger.list_accounts()

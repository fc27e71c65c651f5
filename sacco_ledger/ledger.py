"""
Ledger Store Module

Entity records (accounts, transactions, loans, savings, welfare, overdue
charge markers) and the LedgerStore, the only code that writes account
balances and loan outstanding amounts.

Every balance-affecting write is an optimistic read-modify-write keyed on
the record's version: the record is read, mutated, and written back with
StorageInterface.save_if_version. A lost race is retried a bounded number of
times and then surfaces as BusyError.
"""

from dataclasses import dataclass, fields
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple
import logging

from .currency import Money, Currency
from .errors import (
    NotFoundError,
    InsufficientFundsError,
    InvalidStateError,
    ConcurrentModificationError,
    BusyError,
    GuarantorPendingError,
)
from .storage import StorageInterface, StorageRecord


class AccountType(Enum):
    MAIN = "main"
    SUB = "sub"


class TransactionType(Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_REPAYMENT = "loan_repayment"


class TransactionStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LoanStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    DISBURSED = "disbursed"
    FULLY_PAID = "fully_paid"
    COMPLETED = "completed"

    @property
    def is_paid(self) -> bool:
        return self in (LoanStatus.FULLY_PAID, LoanStatus.COMPLETED)

    @property
    def is_running(self) -> bool:
        """Disbursed and accruing; repayments and penalties apply"""
        return self in (LoanStatus.ACTIVE, LoanStatus.DISBURSED)


# A guarantor backing a loan in one of these states (with money still owed)
# is not free to guarantee another.
GUARANTEE_HOLDING_STATUSES = frozenset({
    LoanStatus.PENDING,
    LoanStatus.APPROVED,
    LoanStatus.DISBURSED,
    LoanStatus.ACTIVE,
})

# Status moves a loan may make in one update. Leaving pending for a
# running state is approval, which also needs the guarantor's consent.
LOAN_TRANSITIONS = {
    LoanStatus.PENDING: frozenset({LoanStatus.APPROVED, LoanStatus.ACTIVE, LoanStatus.REJECTED}),
    LoanStatus.APPROVED: frozenset({LoanStatus.ACTIVE, LoanStatus.DISBURSED}),
    LoanStatus.ACTIVE: frozenset({LoanStatus.DISBURSED, LoanStatus.FULLY_PAID, LoanStatus.COMPLETED}),
    LoanStatus.DISBURSED: frozenset({LoanStatus.FULLY_PAID, LoanStatus.COMPLETED}),
    LoanStatus.FULLY_PAID: frozenset({LoanStatus.ACTIVE, LoanStatus.DISBURSED, LoanStatus.COMPLETED}),
    LoanStatus.COMPLETED: frozenset({LoanStatus.ACTIVE, LoanStatus.DISBURSED, LoanStatus.FULLY_PAID}),
    LoanStatus.REJECTED: frozenset(),
}


class GuarantorStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LedgerRecord(StorageRecord):
    """
    Mixin for ledger entities: field-type driven (de)serialization.

    Money fields are stored as amount strings with one record-level
    "currency" code.
    """
    _money_fields: ClassVar[Tuple[str, ...]] = ()
    _datetime_fields: ClassVar[Tuple[str, ...]] = ()
    _date_fields: ClassVar[Tuple[str, ...]] = ()
    _decimal_fields: ClassVar[Tuple[str, ...]] = ()
    _enum_fields: ClassVar[Dict[str, type]] = {}

    @property
    def currency(self) -> Currency:
        for name in self._money_fields:
            value = getattr(self, name)
            if value is not None:
                return value.currency
        return Currency.UGX

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Money):
                value = str(value.amount)
            elif isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (datetime, date)):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = str(value)
            result[f.name] = value
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        data = dict(data)
        currency = Currency.from_code(data.pop('currency', 'UGX'))
        for name in ('created_at', 'updated_at') + cls._datetime_fields:
            if data.get(name) is not None:
                data[name] = datetime.fromisoformat(data[name])
        for name in cls._date_fields:
            if data.get(name) is not None:
                data[name] = date.fromisoformat(data[name])
        for name in cls._money_fields:
            if data.get(name) is not None:
                data[name] = Money(Decimal(data[name]), currency)
        for name in cls._decimal_fields:
            if data.get(name) is not None:
                data[name] = Decimal(data[name])
        for name, enum_type in cls._enum_fields.items():
            if data.get(name) is not None:
                data[name] = enum_type(data[name])
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Account(LedgerRecord):
    """Member account. Balances never go below zero."""
    account_number: str
    owner_id: str
    account_type: AccountType
    balance: Money
    total_savings: Money
    holder_name: str = ""
    holder_email: Optional[str] = None
    parent_account_id: Optional[str] = None
    version: int = 0

    _money_fields: ClassVar[Tuple[str, ...]] = ('balance', 'total_savings')
    _enum_fields: ClassVar[Dict[str, type]] = {'account_type': AccountType}


@dataclass
class Transaction(LedgerRecord):
    """
    Member transaction. Balances move once, when it is approved.

    balance_delta, savings_delta, loan_outstanding_delta and
    loan_status_before record what approval actually changed so deletion can
    undo it exactly.
    """
    account_id: str
    transaction_type: TransactionType
    amount: Money
    balance_after: Money
    description: str = ""
    status: TransactionStatus = TransactionStatus.PENDING
    loan_id: Optional[str] = None
    receipt_number: Optional[str] = None
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    balance_delta: Optional[Money] = None
    savings_delta: Optional[Money] = None
    loan_outstanding_delta: Optional[Money] = None
    loan_status_before: Optional[LoanStatus] = None
    version: int = 0

    _money_fields: ClassVar[Tuple[str, ...]] = (
        'amount', 'balance_after', 'balance_delta', 'savings_delta', 'loan_outstanding_delta'
    )
    _datetime_fields: ClassVar[Tuple[str, ...]] = ('approved_at',)
    _enum_fields: ClassVar[Dict[str, type]] = {
        'transaction_type': TransactionType,
        'status': TransactionStatus,
        'loan_status_before': LoanStatus,
    }


@dataclass
class Loan(LedgerRecord):
    """Member loan with flat monthly interest on principal"""
    account_id: str
    amount: Money
    interest_rate: Decimal  # percent per month
    repayment_months: int
    total_amount: Money
    outstanding_balance: Money
    status: LoanStatus = LoanStatus.PENDING
    disbursed_at: Optional[datetime] = None
    guarantor_account_id: Optional[str] = None
    guarantor_status: Optional[GuarantorStatus] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    max_loan_amount: Optional[Money] = None
    version: int = 0

    _money_fields: ClassVar[Tuple[str, ...]] = (
        'amount', 'total_amount', 'outstanding_balance', 'max_loan_amount'
    )
    _datetime_fields: ClassVar[Tuple[str, ...]] = ('disbursed_at', 'approved_at')
    _decimal_fields: ClassVar[Tuple[str, ...]] = ('interest_rate',)
    _enum_fields: ClassVar[Dict[str, type]] = {
        'status': LoanStatus,
        'guarantor_status': GuarantorStatus,
    }

    @property
    def awaiting_guarantor(self) -> bool:
        return (self.guarantor_account_id is not None
                and self.guarantor_status != GuarantorStatus.APPROVED)


@dataclass
class SavingsRecord(LedgerRecord):
    """One week's savings for an account (Sunday to Saturday)"""
    account_id: str
    week_start: date
    week_end: date
    amount: Money

    _money_fields: ClassVar[Tuple[str, ...]] = ('amount',)
    _date_fields: ClassVar[Tuple[str, ...]] = ('week_start', 'week_end')


@dataclass
class WelfareEntry(LedgerRecord):
    account_id: str
    amount: Money
    week_date: date
    description: str
    transaction_id: Optional[str] = None
    charged_by: Optional[str] = None

    _money_fields: ClassVar[Tuple[str, ...]] = ('amount',)
    _date_fields: ClassVar[Tuple[str, ...]] = ('week_date',)


@dataclass
class OverdueInterestCharge(LedgerRecord):
    """Marks that a loan's overdue penalty was charged for a calendar month"""
    loan_id: str
    period: str  # YYYY-MM
    amount: Money

    _money_fields: ClassVar[Tuple[str, ...]] = ('amount',)

    @staticmethod
    def make_id(loan_id: str, period: str) -> str:
        return f"{loan_id}:{period}"


@dataclass(frozen=True)
class BalanceChange:
    """Result of a balance mutation: the new account and what was actually applied"""
    account: Account
    balance_applied: Money
    savings_applied: Money


class LedgerStore:
    """
    Typed access to the ledger tables.
    """

    ACCOUNTS_TABLE = "accounts"
    TRANSACTIONS_TABLE = "transactions"
    LOANS_TABLE = "loans"
    SAVINGS_TABLE = "savings"
    WELFARE_TABLE = "welfare"
    OVERDUE_CHARGES_TABLE = "overdue_interest_charges"

    def __init__(self, storage: StorageInterface, max_retries: int = 3):
        self.storage = storage
        self.max_retries = max_retries
        self.logger = logging.getLogger("sacco.ledger")

    def atomic(self):
        return self.storage.atomic()

    # Versioned updates

    def _compare_and_set(self, table: str, record, expected_version: int) -> None:
        record.version = expected_version + 1
        record.updated_at = datetime.now(timezone.utc)
        if not self.storage.save_if_version(table, record.id, record.to_dict(), expected_version):
            raise ConcurrentModificationError(
                f"{table} record {record.id} changed since version {expected_version}"
            )

    def _update_versioned(self, table: str, entity_type: str, record_cls, record_id: str,
                          mutator: Callable[[Any], Any]):
        """
        Read, mutate and compare-and-set one record, retrying on conflict.

        The mutator receives a fresh copy on every attempt and may raise to
        abort without writing. Returns (record, mutator_result).
        """
        last_conflict = None
        for attempt in range(self.max_retries + 1):
            data = self.storage.load(table, record_id)
            if data is None:
                raise NotFoundError(entity_type, record_id)
            record = record_cls.from_dict(data)
            expected_version = record.version

            outcome = mutator(record)

            try:
                self._compare_and_set(table, record, expected_version)
                return record, outcome
            except ConcurrentModificationError as e:
                last_conflict = e
                self.logger.warning(
                    f"Version conflict on {entity_type} {record_id}, attempt {attempt + 1}"
                )

        raise BusyError(
            f"{entity_type.capitalize()} {record_id} is busy, "
            f"gave up after {self.max_retries + 1} attempts"
        ) from last_conflict

    # Accounts

    def insert_account(self, account: Account) -> None:
        self.storage.save(self.ACCOUNTS_TABLE, account.id, account.to_dict())

    def get_account(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.ACCOUNTS_TABLE, account_id)
        return Account.from_dict(data) if data else None

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    def find_accounts(self, **filters) -> List[Account]:
        return [Account.from_dict(d) for d in self.storage.find(self.ACCOUNTS_TABLE, filters)]

    def list_accounts(self) -> List[Account]:
        accounts = [Account.from_dict(d) for d in self.storage.load_all(self.ACCOUNTS_TABLE)]
        accounts.sort(key=lambda a: a.account_number)
        return accounts

    def apply_account_delta(self, account_id: str, balance_delta: Money, savings_delta: Money,
                            clamp: bool = False) -> BalanceChange:
        """
        Add the deltas to balance and total_savings.

        Without clamp a result below zero raises InsufficientFundsError and
        nothing is written. With clamp each result is floored at zero and the
        returned BalanceChange reports what was really applied.
        """
        def mutate(account: Account) -> Tuple[Money, Money]:
            new_balance = account.balance + balance_delta
            new_savings = account.total_savings + savings_delta
            if clamp:
                new_balance = new_balance.clamp_at_zero()
                new_savings = new_savings.clamp_at_zero()
            elif new_balance.is_negative():
                raise InsufficientFundsError(
                    account_id, str(abs(balance_delta.amount)), str(account.balance.amount)
                )
            elif new_savings.is_negative():
                raise InsufficientFundsError(
                    account_id, str(abs(savings_delta.amount)), str(account.total_savings.amount)
                )
            applied = (new_balance - account.balance, new_savings - account.total_savings)
            account.balance = new_balance
            account.total_savings = new_savings
            return applied

        account, (balance_applied, savings_applied) = self._update_versioned(
            self.ACCOUNTS_TABLE, "account", Account, account_id, mutate
        )
        return BalanceChange(account, balance_applied, savings_applied)

    # Transactions

    def insert_transaction(self, transaction: Transaction) -> None:
        self.storage.save(self.TRANSACTIONS_TABLE, transaction.id, transaction.to_dict())

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        data = self.storage.load(self.TRANSACTIONS_TABLE, transaction_id)
        return Transaction.from_dict(data) if data else None

    def require_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    def update_transaction(self, transaction_id: str, mutator: Callable[[Transaction], Any]) -> Transaction:
        transaction, _ = self._update_versioned(
            self.TRANSACTIONS_TABLE, "transaction", Transaction, transaction_id, mutator
        )
        return transaction

    def delete_transaction(self, transaction_id: str) -> bool:
        return self.storage.delete(self.TRANSACTIONS_TABLE, transaction_id)

    def find_transactions(self, **filters) -> List[Transaction]:
        transactions = [Transaction.from_dict(d) for d in self.storage.find(self.TRANSACTIONS_TABLE, filters)]
        transactions.sort(key=lambda t: t.created_at)
        return transactions

    # Loans

    def insert_loan(self, loan: Loan) -> None:
        self.storage.save(self.LOANS_TABLE, loan.id, loan.to_dict())

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.LOANS_TABLE, loan_id)
        return Loan.from_dict(data) if data else None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if loan is None:
            raise NotFoundError("loan", loan_id)
        return loan

    def find_loans(self, **filters) -> List[Loan]:
        loans = [Loan.from_dict(d) for d in self.storage.find(self.LOANS_TABLE, filters)]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    def update_loan(self, loan_id: str, mutator: Callable[[Loan], Any]) -> Loan:
        """
        Versioned loan update. After the mutator runs the outstanding balance
        must be non-negative, a running loan must not sit at zero, and any
        status change must be one LOAN_TRANSITIONS allows.
        """
        def checked(loan: Loan):
            status_before = loan.status
            outcome = mutator(loan)
            if loan.status != status_before:
                if loan.status not in LOAN_TRANSITIONS[status_before]:
                    raise InvalidStateError(
                        f"Loan {loan_id} cannot move from {status_before.value} to {loan.status.value}"
                    )
                if status_before == LoanStatus.PENDING and loan.status != LoanStatus.REJECTED:
                    if loan.awaiting_guarantor:
                        raise GuarantorPendingError(
                            loan_id, loan.guarantor_status.value if loan.guarantor_status else None
                        )
            if loan.outstanding_balance.is_negative():
                raise InvalidStateError(f"Loan {loan_id} outstanding balance would go negative")
            if loan.outstanding_balance.is_zero() and loan.status.is_running:
                raise InvalidStateError(f"Loan {loan_id} has nothing outstanding but is still {loan.status.value}")
            return outcome

        loan, _ = self._update_versioned(self.LOANS_TABLE, "loan", Loan, loan_id, checked)
        return loan

    # Savings records

    def insert_savings_record(self, record: SavingsRecord) -> None:
        self.storage.save(self.SAVINGS_TABLE, record.id, record.to_dict())

    def find_savings_records(self, **filters) -> List[SavingsRecord]:
        records = [SavingsRecord.from_dict(d) for d in self.storage.find(self.SAVINGS_TABLE, filters)]
        records.sort(key=lambda r: r.week_start)
        return records

    # Welfare

    def insert_welfare_entry(self, entry: WelfareEntry) -> None:
        self.storage.save(self.WELFARE_TABLE, entry.id, entry.to_dict())

    def find_welfare_entries(self, **filters) -> List[WelfareEntry]:
        entries = [WelfareEntry.from_dict(d) for d in self.storage.find(self.WELFARE_TABLE, filters)]
        entries.sort(key=lambda e: (e.week_date, e.created_at))
        return entries

    # Overdue interest markers

    def has_overdue_charge(self, loan_id: str, period: str) -> bool:
        return self.storage.exists(self.OVERDUE_CHARGES_TABLE, OverdueInterestCharge.make_id(loan_id, period))

    def insert_overdue_charge(self, charge: OverdueInterestCharge) -> None:
        if self.storage.exists(self.OVERDUE_CHARGES_TABLE, charge.id):
            raise InvalidStateError(f"Overdue interest already charged for {charge.loan_id} in {charge.period}")
        self.storage.save(self.OVERDUE_CHARGES_TABLE, charge.id, charge.to_dict())

    def find_overdue_charges(self, **filters) -> List[OverdueInterestCharge]:
        charges = [OverdueInterestCharge.from_dict(d)
                   for d in self.storage.find(self.OVERDUE_CHARGES_TABLE, filters)]
        charges.sort(key=lambda c: c.period)
        return charges

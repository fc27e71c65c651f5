"""
Transaction Workflow Module

Member transactions move pending -> approved or pending -> rejected. Account
balances change exactly once, when a transaction is approved, and an approved
transaction that is later deleted is reversed exactly.

Loan repayments update the account, the loan and the transaction row in a
single atomic block; any failure leaves all three untouched.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING
import uuid

from .audit import AuditTrail, AuditEventType
from .currency import Money, as_money
from .errors import ValidationError, InvalidStateError
from .events import EventDispatcher, DomainEvent, create_transaction_event
from .ledger import (
    LedgerStore,
    Loan,
    LoanStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .loans import LoanManager


logger = get_logger("sacco.transactions")


# (balance sign, total_savings sign) applied on approval
BALANCE_EFFECTS: Dict[TransactionType, Tuple[int, int]] = {
    TransactionType.DEPOSIT: (1, 1),
    TransactionType.WITHDRAWAL: (-1, 0),
    TransactionType.LOAN_DISBURSEMENT: (1, 0),
    TransactionType.LOAN_REPAYMENT: (-1, 0),
}

LOAN_TRANSACTION_TYPES = frozenset({
    TransactionType.LOAN_DISBURSEMENT,
    TransactionType.LOAN_REPAYMENT,
})


def _parse_type(transaction_type) -> TransactionType:
    if isinstance(transaction_type, TransactionType):
        return transaction_type
    try:
        return TransactionType(transaction_type)
    except ValueError:
        raise ValidationError(f"Unknown transaction type: {transaction_type}")


class TransactionWorkflow:
    """
    Creates, approves, rejects and deletes member transactions.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.ledger = ledger
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        # Bound by LoanManager, which owns loan-side repayment effects
        self.loan_manager: Optional['LoanManager'] = None

    def publish(self, event_type: DomainEvent, transaction: Transaction) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(create_transaction_event(event_type, transaction))

    def _loans(self) -> 'LoanManager':
        if self.loan_manager is None:
            raise InvalidStateError("Loan transactions need a LoanManager bound to the workflow")
        return self.loan_manager

    def create(
        self,
        account_id: str,
        transaction_type,
        amount,
        description: str = "",
        loan_id: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Transaction:
        """
        Record a pending transaction.

        balance_after is a snapshot of the account balance at creation and
        is overwritten with the real figure on approval.

        Raises:
            ValidationError: Non-positive amount, or a loan transaction with
                no loan_id or someone else's loan
            NotFoundError: Account or loan does not exist
        """
        transaction_type = _parse_type(transaction_type)
        account = self.ledger.require_account(account_id)
        try:
            amount = as_money(amount, account.currency)
        except ValueError as e:
            raise ValidationError(str(e))
        if not amount.is_positive():
            raise ValidationError("Transaction amount must be positive")

        if transaction_type in LOAN_TRANSACTION_TYPES:
            if not loan_id:
                raise ValidationError(f"A {transaction_type.value} transaction requires a loan_id")
            loan = self.ledger.require_loan(loan_id)
            if loan.account_id != account_id:
                raise ValidationError(f"Loan {loan_id} does not belong to account {account_id}")

        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_after=account.balance,
            description=description,
            loan_id=loan_id,
            created_by=created_by
        )
        with self.ledger.atomic():
            self.ledger.insert_transaction(transaction)
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_CREATED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "account_id": account_id,
                    "transaction_type": transaction_type.value,
                    "amount": amount.amount,
                    "loan_id": loan_id
                },
                user_id=created_by
            )

        log_action(logger, "info", "Transaction created", user_id=created_by,
                   action="create_transaction", resource=f"transaction:{transaction.id}",
                   extra={"type": transaction_type.value, "amount": str(amount.amount)})
        self.publish(DomainEvent.TRANSACTION_CREATED, transaction)
        return transaction

    def approve(self, transaction_id: str, approver_id: str) -> Transaction:
        """
        Approve a pending transaction and apply its balance effect.

        Raises:
            InvalidStateError: Transaction is not pending
            InsufficientFundsError: Withdrawal or repayment exceeds the balance
            BusyError: Account, loan or transaction stayed contended
        """
        loan_after: Optional[Loan] = None
        loan_status_before: Optional[LoanStatus] = None

        with self.ledger.atomic():
            transaction = self.ledger.require_transaction(transaction_id)
            if transaction.status != TransactionStatus.PENDING:
                raise InvalidStateError(
                    f"Transaction {transaction_id} is {transaction.status.value}, only pending can be approved"
                )

            balance_sign, savings_sign = BALANCE_EFFECTS[transaction.transaction_type]
            amount = transaction.amount
            change = self.ledger.apply_account_delta(
                transaction.account_id,
                amount * balance_sign,
                amount * savings_sign
            )

            outstanding_removed = None
            if transaction.transaction_type == TransactionType.LOAN_REPAYMENT:
                loan_after, loan_status_before, outstanding_removed = self._loans().record_repayment(
                    transaction.loan_id, amount
                )

            approved_at = datetime.now(timezone.utc)

            def mark_approved(record: Transaction) -> None:
                if record.status != TransactionStatus.PENDING:
                    raise InvalidStateError(f"Transaction {transaction_id} was already {record.status.value}")
                record.status = TransactionStatus.APPROVED
                record.approved_by = approver_id
                record.approved_at = approved_at
                record.balance_after = change.account.balance
                record.balance_delta = change.balance_applied
                record.savings_delta = change.savings_applied
                record.loan_outstanding_delta = outstanding_removed
                record.loan_status_before = loan_status_before

            transaction = self.ledger.update_transaction(transaction_id, mark_approved)
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_APPROVED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "account_id": transaction.account_id,
                    "transaction_type": transaction.transaction_type.value,
                    "amount": transaction.amount.amount,
                    "balance_after": transaction.balance_after.amount
                },
                user_id=approver_id
            )

        log_action(logger, "info", "Transaction approved", user_id=approver_id,
                   action="approve_transaction", resource=f"transaction:{transaction.id}",
                   extra={"balance_after": str(transaction.balance_after.amount)})
        self.publish(DomainEvent.TRANSACTION_APPROVED, transaction)

        if loan_after is not None and loan_after.status != loan_status_before:
            self._loans().announce_status_change(loan_after, loan_status_before, approver_id)

        return transaction

    def reject(self, transaction_id: str, approver_id: str) -> Transaction:
        """Reject a pending transaction; balances are not touched"""
        def mark_rejected(record: Transaction) -> None:
            if record.status != TransactionStatus.PENDING:
                raise InvalidStateError(
                    f"Transaction {transaction_id} is {record.status.value}, only pending can be rejected"
                )
            record.status = TransactionStatus.REJECTED
            record.approved_by = approver_id
            record.approved_at = datetime.now(timezone.utc)

        with self.ledger.atomic():
            transaction = self.ledger.update_transaction(transaction_id, mark_rejected)
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_REJECTED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={"account_id": transaction.account_id},
                user_id=approver_id
            )

        log_action(logger, "info", "Transaction rejected", user_id=approver_id,
                   action="reject_transaction", resource=f"transaction:{transaction.id}")
        self.publish(DomainEvent.TRANSACTION_REJECTED, transaction)
        return transaction

    def delete(self, transaction_id: str, deleted_by: Optional[str] = None) -> None:
        """
        Delete a transaction. An approved one is reversed first, using the
        deltas recorded at approval, so the account and loan end up exactly
        as if it had never been approved.

        Raises:
            InsufficientFundsError: Reversal would drive a balance negative
                (e.g. a deposit that has since been withdrawn)
        """
        loan_after: Optional[Loan] = None
        loan_status_before: Optional[LoanStatus] = None

        with self.ledger.atomic():
            transaction = self.ledger.require_transaction(transaction_id)

            if transaction.status == TransactionStatus.APPROVED:
                balance_sign, savings_sign = BALANCE_EFFECTS[transaction.transaction_type]
                amount = transaction.amount
                balance_applied = transaction.balance_delta
                if balance_applied is None:
                    balance_applied = amount * balance_sign
                savings_applied = transaction.savings_delta
                if savings_applied is None:
                    savings_applied = amount * savings_sign

                self.ledger.apply_account_delta(transaction.account_id, -balance_applied, -savings_applied)

                removed = transaction.loan_outstanding_delta
                if (transaction.transaction_type == TransactionType.LOAN_REPAYMENT
                        and removed is not None and removed.is_positive()):
                    loan_status_before = self.ledger.require_loan(transaction.loan_id).status
                    loan_after = self._loans().reverse_repayment(
                        transaction.loan_id, removed, transaction.loan_status_before
                    )

            self.ledger.delete_transaction(transaction_id)
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_DELETED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "account_id": transaction.account_id,
                    "transaction_type": transaction.transaction_type.value,
                    "amount": transaction.amount.amount,
                    "status": transaction.status.value,
                    "reversed": transaction.status == TransactionStatus.APPROVED
                },
                user_id=deleted_by
            )

        log_action(logger, "info", "Transaction deleted", user_id=deleted_by,
                   action="delete_transaction", resource=f"transaction:{transaction.id}",
                   extra={"status": transaction.status.value})
        self.publish(DomainEvent.TRANSACTION_DELETED, transaction)

        if loan_after is not None and loan_after.status != loan_status_before:
            self._loans().announce_status_change(loan_after, loan_status_before, deleted_by)

    def set_receipt_number(self, transaction_id: str, receipt_number: str,
                           set_by: Optional[str] = None) -> Transaction:
        """Attach a receipt number; allowed in any status"""
        def assign(record: Transaction) -> None:
            record.receipt_number = receipt_number

        with self.ledger.atomic():
            transaction = self.ledger.update_transaction(transaction_id, assign)
            self.audit_trail.log_event(
                event_type=AuditEventType.RECEIPT_NUMBER_SET,
                entity_type="transaction",
                entity_id=transaction_id,
                metadata={"receipt_number": receipt_number},
                user_id=set_by
            )
        return transaction

    def record_approved_withdrawal(
        self,
        account_id: str,
        amount: Money,
        description: str,
        approver_id: Optional[str],
        clamp: bool = True,
        reduce_savings: bool = True,
        publish: bool = True
    ) -> Transaction:
        """
        Deduct from an account and write an already-approved withdrawal.

        Used for system charges such as welfare. With clamp the balances
        floor at zero and the recorded deltas reflect what was really taken.
        Callers that wrap this in a larger atomic block pass publish=False
        and publish once their block has committed.
        """
        with self.ledger.atomic():
            change = self.ledger.apply_account_delta(
                account_id,
                -amount,
                -amount if reduce_savings else Money.zero(amount.currency),
                clamp=clamp
            )
            now = datetime.now(timezone.utc)
            transaction = Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_id=account_id,
                transaction_type=TransactionType.WITHDRAWAL,
                amount=amount,
                balance_after=change.account.balance,
                description=description,
                status=TransactionStatus.APPROVED,
                created_by=approver_id,
                approved_by=approver_id,
                approved_at=now,
                balance_delta=change.balance_applied,
                savings_delta=change.savings_applied
            )
            self.ledger.insert_transaction(transaction)

        if publish:
            self.publish(DomainEvent.TRANSACTION_APPROVED, transaction)
        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self.ledger.get_transaction(transaction_id)

    def list_transactions(
        self,
        account_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        transaction_type: Optional[TransactionType] = None,
        loan_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Transaction]:
        """
        Transactions in creation order, optionally filtered. start and end
        bound created_at inclusively; a bare date for end covers that whole day.
        """
        filters = {}
        if account_id:
            filters["account_id"] = account_id
        if status:
            filters["status"] = TransactionStatus(status).value
        if transaction_type:
            filters["transaction_type"] = _parse_type(transaction_type).value
        if loan_id:
            filters["loan_id"] = loan_id

        transactions = self.ledger.find_transactions(**filters)

        if start is not None:
            if not isinstance(start, datetime):
                start = datetime(start.year, start.month, start.day, tzinfo=timezone.utc)
            transactions = [t for t in transactions if t.created_at >= start]
        if end is not None:
            if isinstance(end, datetime):
                transactions = [t for t in transactions if t.created_at <= end]
            else:
                transactions = [t for t in transactions if t.created_at.date() <= end]
        return transactions

    def get_pending_transactions(self, account_id: Optional[str] = None) -> List[Transaction]:
        return self.list_transactions(account_id=account_id, status=TransactionStatus.PENDING)

    def total_approved_repayments(self, loan_id: str) -> Money:
        """Sum of approved repayment transactions against a loan"""
        loan = self.ledger.require_loan(loan_id)
        total = Money.zero(loan.currency)
        for transaction in self.list_transactions(
            loan_id=loan_id,
            status=TransactionStatus.APPROVED,
            transaction_type=TransactionType.LOAN_REPAYMENT
        ):
            total = total + transaction.amount
        return total

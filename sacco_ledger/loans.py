"""
Loan Lifecycle Module

Loans move through application, guarantor consent, admin approval,
disbursement and repayment:

    pending -> approved | rejected
    approved -> active/disbursed
    active/disbursed -> fully_paid/completed   (repayments reach zero)

A loan with a guarantor cannot be approved until that guarantor has agreed.
Interest is flat on principal; see the interest module.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
import uuid

from .audit import AuditTrail, AuditEventType
from .config import SaccoConfig, get_config
from .currency import Money, as_money
from .eligibility import EligibilityEvaluator
from .errors import (
    AuthorizationError,
    GuarantorPendingError,
    InvalidStateError,
    ValidationError,
)
from .events import EventDispatcher, EventPayload, DomainEvent, create_loan_status_event
from .identity import Caller
from .interest import (
    RepaymentSchedule,
    RepaymentSplit,
    accrued_interest,
    build_schedule,
    current_outstanding,
    repayment_split,
    to_utc_datetime,
)
from .ledger import GuarantorStatus, LedgerStore, Loan, LoanStatus, Transaction, TransactionType
from .logging_config import get_logger, log_action
from .reminders import ReminderManager
from .transactions import TransactionWorkflow


logger = get_logger("sacco.loans")


STATUS_AUDIT_EVENTS = {
    LoanStatus.APPROVED: AuditEventType.LOAN_APPROVED,
    LoanStatus.ACTIVE: AuditEventType.LOAN_APPROVED,
    LoanStatus.REJECTED: AuditEventType.LOAN_REJECTED,
    LoanStatus.DISBURSED: AuditEventType.LOAN_DISBURSED,
    LoanStatus.FULLY_PAID: AuditEventType.LOAN_PAID,
    LoanStatus.COMPLETED: AuditEventType.LOAN_PAID,
}


class LoanManager:
    """
    Loan applications, approvals, disbursement and repayment bookkeeping
    """

    def __init__(
        self,
        ledger: LedgerStore,
        transactions: TransactionWorkflow,
        eligibility: EligibilityEvaluator,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None,
        reminders: Optional[ReminderManager] = None,
        config: Optional[SaccoConfig] = None
    ):
        self.ledger = ledger
        self.transactions = transactions
        self.eligibility = eligibility
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.reminders = reminders
        self.config = config or get_config()

        # Repayment approval and reversal call back into this manager
        transactions.loan_manager = self

    def apply(
        self,
        account_id: str,
        amount,
        repayment_months: Optional[int] = None,
        guarantor_account_id: Optional[str] = None,
        enforce_eligibility: Optional[bool] = None,
        applied_by: Optional[str] = None
    ) -> Loan:
        """
        Submit a loan application.

        The total starts at one month's interest on the principal. Savings
        eligibility and the maximum amount are only enforced when
        enforce_eligibility (or the enforce_loan_eligibility setting) is on;
        the maximum is recorded on the loan either way.

        Raises:
            ValidationError: Bad amount or term, ineligible member, amount
                above the maximum, or a guarantor who may not guarantee
            NotFoundError: Account does not exist
        """
        account = self.ledger.require_account(account_id)
        try:
            amount = as_money(amount, account.currency)
        except ValueError as e:
            raise ValidationError(str(e))
        if not amount.is_positive():
            raise ValidationError("Loan amount must be positive")

        if repayment_months is None:
            repayment_months = self.config.default_repayment_months
        if repayment_months < 1:
            raise ValidationError("Repayment period must be at least one month")

        report = self.eligibility.check_eligibility(account_id)
        if enforce_eligibility is None:
            enforce_eligibility = self.config.enforce_loan_eligibility
        if enforce_eligibility:
            if not report.is_eligible:
                raise ValidationError(
                    f"Account {account_id} has {report.qualifying_weeks} qualifying savings weeks, "
                    f"{report.required_weeks} required"
                )
            if amount > report.max_loan_amount:
                raise ValidationError(
                    f"Maximum loan amount is {report.max_loan_amount.to_string()} "
                    f"({self.config.max_loan_multiplier}x savings)"
                )

        if guarantor_account_id is not None:
            self._check_guarantor(guarantor_account_id, account_id)

        rate = self.config.decimal("default_interest_rate")
        total = amount + amount * (rate / Decimal('100'))
        now = datetime.now(timezone.utc)

        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            amount=amount,
            interest_rate=rate,
            repayment_months=repayment_months,
            total_amount=total,
            outstanding_balance=total,
            status=LoanStatus.PENDING,
            guarantor_account_id=guarantor_account_id,
            guarantor_status=GuarantorStatus.PENDING if guarantor_account_id else None,
            max_loan_amount=report.max_loan_amount
        )
        with self.ledger.atomic():
            self.ledger.insert_loan(loan)
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_APPLIED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "account_id": account_id,
                    "amount": amount.amount,
                    "interest_rate": rate,
                    "repayment_months": repayment_months,
                    "guarantor_account_id": guarantor_account_id
                },
                user_id=applied_by
            )

        log_action(logger, "info", "Loan application submitted", user_id=applied_by,
                   action="apply_loan", resource=f"loan:{loan.id}",
                   extra={"amount": str(amount.amount), "repayment_months": repayment_months})
        if guarantor_account_id:
            self._publish_guarantor_request(loan)
        return loan

    def _check_guarantor(self, guarantor_account_id: str, applicant_account_id: str) -> None:
        self.ledger.require_account(guarantor_account_id)
        if not self.eligibility.can_guarantee(guarantor_account_id, applicant_account_id):
            raise ValidationError(
                f"Account {guarantor_account_id} cannot guarantee account {applicant_account_id}: "
                f"a guarantor needs savings at least equal to the applicant's and no loan already guaranteed"
            )

    def _publish_guarantor_request(self, loan: Loan) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=DomainEvent.LOAN_GUARANTOR_REQUESTED,
                entity_type="loan",
                entity_id=loan.id,
                data={
                    "account_id": loan.account_id,
                    "guarantor_account_id": loan.guarantor_account_id,
                    "amount": str(loan.amount.amount)
                }
            ))

    def assign_guarantor(self, loan_id: str, guarantor_account_id: str,
                         assigned_by: Optional[str] = None) -> Loan:
        """Name a guarantor for a pending loan; consent starts pending"""
        loan = self.ledger.require_loan(loan_id)
        if loan.status != LoanStatus.PENDING:
            raise InvalidStateError(f"Loan {loan_id} is {loan.status.value}, guarantors change only while pending")
        self._check_guarantor(guarantor_account_id, loan.account_id)

        def assign(record: Loan) -> None:
            if record.status != LoanStatus.PENDING:
                raise InvalidStateError(f"Loan {loan_id} is no longer pending")
            record.guarantor_account_id = guarantor_account_id
            record.guarantor_status = GuarantorStatus.PENDING

        with self.ledger.atomic():
            loan = self.ledger.update_loan(loan_id, assign)
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_GUARANTOR_ASSIGNED,
                entity_type="loan",
                entity_id=loan_id,
                metadata={"guarantor_account_id": guarantor_account_id},
                user_id=assigned_by
            )

        self._publish_guarantor_request(loan)
        return loan

    def guarantor_respond(self, loan_id: str, guarantor_account_id: str, decision,
                          caller: Optional[Caller] = None) -> Loan:
        """
        Record the guarantor's answer.

        Raises:
            AuthorizationError: Caller does not own guarantor_account_id, or
                it is not the loan's designated guarantor
            InvalidStateError: The guarantor has already answered
        """
        if caller is not None:
            caller.require_account_access(guarantor_account_id, "respond as guarantor")
        try:
            decision = GuarantorStatus(decision)
        except ValueError:
            raise ValidationError(f"Unknown guarantor decision: {decision}")
        if decision == GuarantorStatus.PENDING:
            raise ValidationError("Guarantor decision must be approved or rejected")

        def respond(record: Loan) -> None:
            if record.guarantor_account_id != guarantor_account_id:
                raise AuthorizationError(
                    f"Account {guarantor_account_id} is not the guarantor of loan {loan_id}"
                )
            if record.guarantor_status != GuarantorStatus.PENDING:
                raise InvalidStateError(
                    f"Guarantor already responded to loan {loan_id}: {record.guarantor_status.value}"
                )
            record.guarantor_status = decision

        user_id = caller.user_id if caller else None
        with self.ledger.atomic():
            loan = self.ledger.update_loan(loan_id, respond)
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_GUARANTOR_RESPONDED,
                entity_type="loan",
                entity_id=loan_id,
                metadata={"guarantor_account_id": guarantor_account_id, "decision": decision.value},
                user_id=user_id
            )

        log_action(logger, "info", "Guarantor responded", user_id=user_id,
                   action="guarantor_respond", resource=f"loan:{loan_id}",
                   extra={"decision": decision.value})
        return loan

    def approve(self, loan_id: str, approver_id: str) -> Loan:
        """
        Approve a pending loan. It becomes active and waits for disbursement.

        Raises:
            InvalidStateError: Loan is not pending
            GuarantorPendingError: A guarantor is assigned and has not approved
        """
        approved_at = datetime.now(timezone.utc)

        def approve(record: Loan) -> None:
            if record.status != LoanStatus.PENDING:
                raise InvalidStateError(
                    f"Loan {loan_id} is {record.status.value}, only pending loans can be approved"
                )
            if record.awaiting_guarantor:
                raise GuarantorPendingError(
                    loan_id, record.guarantor_status.value if record.guarantor_status else None
                )
            record.status = LoanStatus.ACTIVE
            record.approved_by = approver_id
            record.approved_at = approved_at

        loan = self.ledger.update_loan(loan_id, approve)
        self.announce_status_change(loan, LoanStatus.PENDING, approver_id)
        return loan

    def reject(self, loan_id: str, approver_id: str) -> Loan:
        def reject(record: Loan) -> None:
            if record.status != LoanStatus.PENDING:
                raise InvalidStateError(
                    f"Loan {loan_id} is {record.status.value}, only pending loans can be rejected"
                )
            record.status = LoanStatus.REJECTED
            record.approved_by = approver_id
            record.approved_at = datetime.now(timezone.utc)

        loan = self.ledger.update_loan(loan_id, reject)
        self.announce_status_change(loan, LoanStatus.PENDING, approver_id)
        return loan

    def disburse(self, loan_id: str, disbursed_by: Optional[str] = None) -> Transaction:
        """
        Mark a loan disbursed and raise the pending loan_disbursement
        transaction that will credit the member once approved.

        Raises:
            InvalidStateError: Loan is not approved, or already disbursed
        """
        with self.ledger.atomic():
            previous = self.ledger.require_loan(loan_id).status

            def disburse(record: Loan) -> None:
                ready = (record.status == LoanStatus.APPROVED
                         or (record.status == LoanStatus.ACTIVE and record.disbursed_at is None))
                if not ready:
                    raise InvalidStateError(
                        f"Loan {loan_id} is {record.status.value}"
                        f"{' and already disbursed' if record.disbursed_at else ''}, cannot disburse"
                    )
                record.disbursed_at = datetime.now(timezone.utc)
                record.status = LoanStatus.DISBURSED

            loan = self.ledger.update_loan(loan_id, disburse)
            transaction = self.transactions.create(
                account_id=loan.account_id,
                transaction_type=TransactionType.LOAN_DISBURSEMENT,
                amount=loan.amount,
                description="Loan disbursement",
                loan_id=loan.id,
                created_by=disbursed_by
            )

        self.announce_status_change(loan, previous, disbursed_by)
        return transaction

    def edit_details(
        self,
        loan_id: str,
        repayment_months: Optional[int] = None,
        disbursed_at=None,
        guarantor_account_id: Optional[str] = None,
        editor_id: Optional[str] = None,
        as_of=None
    ) -> Loan:
        """
        Admin edit of term, disbursement date or guarantor.

        Total and outstanding are recomputed from accrued interest less
        approved repayments. For a running or paid loan the status follows:
        nothing owed means fully_paid, otherwise a disbursed loan is
        disbursed. A pending or rejected loan keeps its status.
        """
        if repayment_months is not None and repayment_months < 1:
            raise ValidationError("Repayment period must be at least one month")

        current = self.ledger.require_loan(loan_id)
        if disbursed_at is not None and current.disbursed_at is None:
            raise InvalidStateError(
                f"Loan {loan_id} is {current.status.value} and not yet disbursed, "
                f"its disbursement date is set by disburse"
            )
        if guarantor_account_id is not None and guarantor_account_id != current.guarantor_account_id:
            self._check_guarantor(guarantor_account_id, current.account_id)

        with self.ledger.atomic():
            total_repaid = self.transactions.total_approved_repayments(loan_id)

            def edit(record: Loan) -> None:
                if repayment_months is not None:
                    record.repayment_months = repayment_months
                if disbursed_at is not None:
                    record.disbursed_at = to_utc_datetime(disbursed_at)
                if guarantor_account_id is not None and guarantor_account_id != record.guarantor_account_id:
                    record.guarantor_account_id = guarantor_account_id
                    record.guarantor_status = GuarantorStatus.PENDING

                balance = current_outstanding(
                    record.amount, record.interest_rate, record.disbursed_at, total_repaid, as_of
                )
                record.total_amount = balance.total_amount
                record.outstanding_balance = balance.outstanding
                if not (record.status.is_running or record.status.is_paid):
                    return
                if balance.outstanding.is_zero():
                    record.status = LoanStatus.FULLY_PAID
                elif record.disbursed_at is not None:
                    record.status = LoanStatus.DISBURSED
                elif record.status.is_paid:
                    record.status = LoanStatus.ACTIVE

            loan = self.ledger.update_loan(loan_id, edit)
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_EDITED,
                entity_type="loan",
                entity_id=loan_id,
                metadata={
                    "repayment_months": loan.repayment_months,
                    "disbursed_at": loan.disbursed_at,
                    "guarantor_account_id": loan.guarantor_account_id,
                    "total_amount": loan.total_amount.amount,
                    "outstanding_balance": loan.outstanding_balance.amount
                },
                user_id=editor_id
            )

        if loan.status != current.status:
            self.announce_status_change(loan, current.status, editor_id)
        return loan

    def record_repayment(self, loan_id: str, amount: Money) -> Tuple[Loan, LoanStatus, Money]:
        """
        Reduce the outstanding balance for an approved repayment.

        Called inside the workflow's atomic block. Returns the updated loan,
        its status before, and the amount actually taken off the outstanding
        balance (a repayment larger than what is owed stops at zero).
        """
        captured = {}

        def repay(record: Loan) -> None:
            if not record.status.is_running:
                raise InvalidStateError(
                    f"Loan {loan_id} is {record.status.value}, repayments apply to disbursed loans only"
                )
            captured["status"] = record.status
            removed = min(amount, record.outstanding_balance)
            captured["removed"] = removed
            record.outstanding_balance = record.outstanding_balance - removed
            if record.outstanding_balance.is_zero():
                record.status = LoanStatus.FULLY_PAID

        loan = self.ledger.update_loan(loan_id, repay)
        return loan, captured["status"], captured["removed"]

    def reverse_repayment(self, loan_id: str, amount: Money,
                          status_before: Optional[LoanStatus]) -> Loan:
        """Undo record_repayment; a paid loan goes back to its earlier status"""
        def restore(record: Loan) -> None:
            record.outstanding_balance = record.outstanding_balance + amount
            if record.outstanding_balance > record.total_amount:
                record.total_amount = record.outstanding_balance
            if record.status.is_paid and record.outstanding_balance.is_positive():
                if status_before is not None and status_before.is_running:
                    record.status = status_before
                else:
                    record.status = LoanStatus.DISBURSED

        return self.ledger.update_loan(loan_id, restore)

    def announce_status_change(self, loan: Loan, previous_status: Optional[LoanStatus],
                               actor_id: Optional[str] = None) -> None:
        """Audit, log, publish LOAN_STATUS_CHANGED and leave the member a reminder"""
        account = self.ledger.get_account(loan.account_id)

        self.audit_trail.log_event(
            event_type=STATUS_AUDIT_EVENTS.get(loan.status, AuditEventType.LOAN_EDITED),
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "previous_status": previous_status,
                "status": loan.status,
                "outstanding_balance": loan.outstanding_balance.amount
            },
            user_id=actor_id
        )
        log_action(logger, "info", "Loan status changed", user_id=actor_id,
                   action="loan_status_changed", resource=f"loan:{loan.id}",
                   extra={
                       "from": previous_status.value if previous_status else None,
                       "to": loan.status.value
                   })

        if self._event_dispatcher:
            self._event_dispatcher.publish(create_loan_status_event(loan, account, previous_status))
        if self.reminders and self.config.enable_loan_status_reminders:
            self.reminders.create_loan_status_reminder(loan, account, created_by=actor_id)

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        return self.ledger.get_loan(loan_id)

    def list_loans(self, account_id: Optional[str] = None, status=None) -> List[Loan]:
        filters = {}
        if account_id:
            filters["account_id"] = account_id
        if status:
            filters["status"] = LoanStatus(status).value
        return self.ledger.find_loans(**filters)

    def get_guarantor_requests(self, guarantor_account_id: str) -> List[Loan]:
        """Loans waiting on this account's consent as guarantor"""
        return self.ledger.find_loans(
            guarantor_account_id=guarantor_account_id,
            guarantor_status=GuarantorStatus.PENDING.value
        )

    def get_schedule(self, loan_id: str, as_of=None) -> RepaymentSchedule:
        loan = self.ledger.require_loan(loan_id)
        return build_schedule(
            principal=loan.amount,
            monthly_rate_percent=loan.interest_rate,
            disbursed_at=loan.disbursed_at,
            planned_months=loan.repayment_months,
            total_repaid=self.transactions.total_approved_repayments(loan_id),
            as_of=as_of
        )

    def get_repayment_breakdown(self, loan_id: str, amount, as_of=None) -> RepaymentSplit:
        """How a repayment of amount would divide between principal and interest"""
        loan = self.ledger.require_loan(loan_id)
        accrual = accrued_interest(loan.amount, loan.interest_rate, loan.disbursed_at, as_of)
        return repayment_split(as_money(amount, loan.currency), loan.amount, accrual.interest)

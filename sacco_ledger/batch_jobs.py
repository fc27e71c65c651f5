"""
Batch Jobs Module

Periodic mutations run by an administrator or a scheduler on their behalf:

- weekly welfare deduction across every account
- monthly overdue penalty on loans past their repayment period

A failure on one account or loan is logged and counted and never stops the
run. Each item is applied atomically on its own.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .config import SaccoConfig, get_config
from .errors import AuthorizationError, InvalidStateError
from .events import EventDispatcher, EventPayload, DomainEvent
from .identity import Caller
from .interest import add_months, to_utc_datetime
from .ledger import LedgerStore, Loan, OverdueInterestCharge
from .logging_config import get_logger, log_action
from .savings import week_bounds
from .welfare import WelfareManager


logger = get_logger("sacco.batch")


@dataclass
class BatchResult:
    """Outcome of one batch run"""
    job: str
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def record_failure(self, entity_id: str, error: Exception) -> None:
        self.errors += 1
        self.failures.append({"id": entity_id, "error": str(error)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "processed": self.processed,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "failures": list(self.failures)
        }


class BatchJobRunner:
    """Runs the welfare and overdue-interest jobs"""

    def __init__(
        self,
        ledger: LedgerStore,
        welfare: WelfareManager,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None,
        config: Optional[SaccoConfig] = None
    ):
        self.ledger = ledger
        self.welfare = welfare
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.config = config or get_config()

    @staticmethod
    def _require_admin(run_by: Optional[Caller], job: str) -> Caller:
        if run_by is None:
            raise AuthorizationError(f"An administrator is required to run {job}")
        run_by.require_admin(f"run {job}")
        return run_by

    def _finish(self, result: BatchResult, run_by: Caller) -> BatchResult:
        self.audit_trail.log_event(
            event_type=AuditEventType.BATCH_JOB_RUN,
            entity_type="batch",
            entity_id=result.job,
            metadata=result.to_dict(),
            user_id=run_by.user_id
        )
        log_action(logger, "info", f"Batch job {result.job} finished", user_id=run_by.user_id,
                   action=result.job, extra=result.to_dict())
        return result

    def weekly_welfare_deduction(self, run_by: Optional[Caller] = None, as_of=None) -> BatchResult:
        """
        Charge every account the weekly welfare fee, dated to the start
        (Sunday) of the week containing as_of.

        Running it twice in a week charges twice.
        """
        run_by = self._require_admin(run_by, "weekly_welfare_deduction")
        today = to_utc_datetime(as_of) if as_of is not None else datetime.now(timezone.utc)
        week_start = week_bounds(today.date())[0]
        amount = self.config.decimal("weekly_welfare_amount")

        result = BatchResult(job="weekly_welfare_deduction")
        for account in self.ledger.list_accounts():
            try:
                self.welfare.charge(
                    account_id=account.id,
                    amount=amount,
                    week_date=week_start,
                    description=self.config.welfare_description,
                    charged_by=run_by.user_id
                )
                result.processed += 1
            except Exception as e:
                logger.error(f"Welfare deduction failed for account {account.id}: {e}")
                result.record_failure(account.id, e)

        return self._finish(result, run_by)

    def apply_overdue_interest(self, run_by: Optional[Caller] = None, as_of=None) -> BatchResult:
        """
        Add the overdue penalty (a percentage of principal) to every running
        loan past its expected end date, at most once per calendar month.
        """
        run_by = self._require_admin(run_by, "apply_overdue_interest")
        today = to_utc_datetime(as_of) if as_of is not None else datetime.now(timezone.utc)
        period = today.strftime("%Y-%m")
        rate = self.config.decimal("overdue_penalty_rate")

        result = BatchResult(job="apply_overdue_interest")
        for loan in self.ledger.find_loans():
            if not loan.status.is_running or not loan.outstanding_balance.is_positive():
                continue
            result.processed += 1

            if loan.disbursed_at is None:
                result.skipped += 1
                continue
            expected_end = add_months(loan.disbursed_at, loan.repayment_months)
            if today <= expected_end or self.ledger.has_overdue_charge(loan.id, period):
                result.skipped += 1
                continue

            try:
                charged = self._charge_overdue(loan, period, rate, run_by)
            except Exception as e:
                logger.error(f"Overdue interest failed for loan {loan.id}: {e}")
                result.record_failure(loan.id, e)
                continue

            result.updated += 1
            self._announce_overdue(charged, period)

        return self._finish(result, run_by)

    def _charge_overdue(self, loan: Loan, period: str, rate: Decimal,
                        run_by: Caller) -> OverdueInterestCharge:
        penalty = loan.amount * (rate / Decimal('100'))
        now = datetime.now(timezone.utc)
        charge = OverdueInterestCharge(
            id=OverdueInterestCharge.make_id(loan.id, period),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            period=period,
            amount=penalty
        )

        def add_penalty(record: Loan) -> None:
            if not record.status.is_running:
                raise InvalidStateError(f"Loan {record.id} is {record.status.value}")
            record.outstanding_balance = record.outstanding_balance + penalty
            record.total_amount = record.total_amount + penalty

        with self.ledger.atomic():
            self.ledger.insert_overdue_charge(charge)
            self.ledger.update_loan(loan.id, add_penalty)
            self.audit_trail.log_event(
                event_type=AuditEventType.OVERDUE_INTEREST_APPLIED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"period": period, "amount": penalty.amount},
                user_id=run_by.user_id
            )
        return charge

    def _announce_overdue(self, charge: OverdueInterestCharge, period: str) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=DomainEvent.OVERDUE_INTEREST_APPLIED,
                entity_type="loan",
                entity_id=charge.loan_id,
                data={"period": period, "amount": str(charge.amount.amount)}
            ))

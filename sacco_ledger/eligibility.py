"""
Loan Eligibility Module

Decides whether a member may borrow, how much, and who may guarantee them.

A member is eligible after saving at least the weekly minimum in each of the
required number of recent weeks. The maximum loan is a multiple of their
total savings. A guarantor must have saved at least as much as the applicant
and must not already be backing a loan that is still owed.
"""

from dataclasses import dataclass
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Union

from .config import SaccoConfig, get_config
from .currency import Money
from .ledger import (
    Account,
    GuarantorStatus,
    LedgerStore,
    GUARANTEE_HOLDING_STATUSES,
)


@dataclass(frozen=True)
class EligibilityReport:
    is_eligible: bool
    qualifying_weeks: int
    required_weeks: int
    total_savings: Money
    max_loan_amount: Money


def _as_date(value: Optional[Union[datetime, date]]) -> date:
    if value is None:
        return datetime.now(timezone.utc).date()
    if isinstance(value, datetime):
        return value.date()
    return value


class EligibilityEvaluator:
    """Loan eligibility and guarantor selection rules"""

    def __init__(self, ledger: LedgerStore, config: Optional[SaccoConfig] = None):
        self.ledger = ledger
        self.config = config or get_config()

    @property
    def min_weekly_savings(self) -> Decimal:
        return self.config.decimal("eligibility_min_weekly_savings")

    def qualifying_weeks(self, account_id: str, as_of=None) -> int:
        """Distinct recent weeks in which the member saved at least the minimum"""
        window_start = _as_date(as_of) - timedelta(days=self.config.eligibility_window_days)
        weeks = {
            record.week_start
            for record in self.ledger.find_savings_records(account_id=account_id)
            if record.week_start >= window_start and record.amount.amount >= self.min_weekly_savings
        }
        return len(weeks)

    def loan_eligible(self, account_id: str, as_of=None) -> bool:
        self.ledger.require_account(account_id)
        return self.qualifying_weeks(account_id, as_of) >= self.config.eligibility_required_weeks

    def max_loan_amount(self, account: Account) -> Money:
        return account.total_savings * self.config.decimal("max_loan_multiplier")

    def check_eligibility(self, account_id: str, as_of=None) -> EligibilityReport:
        account = self.ledger.require_account(account_id)
        weeks = self.qualifying_weeks(account_id, as_of)
        return EligibilityReport(
            is_eligible=weeks >= self.config.eligibility_required_weeks,
            qualifying_weeks=weeks,
            required_weeks=self.config.eligibility_required_weeks,
            total_savings=account.total_savings,
            max_loan_amount=self.max_loan_amount(account)
        )

    def _busy_guarantors(self) -> set:
        """Accounts currently guaranteeing a loan that is still owed"""
        busy = set()
        for loan in self.ledger.find_loans():
            if (loan.guarantor_account_id
                    and loan.guarantor_status != GuarantorStatus.REJECTED
                    and loan.status in GUARANTEE_HOLDING_STATUSES
                    and loan.outstanding_balance.is_positive()):
                busy.add(loan.guarantor_account_id)
        return busy

    def guarantor_candidates(self, applicant_account_id: str) -> List[Account]:
        """
        Accounts that may guarantee the applicant, ordered by account number.
        """
        applicant = self.ledger.require_account(applicant_account_id)
        busy = self._busy_guarantors()
        return [
            account for account in self.ledger.list_accounts()
            if account.id != applicant.id
            and account.total_savings >= applicant.total_savings
            and account.id not in busy
        ]

    def can_guarantee(self, candidate_account_id: str, applicant_account_id: str) -> bool:
        return any(
            account.id == candidate_account_id
            for account in self.guarantor_candidates(applicant_account_id)
        )

"""
Test suite for loan eligibility and guarantor selection
"""

import pytest
from decimal import Decimal
from datetime import date

from sacco_ledger.config import SaccoConfig
from sacco_ledger.currency import Money, Currency
from sacco_ledger.errors import NotFoundError
from sacco_ledger.storage import InMemoryStorage
from sacco_ledger.system import SaccoSystem


def ugx(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.UGX)


AS_OF = date(2024, 3, 30)  # a Saturday


class TestEligibilityEvaluator:

    def setup_method(self):
        """Set up test fixtures"""
        self.system = SaccoSystem(storage=InMemoryStorage(), config=SaccoConfig(currency="UGX"))
        self.evaluator = self.system.eligibility
        self.savings = self.system.savings_manager

        accounts = self.system.account_manager
        self.applicant = accounts.create_account("user_a", "Applicant", account_number="ACC0001")
        self.richer = accounts.create_account("user_b", "Richer Member", account_number="ACC0003")
        self.equal = accounts.create_account("user_c", "Equal Member", account_number="ACC0002")
        self.poorer = accounts.create_account("user_d", "Poorer Member", account_number="ACC0004")

        for account, amount in ((self.applicant, 50000), (self.richer, 80000),
                                (self.equal, 50000), (self.poorer, 10000)):
            deposit = self.system.transactions.create(account.id, "deposit", amount)
            self.system.transactions.approve(deposit.id, "admin_1")

    def _save_weeks(self, account_id, days, amount=10000):
        for day in days:
            self.savings.record_weekly_savings(account_id, amount, week_of=day)

    def test_four_recent_weeks_qualify(self):
        self._save_weeks(self.applicant.id, [
            date(2024, 3, 27), date(2024, 3, 20), date(2024, 3, 13), date(2024, 3, 6)
        ])

        assert self.evaluator.qualifying_weeks(self.applicant.id, AS_OF) == 4
        assert self.evaluator.loan_eligible(self.applicant.id, AS_OF)

    def test_small_old_and_repeated_weeks_do_not_count(self):
        self._save_weeks(self.applicant.id, [date(2024, 3, 27), date(2024, 3, 20), date(2024, 3, 13)])
        # Second record in an already-counted week
        self._save_weeks(self.applicant.id, [date(2024, 3, 28)])
        # Below the weekly minimum
        self._save_weeks(self.applicant.id, [date(2024, 3, 6)], amount=9999)
        # Week starts before the 28-day window
        self._save_weeks(self.applicant.id, [date(2024, 2, 28)])

        assert self.evaluator.qualifying_weeks(self.applicant.id, AS_OF) == 3
        assert not self.evaluator.loan_eligible(self.applicant.id, AS_OF)

    def test_check_eligibility_report(self):
        self._save_weeks(self.applicant.id, [date(2024, 3, 27), date(2024, 3, 20)])

        report = self.evaluator.check_eligibility(self.applicant.id, AS_OF)

        assert not report.is_eligible
        assert report.qualifying_weeks == 2
        assert report.required_weeks == 4
        assert report.total_savings == ugx(50000)
        assert report.max_loan_amount == ugx(150000)

    def test_thresholds_are_configurable(self):
        config = SaccoConfig(
            currency="UGX",
            eligibility_required_weeks=2,
            eligibility_min_weekly_savings="5000",
            max_loan_multiplier="2"
        )
        system = SaccoSystem(storage=InMemoryStorage(), config=config)
        account = system.account_manager.create_account("user_e", "Small Saver")
        for day in (date(2024, 3, 27), date(2024, 3, 20)):
            system.savings_manager.record_weekly_savings(account.id, 5000, week_of=day)

        report = system.eligibility.check_eligibility(account.id, AS_OF)
        assert report.is_eligible
        assert report.max_loan_amount == ugx(0)

    def test_unknown_account(self):
        with pytest.raises(NotFoundError):
            self.evaluator.loan_eligible("missing")

    def test_guarantor_candidates_by_savings(self):
        candidates = self.evaluator.guarantor_candidates(self.applicant.id)

        # Applicant and the poorer member are excluded; ordered by account number
        assert [a.account_number for a in candidates] == ["ACC0002", "ACC0003"]
        assert self.evaluator.can_guarantee(self.richer.id, self.applicant.id)
        assert not self.evaluator.can_guarantee(self.poorer.id, self.applicant.id)
        assert not self.evaluator.can_guarantee(self.applicant.id, self.applicant.id)

    def test_active_guarantor_is_excluded(self):
        loan = self.system.loan_manager.apply(self.equal.id, 40000, guarantor_account_id=self.richer.id)

        candidates = self.evaluator.guarantor_candidates(self.applicant.id)
        assert [a.id for a in candidates] == [self.equal.id]

        # A rejected loan frees its guarantor
        self.system.loan_manager.reject(loan.id, "admin_1")
        assert self.evaluator.can_guarantee(self.richer.id, self.applicant.id)

    def test_guarantor_who_declined_is_free(self):
        loan = self.system.loan_manager.apply(self.equal.id, 40000, guarantor_account_id=self.richer.id)
        self.system.loan_manager.guarantor_respond(loan.id, self.richer.id, "rejected")

        assert self.evaluator.can_guarantee(self.richer.id, self.applicant.id)

"""
Interest Calculator Module

Flat monthly interest on loan principal, proportional repayment allocation
and repayment schedules. Pure functions, no storage access.

Interest accrues per started 30-day period since disbursement, with a minimum
of one month once a loan has been disbursed:

    months   = max(1, ceil(days_since_disbursement / 30))
    interest = principal x rate/100 x months
"""

import calendar
import math
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import List, Optional, Union

from .currency import Money


DateLike = Union[datetime, date]

DAYS_PER_INTEREST_MONTH = 30


@dataclass(frozen=True)
class InterestAccrual:
    """Interest accrued on a loan up to a point in time"""
    months_elapsed: int
    interest: Money
    total_amount: Money


@dataclass(frozen=True)
class OutstandingBalance:
    months_elapsed: int
    interest: Money
    total_amount: Money
    outstanding: Money


@dataclass(frozen=True)
class RepaymentSplit:
    """How one repayment divides between principal and interest"""
    principal_portion: Money
    interest_portion: Money


@dataclass(frozen=True)
class ScheduleEntry:
    month: int
    due_date: datetime
    principal_portion: Money
    interest_portion: Money
    total_due: Money
    cumulative_interest: Money
    remaining_balance: Money


@dataclass(frozen=True)
class ScheduleSummary:
    months_elapsed: int
    current_interest: Money
    current_total: Money
    current_outstanding: Money


@dataclass(frozen=True)
class RepaymentSchedule:
    entries: List[ScheduleEntry] = field(default_factory=list)
    summary: Optional[ScheduleSummary] = None


def to_utc_datetime(value: DateLike) -> datetime:
    """Normalize a date or datetime to an aware UTC datetime"""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def days_between(start: DateLike, end: DateLike) -> int:
    """Whole days from start to end (negative if end is earlier)"""
    return (to_utc_datetime(end) - to_utc_datetime(start)).days


def add_months(value: DateLike, months: int) -> datetime:
    """
    Add calendar months, clamping the day to the target month's length
    (Jan 31 + 1 month -> Feb 28/29).
    """
    start = to_utc_datetime(value)
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def _rate_fraction(monthly_rate_percent: Union[Decimal, int, str]) -> Decimal:
    return Decimal(str(monthly_rate_percent)) / Decimal('100')


def _now(as_of: Optional[DateLike]) -> datetime:
    return to_utc_datetime(as_of) if as_of is not None else datetime.now(timezone.utc)


def accrued_interest(
    principal: Money,
    monthly_rate_percent: Decimal,
    disbursed_at: Optional[DateLike],
    as_of: Optional[DateLike] = None
) -> InterestAccrual:
    """
    Interest accrued on principal since disbursement.

    An undisbursed loan has accrued nothing: months 0, interest 0 and a
    total equal to the principal.
    """
    if disbursed_at is None:
        return InterestAccrual(
            months_elapsed=0,
            interest=Money.zero(principal.currency),
            total_amount=principal
        )

    days = days_between(disbursed_at, _now(as_of))
    months = max(1, math.ceil(days / DAYS_PER_INTEREST_MONTH))
    interest = principal * (_rate_fraction(monthly_rate_percent) * months)

    return InterestAccrual(
        months_elapsed=months,
        interest=interest,
        total_amount=principal + interest
    )


def current_outstanding(
    principal: Money,
    monthly_rate_percent: Decimal,
    disbursed_at: Optional[DateLike],
    total_repaid: Money,
    as_of: Optional[DateLike] = None
) -> OutstandingBalance:
    """Accrued total less repayments, never below zero"""
    accrual = accrued_interest(principal, monthly_rate_percent, disbursed_at, as_of)
    return OutstandingBalance(
        months_elapsed=accrual.months_elapsed,
        interest=accrual.interest,
        total_amount=accrual.total_amount,
        outstanding=(accrual.total_amount - total_repaid).clamp_at_zero()
    )


def repayment_split(repayment_amount: Money, principal: Money, total_interest: Money) -> RepaymentSplit:
    """
    Allocate a repayment proportionally to principal and interest.

    Each portion is rounded half-up to the currency's minor unit on its own,
    so the two may differ from the repayment by one unit.
    """
    total = principal + total_interest
    if not total.is_positive():
        return RepaymentSplit(
            principal_portion=repayment_amount,
            interest_portion=Money.zero(repayment_amount.currency)
        )

    principal_ratio = principal.amount / total.amount
    interest_ratio = total_interest.amount / total.amount

    return RepaymentSplit(
        principal_portion=Money(repayment_amount.amount * principal_ratio, repayment_amount.currency),
        interest_portion=Money(repayment_amount.amount * interest_ratio, repayment_amount.currency)
    )


def build_schedule(
    principal: Money,
    monthly_rate_percent: Decimal,
    disbursed_at: Optional[DateLike],
    planned_months: int,
    total_repaid: Optional[Money] = None,
    as_of: Optional[DateLike] = None
) -> RepaymentSchedule:
    """
    Build a flat-interest repayment schedule.

    Every month carries principal/planned_months of principal and
    principal x rate/100 of interest. Due dates count from disbursement, or
    from today for a loan that has not been disbursed yet. The summary
    reflects interest accrued so far.
    """
    if planned_months < 1:
        raise ValueError("planned_months must be at least 1")

    currency = principal.currency
    today = _now(as_of)
    start = to_utc_datetime(disbursed_at) if disbursed_at is not None else today
    total_repaid = total_repaid or Money.zero(currency)

    rate = _rate_fraction(monthly_rate_percent)
    monthly_principal = principal.amount / Decimal(planned_months)
    monthly_interest = principal.amount * rate

    entries = []
    for month in range(1, planned_months + 1):
        remaining = max(Decimal('0'), principal.amount - monthly_principal * month)
        entries.append(ScheduleEntry(
            month=month,
            due_date=add_months(start, month),
            principal_portion=Money(monthly_principal, currency),
            interest_portion=Money(monthly_interest, currency),
            total_due=Money(monthly_principal + monthly_interest, currency),
            cumulative_interest=Money(monthly_interest * month, currency),
            remaining_balance=Money(remaining, currency)
        ))

    months_elapsed = max(0, math.ceil(days_between(start, today) / DAYS_PER_INTEREST_MONTH))
    current_interest = principal.amount * rate * months_elapsed
    current_total = principal.amount + current_interest

    return RepaymentSchedule(
        entries=entries,
        summary=ScheduleSummary(
            months_elapsed=months_elapsed,
            current_interest=Money(current_interest, currency),
            current_total=Money(current_total, currency),
            current_outstanding=Money(max(Decimal('0'), current_total - total_repaid.amount), currency)
        )
    )

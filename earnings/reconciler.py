"""
Day/month rollover logic applied to an aggregate before a new valuation lands.

Both functions are pure with respect to time: callers pass the current boundary
keys, which keeps reconciliation idempotent and testable with a fixed clock.
Callers are responsible for holding the user's lock around ``reconcile``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from earnings.models import Period, UserAggregate


@dataclass(slots=True)
class ReconcileOutcome:
    day_rolled: bool = False
    month_rolled: bool = False
    day_skew: Optional[date] = None
    month_skew: Optional[date] = None

    @property
    def clock_skew(self) -> bool:
        return self.day_skew is not None or self.month_skew is not None


def reconcile(
    aggregate: UserAggregate,
    new_value: float,
    today: date,
    this_month: date,
) -> ReconcileOutcome:
    """Roll periods forward if needed, then apply ``new_value`` to the aggregate in place."""
    outcome = ReconcileOutcome()
    existed_before = aggregate.last_day_key is not None or aggregate.last_month_key is not None

    if aggregate.last_day_key is None or aggregate.last_day_key < today:
        aggregate.day_baseline_value = aggregate.current_portfolio_value if existed_before else new_value
        aggregate.day_profit = 0.0
        aggregate.trades_today = 0
        aggregate.last_day_key = today
        outcome.day_rolled = True
    elif aggregate.last_day_key > today:
        # Never roll backwards; keep the stored day and its baseline.
        outcome.day_skew = aggregate.last_day_key

    if aggregate.last_month_key is None or aggregate.last_month_key < this_month:
        aggregate.month_baseline_value = aggregate.current_portfolio_value if existed_before else new_value
        aggregate.month_profit = 0.0
        aggregate.last_month_key = this_month
        outcome.month_rolled = True
    elif aggregate.last_month_key > this_month:
        outcome.month_skew = aggregate.last_month_key

    aggregate.day_profit = new_value - aggregate.day_baseline_value
    aggregate.month_profit = new_value - aggregate.month_baseline_value
    aggregate.lifetime_profit = new_value - aggregate.initial_endowment
    if new_value != aggregate.current_portfolio_value:
        aggregate.previous_portfolio_value = aggregate.current_portfolio_value
        aggregate.current_portfolio_value = new_value
    return outcome


def project(aggregate: UserAggregate, today: date, this_month: date) -> tuple[float, float, float]:
    """
    Return ``(day, month, lifetime)`` profit as it reads right now.

    A period whose checkpoint is behind the current key has not been rolled yet;
    rolling it without a new valuation would baseline at the current value, so
    it reads as zero. The aggregate itself is left untouched.
    """
    day = aggregate.day_profit
    if aggregate.last_day_key is None or aggregate.last_day_key < today:
        day = 0.0
    month = aggregate.month_profit
    if aggregate.last_month_key is None or aggregate.last_month_key < this_month:
        month = 0.0
    return day, month, aggregate.lifetime_profit


def profit_for_period(aggregate: UserAggregate, period: Period, today: date, this_month: date) -> float:
    day, month, lifetime = project(aggregate, today, this_month)
    if period == "day":
        return day
    if period == "month":
        return month
    if period == "overall":
        return lifetime
    raise ValueError(f"Unsupported period '{period}'. Expected day, month, or overall.")

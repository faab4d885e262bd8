"""
Leaderboard ranking over earnings aggregates.

Rankings are a projection of the aggregate set, recomputed on demand; nothing
here is stored.
"""

from __future__ import annotations

import math
from datetime import date
from typing import Iterable, List, Optional

from earnings.models import PERIODS, LeaderboardEntry, Period, UserAggregate
from earnings.reconciler import profit_for_period

LEADERBOARD_SIZE = 20


def validate_period(period: str) -> Period:
    normalized = str(period or "").strip().lower()
    if normalized not in PERIODS:
        raise ValueError(f"Invalid period '{period}'. Must be day, month, or overall.")
    return normalized  # type: ignore[return-value]


def rank_aggregates(
    aggregates: Iterable[UserAggregate],
    period: str,
    today: date,
    this_month: date,
) -> List[LeaderboardEntry]:
    """Rank every aggregate by profit for ``period``, highest first, ties by user id."""
    resolved = validate_period(period)
    rows = [
        (profit_for_period(aggregate, resolved, today, this_month), aggregate)
        for aggregate in aggregates
    ]
    rows.sort(key=lambda row: (-_sortable(row[0]), row[1].user_id))
    return [
        LeaderboardEntry(
            user_id=aggregate.user_id,
            display_name=_display_name(aggregate),
            rank=index + 1,
            profit_for_period=profit,
        )
        for index, (profit, aggregate) in enumerate(rows)
    ]


def apply_smart_truncation(
    entries: List[LeaderboardEntry],
    requesting_user_id: Optional[str] = None,
    size: int = LEADERBOARD_SIZE,
) -> List[LeaderboardEntry]:
    """
    Cut the ranked list to ``size`` rows while keeping the requester visible.

    A requester outside the top ``size`` replaces the last visible row with their
    own entry, so the list still has ``size`` rows and ends with them. Unknown
    requesters get the plain top ``size``.
    """
    top = entries[:size]
    if not requesting_user_id or len(entries) < size:
        return top
    if any(entry.user_id == requesting_user_id for entry in top):
        return top
    own = next((entry for entry in entries if entry.user_id == requesting_user_id), None)
    if own is None:
        return top
    return top[: size - 1] + [own]


def find_rank(entries: Iterable[LeaderboardEntry], user_id: str) -> Optional[int]:
    for entry in entries:
        if entry.user_id == user_id:
            return entry.rank
    return None


def _sortable(profit: float) -> float:
    # NaN ranks last so the ordering stays total.
    return profit if not math.isnan(profit) else -math.inf


def _display_name(aggregate: UserAggregate) -> str:
    if aggregate.display_name:
        return aggregate.display_name
    return f"user{aggregate.user_id[-4:]}"

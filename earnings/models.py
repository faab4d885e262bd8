"""
Dataclasses describing per-user earnings aggregates and their derived views.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Literal, Optional

Period = Literal["day", "month", "overall"]
PERIODS: tuple[Period, ...] = ("day", "month", "overall")

DEFAULT_INITIAL_ENDOWMENT = 100_000.0


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(slots=True)
class UserAggregate:
    """Rolled-up profit record for a single user."""

    user_id: str
    display_name: Optional[str] = None
    day_profit: float = 0.0
    month_profit: float = 0.0
    lifetime_profit: float = 0.0
    last_day_key: Optional[date] = None
    last_month_key: Optional[date] = None
    day_baseline_value: float = 0.0
    month_baseline_value: float = 0.0
    initial_endowment: float = DEFAULT_INITIAL_ENDOWMENT
    current_portfolio_value: float = 0.0
    previous_portfolio_value: float = 0.0
    trades_today: int = 0
    total_trades: int = 0
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def baseline(
        cls,
        user_id: str,
        *,
        portfolio_value: float,
        initial_endowment: float,
        day_key: date,
        month_key: date,
        display_name: Optional[str] = None,
    ) -> "UserAggregate":
        """
        Build a fresh aggregate whose day and month baselines equal the current
        portfolio value, so day-1 and month-1 profit read as zero.
        """
        return cls(
            user_id=user_id,
            display_name=display_name,
            day_profit=0.0,
            month_profit=0.0,
            lifetime_profit=portfolio_value - initial_endowment,
            last_day_key=day_key,
            last_month_key=month_key,
            day_baseline_value=portfolio_value,
            month_baseline_value=portfolio_value,
            initial_endowment=initial_endowment,
            current_portfolio_value=portfolio_value,
            previous_portfolio_value=portfolio_value,
        )


@dataclass(frozen=True, slots=True)
class DailySnapshot:
    """Closing (or running) figures for one user on one IST day."""

    user_id: str
    day_key: date
    portfolio_value: float
    profit_delta: float
    trade_count: int


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    """Ranked row derived from the aggregate set; never persisted."""

    user_id: str
    display_name: str
    rank: int
    profit_for_period: float


@dataclass(frozen=True, slots=True)
class UserEarnings:
    """Read model returned to callers asking for a user's earnings."""

    user_id: str
    day_profit: float
    month_profit: float
    lifetime_profit: float
    current_portfolio_value: float
    previous_portfolio_value: float


@dataclass(slots=True)
class FlushResult:
    """Outcome of a single write-back pass."""

    persisted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    snapshots: int = 0
    flushed_at: datetime = field(default_factory=_utcnow)

"""
Service boundary for the earnings engine.

``EarningsService`` is constructed explicitly and handed to callers; it owns the
cache, the valuator and the flush timer, and exposes the operations the rest
of the trading application calls after orders execute.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from earnings.cache import EarningsCache
from earnings.clock import BoundaryClock
from earnings.events import EventPublisher, RecentEventLog
from earnings.models import (
    DEFAULT_INITIAL_ENDOWMENT,
    DailySnapshot,
    FlushResult,
    LeaderboardEntry,
    UserAggregate,
    UserEarnings,
)
from earnings.reconciler import project
from earnings.repository import EarningsRepository
from pricing.valuator import PortfolioValuator
from services.analytics.leaderboard import (
    LEADERBOARD_SIZE,
    apply_smart_truncation,
    find_rank,
    rank_aggregates,
    validate_period,
)
from services.jobs.scheduler import DEFAULT_FLUSH_INTERVAL, FlushScheduler

logger = logging.getLogger(__name__)


class EarningsService:
    """Facade over valuation, aggregation, ranking and write-back."""

    def __init__(
        self,
        repository: EarningsRepository,
        valuator: PortfolioValuator,
        *,
        clock: Optional[BoundaryClock] = None,
        initial_endowment: float = DEFAULT_INITIAL_ENDOWMENT,
        flush_interval_seconds: int = DEFAULT_FLUSH_INTERVAL,
        leaderboard_size: int = LEADERBOARD_SIZE,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        self._repository = repository
        self._valuator = valuator
        self._clock = clock or BoundaryClock()
        self._leaderboard_size = leaderboard_size
        self.events: EventPublisher = publisher or RecentEventLog()
        self._cache = EarningsCache(
            repository,
            lambda user_id: self._valuator.value(user_id).total,
            clock=self._clock,
            initial_endowment=initial_endowment,
            publisher=self.events,
        )
        self._scheduler = FlushScheduler(self._cache.flush_all, interval_seconds=flush_interval_seconds)

    @property
    def cache(self) -> EarningsCache:
        return self._cache

    @property
    def scheduler(self) -> FlushScheduler:
        return self._scheduler

    # ------------------------------------------------------------------ lifecycle
    def start(self) -> None:
        """Warm the cache from the store and start the periodic flush."""
        self._cache.warm()
        self._scheduler.start()

    def shutdown(self) -> FlushResult:
        """Stop the flush timer, flush once synchronously, then release the valuator and store."""
        self._scheduler.shutdown()
        result = self._cache.flush_all()
        if result.failed:
            logger.error(
                "Shutdown flush could not persist %d aggregates: %s",
                len(result.failed),
                ", ".join(result.failed),
            )
        self._valuator.close()
        self._repository.close()
        return result

    # ------------------------------------------------------------------ operations
    def record_transaction(self, user_id: str) -> UserEarnings:
        """Revalue the user's portfolio after a buy/sell and fold it into their aggregate."""
        aggregate = self._cache.revalue(user_id, trade=True)
        logger.debug(
            "Recorded transaction for %s: value=%.2f day=%.2f lifetime=%.2f",
            user_id,
            aggregate.current_portfolio_value,
            aggregate.day_profit,
            aggregate.lifetime_profit,
        )
        return self._earnings_view(aggregate)

    def refresh_valuation(self, user_id: str) -> UserEarnings:
        """Revalue without counting a trade, e.g. after prices move."""
        return self._earnings_view(self._cache.revalue(user_id))

    def get_user_earnings(self, user_id: str) -> UserEarnings:
        return self._earnings_view(self._cache.get(user_id))

    def get_leaderboard(
        self,
        period: str = "overall",
        requesting_user_id: Optional[str] = None,
    ) -> List[LeaderboardEntry]:
        ranked = self._rank(period)
        return apply_smart_truncation(ranked, requesting_user_id, size=self._leaderboard_size)

    def get_user_rank(self, user_id: str, period: str = "overall") -> Optional[int]:
        validate_period(period)
        self._cache.get(user_id)
        return find_rank(self._rank(period), user_id)

    def get_daily_snapshots(self, user_id: str, limit: int = 30) -> List[DailySnapshot]:
        self._cache.get(user_id)
        return self._repository.list_snapshots(user_id, limit=limit)

    def force_flush(self) -> FlushResult:
        return self._scheduler.run_once()

    def provision_user(
        self,
        user_id: str,
        initial_endowment: float = DEFAULT_INITIAL_ENDOWMENT,
        display_name: Optional[str] = None,
    ) -> UserEarnings:
        aggregate = self._cache.provision(user_id, initial_endowment, display_name)
        return self._earnings_view(aggregate)

    def stats(self) -> dict:
        payload = self._cache.stats()
        payload.update(
            {
                "flush_interval_seconds": self._scheduler.interval_seconds,
                "scheduler_running": self._scheduler.running,
            }
        )
        return payload

    # ------------------------------------------------------------------ helpers
    def _rank(self, period: str) -> List[LeaderboardEntry]:
        today, this_month = self._clock.keys()
        return rank_aggregates(self._cache.snapshot(), period, today, this_month)

    def _earnings_view(self, aggregate: UserAggregate) -> UserEarnings:
        today, this_month = self._clock.keys()
        day, month, lifetime = project(aggregate, today, this_month)
        return UserEarnings(
            user_id=aggregate.user_id,
            day_profit=day,
            month_profit=month,
            lifetime_profit=lifetime,
            current_portfolio_value=aggregate.current_portfolio_value,
            previous_portfolio_value=aggregate.previous_portfolio_value,
        )

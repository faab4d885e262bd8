"""
Write-back cache of per-user earnings aggregates.

The cache is authoritative while the process runs. Every mutation of a user's
aggregate happens under that user's lock; a flush copies dirty aggregates
under the same lock and persists the copies outside it, so a flush never
captures an aggregate halfway through reconciliation.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional

from earnings.clock import BoundaryClock
from earnings.errors import PersistenceFailure, TemporarilyUnavailable, UserNotFound
from earnings.events import EventPublisher, clock_skew, persistence_failure
from earnings.models import (
    DEFAULT_INITIAL_ENDOWMENT,
    DailySnapshot,
    FlushResult,
    UserAggregate,
)
from earnings.reconciler import reconcile
from earnings.repository import EarningsRepository

logger = logging.getLogger(__name__)

PortfolioValuer = Callable[[str], float]


@dataclass(slots=True)
class _CacheEntry:
    aggregate: UserAggregate
    lock: Lock
    dirty: bool = False


class EarningsCache:
    """In-memory ``user_id -> UserAggregate`` map with lazy load and periodic write-back."""

    def __init__(
        self,
        repository: EarningsRepository,
        valuer: PortfolioValuer,
        *,
        clock: Optional[BoundaryClock] = None,
        initial_endowment: float = DEFAULT_INITIAL_ENDOWMENT,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        self._repository = repository
        self._valuer = valuer
        self._clock = clock or BoundaryClock()
        self._initial_endowment = initial_endowment
        self._publisher = publisher
        self._entries: Dict[str, _CacheEntry] = {}
        self._registry_lock = Lock()
        # Serialises cold loads per user so two misses do not build two baselines.
        self._load_locks: Dict[str, Lock] = {}
        self._flush_lock = Lock()
        self._last_flush: Optional[FlushResult] = None

    @property
    def clock(self) -> BoundaryClock:
        return self._clock

    # ------------------------------------------------------------------ lookups
    def get(self, user_id: str) -> UserAggregate:
        """Return a point-in-time copy of the user's aggregate, loading it on a miss."""
        entry = self._entry(user_id)
        with entry.lock:
            return replace(entry.aggregate)

    def contains(self, user_id: str) -> bool:
        with self._registry_lock:
            return user_id in self._entries

    def snapshot(self) -> List[UserAggregate]:
        """Copy every cached aggregate; each copy is consistent, the set is not linearizable."""
        with self._registry_lock:
            entries = list(self._entries.values())
        copies: List[UserAggregate] = []
        for entry in entries:
            with entry.lock:
                copies.append(replace(entry.aggregate))
        return copies

    # ------------------------------------------------------------------ mutations
    def apply_valuation(self, user_id: str, new_value: float, *, trade: bool = False) -> UserAggregate:
        """Reconcile period checkpoints and apply ``new_value``; marks the entry dirty."""
        value = _finite_value(new_value)
        entry = self._entry(user_id, baseline_value=value)
        with entry.lock:
            return self._apply_locked(user_id, entry, value, trade)

    def revalue(self, user_id: str, *, trade: bool = False) -> UserAggregate:
        """
        Value the portfolio and apply it while holding the user's lock.

        Concurrent revaluations for one user land in the order they were
        valued, so an older valuation never overwrites a newer one.
        """
        entry = self._entry(user_id)
        with entry.lock:
            value = _finite_value(self._valuer(user_id))
            return self._apply_locked(user_id, entry, value, trade)

    def _apply_locked(self, user_id: str, entry: _CacheEntry, value: float, trade: bool) -> UserAggregate:
        today, this_month = self._clock.keys()
        aggregate = entry.aggregate
        outcome = reconcile(aggregate, value, today, this_month)
        if trade:
            aggregate.trades_today += 1
            aggregate.total_trades += 1
        aggregate.updated_at = datetime.now(tz=timezone.utc)
        entry.dirty = True
        result = replace(aggregate)

        if outcome.day_rolled or outcome.month_rolled:
            logger.debug(
                "Rolled periods for %s (day_rolled=%s month_rolled=%s today=%s)",
                user_id,
                outcome.day_rolled,
                outcome.month_rolled,
                today,
            )
        if outcome.day_skew is not None:
            self._report_skew(user_id, "day", outcome.day_skew, today)
        if outcome.month_skew is not None:
            self._report_skew(user_id, "month", outcome.month_skew, this_month)
        return result

    def provision(
        self,
        user_id: str,
        initial_endowment: Optional[float] = None,
        display_name: Optional[str] = None,
    ) -> UserAggregate:
        """
        Create a fresh aggregate baselined at ``initial_endowment``.

        Provisioning a user that already has an aggregate (cached or stored) is a
        no-op apart from filling in a missing display name.
        """
        endowment = self._initial_endowment if initial_endowment is None else float(initial_endowment)
        if not math.isfinite(endowment) or endowment < 0:
            raise ValueError("initial_endowment must be a finite, non-negative amount.")

        with self._load_lock(user_id):
            existing = self._cached(user_id)
            if existing is None:
                stored = self._load_from_store(user_id)
                if stored is not None:
                    existing = self._install(stored, dirty=False)
            if existing is not None:
                with existing.lock:
                    if display_name and not existing.aggregate.display_name:
                        existing.aggregate.display_name = display_name
                        existing.dirty = True
                    logger.info("User %s already provisioned; keeping existing aggregate", user_id)
                    return replace(existing.aggregate)

            today, this_month = self._clock.keys()
            aggregate = UserAggregate.baseline(
                user_id,
                portfolio_value=endowment,
                initial_endowment=endowment,
                day_key=today,
                month_key=this_month,
                display_name=display_name,
            )
            entry = self._install(aggregate, dirty=True)
            logger.info("Provisioned earnings aggregate for %s with endowment %.2f", user_id, endowment)
            with entry.lock:
                return replace(entry.aggregate)

    # ------------------------------------------------------------------ write-back
    def flush_all(self) -> FlushResult:
        """
        Persist every dirty aggregate plus today's snapshot for it.

        Entries whose write fails stay dirty for the next cycle. Never raises for
        store errors.
        """
        with self._flush_lock:
            result = FlushResult()
            today, _ = self._clock.keys()
            with self._registry_lock:
                entries = list(self._entries.items())

            for user_id, entry in entries:
                with entry.lock:
                    if not entry.dirty:
                        continue
                    aggregate = replace(entry.aggregate)
                    entry.dirty = False

                snapshot = _snapshot_for(aggregate, today)
                try:
                    self._repository.save(aggregate)
                    self._repository.append_snapshot(snapshot)
                except PersistenceFailure as exc:
                    self._mark_failed(user_id, entry, str(exc), result)
                    continue
                except Exception as exc:
                    logger.error("Unexpected error persisting earnings for %s", user_id, exc_info=True)
                    self._mark_failed(user_id, entry, repr(exc), result)
                    continue
                result.persisted.append(user_id)
                result.snapshots += 1

            if result.persisted or result.failed:
                logger.info(
                    "Earnings flush persisted %d aggregates, %d failed",
                    len(result.persisted),
                    len(result.failed),
                )
            self._last_flush = result
            return result

    def warm(self) -> int:
        """Load every stored aggregate not yet cached; returns the number loaded."""
        try:
            stored = self._repository.list_aggregates()
        except PersistenceFailure as exc:
            logger.warning("Earnings cache warm-up skipped; store unavailable: %s", exc)
            return 0
        loaded = 0
        for aggregate in stored:
            with self._load_lock(aggregate.user_id):
                if self._cached(aggregate.user_id) is None:
                    self._install(aggregate, dirty=False)
                    loaded += 1
        logger.info("Earnings cache warmed with %d aggregates", loaded)
        return loaded

    def stats(self) -> dict:
        with self._registry_lock:
            entries = list(self._entries.values())
        dirty = sum(1 for entry in entries if entry.dirty)
        last = self._last_flush
        return {
            "user_count": len(entries),
            "dirty_count": dirty,
            "last_flush_at": last.flushed_at.isoformat() if last else None,
            "last_flush_failed": len(last.failed) if last else 0,
        }

    # ------------------------------------------------------------------ internals
    def _entry(self, user_id: str, baseline_value: Optional[float] = None) -> _CacheEntry:
        entry = self._cached(user_id)
        if entry is not None:
            return entry
        with self._load_lock(user_id):
            entry = self._cached(user_id)
            if entry is not None:
                return entry
            stored = self._load_from_store(user_id)
            if stored is not None:
                return self._install(stored, dirty=False)
            # The valuer raises UserNotFound for users the holdings service does not know.
            value = _finite_value(self._valuer(user_id)) if baseline_value is None else baseline_value
            today, this_month = self._clock.keys()
            aggregate = UserAggregate.baseline(
                user_id,
                portfolio_value=value,
                initial_endowment=self._initial_endowment,
                day_key=today,
                month_key=this_month,
            )
            logger.info("Created baseline earnings aggregate for %s at %.2f", user_id, value)
            return self._install(aggregate, dirty=True)

    def _load_from_store(self, user_id: str) -> Optional[UserAggregate]:
        try:
            return self._repository.load(user_id)
        except PersistenceFailure as exc:
            logger.warning("Earnings store unavailable while loading %s: %s", user_id, exc)
            raise TemporarilyUnavailable(
                f"Earnings for '{user_id}' are temporarily unavailable; retry shortly.",
                payload={"user_id": user_id},
            ) from exc

    def _cached(self, user_id: str) -> Optional[_CacheEntry]:
        with self._registry_lock:
            return self._entries.get(user_id)

    def _install(self, aggregate: UserAggregate, *, dirty: bool) -> _CacheEntry:
        entry = _CacheEntry(aggregate=aggregate, lock=Lock(), dirty=dirty)
        with self._registry_lock:
            self._entries[aggregate.user_id] = entry
        return entry

    def _load_lock(self, user_id: str) -> Lock:
        with self._registry_lock:
            lock = self._load_locks.get(user_id)
            if lock is None:
                lock = Lock()
                self._load_locks[user_id] = lock
            return lock

    def _mark_failed(self, user_id: str, entry: _CacheEntry, reason: str, result: FlushResult) -> None:
        with entry.lock:
            entry.dirty = True
        result.failed.append(user_id)
        logger.warning("Failed to persist earnings for %s; will retry next flush: %s", user_id, reason)
        if self._publisher is not None:
            self._publisher.publish(persistence_failure(user_id, reason))

    def _report_skew(self, user_id: str, period: str, stored, observed) -> None:
        logger.warning(
            "Clock skew for %s: stored %s key %s is ahead of %s; not rolling back",
            user_id,
            period,
            stored,
            observed,
        )
        if self._publisher is not None:
            self._publisher.publish(clock_skew(user_id, period, stored, observed))  # type: ignore[arg-type]


def _snapshot_for(aggregate: UserAggregate, today) -> DailySnapshot:
    """Today's snapshot; an aggregate not yet rolled into today contributes a flat day."""
    rolled_today = aggregate.last_day_key is not None and aggregate.last_day_key >= today
    return DailySnapshot(
        user_id=aggregate.user_id,
        day_key=today,
        portfolio_value=aggregate.current_portfolio_value,
        profit_delta=aggregate.day_profit if rolled_today else 0.0,
        trade_count=aggregate.trades_today if rolled_today else 0,
    )


def _finite_value(value: float) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Portfolio value must be finite, got {value!r}.")
    return number

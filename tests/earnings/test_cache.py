import threading
import time
from datetime import date

import pytest

from earnings.cache import EarningsCache
from earnings.errors import PersistenceFailure, TemporarilyUnavailable, UserNotFound
from earnings.models import UserAggregate
from earnings.repository import InMemoryEarningsRepository


class FlakyRepository(InMemoryEarningsRepository):
    """In-memory store whose writes can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False

    def save(self, aggregate: UserAggregate) -> None:
        if self.fail_writes:
            raise PersistenceFailure("store offline")
        super().save(aggregate)


def test_provision_starts_at_zero(cache):
    aggregate = cache.provision("u1", 100000.0, display_name="Asha")

    assert (aggregate.day_profit, aggregate.month_profit, aggregate.lifetime_profit) == (0.0, 0.0, 0.0)
    assert aggregate.current_portfolio_value == 100000.0
    assert aggregate.last_day_key == date(2024, 3, 10)
    assert aggregate.last_month_key == date(2024, 3, 1)
    assert aggregate.display_name == "Asha"


def test_provision_is_idempotent(cache):
    cache.provision("u1", 100000.0)
    cache.apply_valuation("u1", 101500.0)

    again = cache.provision("u1", 50000.0, display_name="Late Name")

    assert again.current_portfolio_value == 101500.0
    assert again.initial_endowment == 100000.0
    assert again.display_name == "Late Name"


def test_provision_rejects_negative_endowment(cache):
    with pytest.raises(ValueError):
        cache.provision("u1", -1.0)


def test_get_unknown_user_raises(cache):
    with pytest.raises(UserNotFound) as excinfo:
        cache.get("ghost")
    assert excinfo.value.user_id == "ghost"
    assert not cache.contains("ghost")


def test_get_loads_from_store_without_revaluing(repository, valuer, cache):
    stored = UserAggregate.baseline(
        "u2",
        portfolio_value=90000.0,
        initial_endowment=100000.0,
        day_key=date(2024, 3, 10),
        month_key=date(2024, 3, 1),
    )
    repository.save(stored)

    loaded = cache.get("u2")

    assert loaded == stored
    assert valuer.calls == 0
    assert cache.stats()["dirty_count"] == 0


def test_cold_miss_builds_baseline_from_valuer(valuer, cache):
    valuer.values["u3"] = 97000.0

    aggregate = cache.get("u3")

    assert aggregate.current_portfolio_value == 97000.0
    assert aggregate.day_profit == 0.0
    assert aggregate.lifetime_profit == -3000.0
    assert cache.stats()["dirty_count"] == 1


def test_cold_miss_during_outage_is_temporarily_unavailable(mocker, repository, cache):
    mocker.patch.object(repository, "load", side_effect=PersistenceFailure("connection refused"))

    with pytest.raises(TemporarilyUnavailable):
        cache.get("u4")


def test_cached_reads_survive_store_outage(mocker, repository, cache):
    cache.provision("u1", 100000.0)
    mocker.patch.object(repository, "load", side_effect=PersistenceFailure("connection refused"))

    assert cache.get("u1").current_portfolio_value == 100000.0


def test_get_returns_a_copy(cache):
    cache.provision("u1", 100000.0)

    copy = cache.get("u1")
    copy.day_profit = 999.0

    assert cache.get("u1").day_profit == 0.0


def test_apply_valuation_counts_trades_and_marks_dirty(cache):
    cache.provision("u1", 100000.0)
    cache.flush_all()

    cache.apply_valuation("u1", 102000.0, trade=True)
    aggregate = cache.apply_valuation("u1", 102000.0)

    assert aggregate.day_profit == 2000.0
    assert aggregate.trades_today == 1
    assert aggregate.total_trades == 1
    assert cache.stats()["dirty_count"] == 1


def test_flush_persists_dirty_aggregates_and_snapshot(repository, cache):
    cache.provision("u1", 100000.0)
    cache.apply_valuation("u1", 102000.0, trade=True)

    result = cache.flush_all()

    assert result.persisted == ["u1"]
    assert result.failed == []
    assert result.snapshots == 1
    assert repository.load("u1") == cache.get("u1")
    [snapshot] = repository.list_snapshots("u1")
    assert snapshot.day_key == date(2024, 3, 10)
    assert snapshot.profit_delta == 2000.0
    assert snapshot.trade_count == 1
    assert cache.flush_all().persisted == []


def test_failed_flush_keeps_entry_dirty_until_retry(clock, valuer, event_log):
    repository = FlakyRepository()
    cache = EarningsCache(repository, valuer, clock=clock, publisher=event_log)
    cache.provision("u1", 100000.0)
    cache.apply_valuation("u1", 103000.0)

    repository.fail_writes = True
    failed = cache.flush_all()

    assert failed.failed == ["u1"]
    assert repository.load("u1") is None
    assert cache.stats()["dirty_count"] == 1
    assert cache.stats()["last_flush_failed"] == 1
    [event] = event_log.recent(event_type="persistence_failure")
    assert event.user_id == "u1"

    repository.fail_writes = False
    retried = cache.flush_all()

    assert retried.persisted == ["u1"]
    assert repository.load("u1") == cache.get("u1")


def test_unexpected_store_error_does_not_escape_flush(mocker, repository, cache):
    cache.provision("u1", 100000.0)
    mocker.patch.object(repository, "append_snapshot", side_effect=RuntimeError("disk full"))

    result = cache.flush_all()

    assert result.failed == ["u1"]
    assert cache.stats()["dirty_count"] == 1


def test_clock_skew_is_reported_not_rolled(fake_now, cache, event_log):
    cache.provision("u1", 100000.0)
    fake_now.advance(days=-1)

    aggregate = cache.apply_valuation("u1", 100500.0)

    assert aggregate.last_day_key == date(2024, 3, 10)
    assert aggregate.day_profit == 500.0
    [event] = event_log.recent(event_type="clock_skew")
    assert event.period == "day"
    assert event.stored_key == date(2024, 3, 10)
    assert event.observed_key == date(2024, 3, 9)


def test_warm_loads_stored_aggregates(repository, cache):
    for user_id in ("a", "b"):
        repository.save(
            UserAggregate.baseline(
                user_id,
                portfolio_value=100000.0,
                initial_endowment=100000.0,
                day_key=date(2024, 3, 9),
                month_key=date(2024, 3, 1),
            )
        )

    assert cache.warm() == 2
    assert cache.contains("a") and cache.contains("b")
    assert cache.warm() == 0


def test_warm_tolerates_store_outage(mocker, repository, cache):
    mocker.patch.object(repository, "list_aggregates", side_effect=PersistenceFailure("down"))

    assert cache.warm() == 0


def test_concurrent_updates_for_one_user_are_serialised(repository, cache):
    cache.provision("u1", 100000.0)
    workers, per_worker = 8, 50
    stop = threading.Event()

    def trade(offset: int) -> None:
        for step in range(per_worker):
            cache.apply_valuation("u1", 100000.0 + offset * 100 + step, trade=True)

    def flusher() -> None:
        while not stop.is_set():
            cache.flush_all()

    flush_thread = threading.Thread(target=flusher)
    flush_thread.start()
    threads = [threading.Thread(target=trade, args=(offset,)) for offset in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    stop.set()
    flush_thread.join()
    cache.flush_all()

    aggregate = cache.get("u1")
    assert aggregate.total_trades == workers * per_worker
    assert aggregate.trades_today == workers * per_worker
    assert aggregate.day_profit == aggregate.current_portfolio_value - aggregate.day_baseline_value
    assert repository.load("u1") == aggregate


def test_concurrent_cold_misses_build_one_baseline(valuer, cache):
    valuer.values["u5"] = 100000.0
    results = []

    def read() -> None:
        results.append(cache.get("u5"))

    threads = [threading.Thread(target=read) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert valuer.calls == 1
    assert len(results) == 10
    assert cache.stats()["user_count"] == 1


@pytest.mark.parametrize("endowment", [float("nan"), float("inf"), float("-inf")])
def test_provision_rejects_non_finite_endowment(cache, endowment):
    with pytest.raises(ValueError):
        cache.provision("u1", endowment)
    assert not cache.contains("u1")


def test_non_finite_valuations_are_rejected(valuer, cache):
    cache.provision("u1", 100000.0)
    valuer.values["u1"] = float("nan")

    with pytest.raises(ValueError):
        cache.apply_valuation("u1", float("inf"))
    with pytest.raises(ValueError):
        cache.revalue("u1")
    assert cache.get("u1").current_portfolio_value == 100000.0


def test_revalue_applies_concurrent_valuations_in_order(repository, clock):
    class SequencedValuer:
        def __init__(self) -> None:
            self.calls = 0
            self._lock = threading.Lock()

        def __call__(self, user_id: str) -> float:
            with self._lock:
                self.calls += 1
                value = 100000.0 + self.calls
            # Widen the gap between valuing and applying.
            time.sleep(0.001)
            return value

    sequenced = SequencedValuer()
    cache = EarningsCache(repository, sequenced, clock=clock)
    cache.provision("u1", 100000.0)
    workers, per_worker = 6, 20

    def trade() -> None:
        for _ in range(per_worker):
            cache.revalue("u1", trade=True)

    threads = [threading.Thread(target=trade) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    aggregate = cache.get("u1")
    assert sequenced.calls == workers * per_worker
    assert aggregate.current_portfolio_value == 100000.0 + sequenced.calls
    assert aggregate.previous_portfolio_value == 100000.0 + sequenced.calls - 1
    assert aggregate.total_trades == workers * per_worker

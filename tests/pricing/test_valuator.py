import time

import pytest
from flaky import flaky

from earnings.errors import UserNotFound
from earnings.events import RecentEventLog
from pricing.holdings import Holding, InMemoryHoldingsStore
from pricing.oracle import StaticPriceOracle
from pricing.valuator import PortfolioValuator


class SlowOracle:
    def __init__(self, delay: float, price: float) -> None:
        self.delay = delay
        self.price = price

    def lookup(self, symbol):
        time.sleep(self.delay)
        return self.price


class BrokenOracle:
    def lookup(self, symbol):
        raise ConnectionError("quote feed down")


@pytest.fixture
def holdings():
    store = InMemoryHoldingsStore()
    store.set_cash("u1", 90000.0)
    store.set_holdings("u1", [Holding("INFY", 100, 110.0), Holding("TCS", 2, 3500.0)])
    return store


@pytest.fixture
def events():
    return RecentEventLog()


def test_pure_cash_portfolio():
    store = InMemoryHoldingsStore()
    store.set_cash("u1", 100000.0)
    valuator = PortfolioValuator(store, StaticPriceOracle())

    valuation = valuator.value("u1")

    assert valuation.total == 100000.0
    assert valuation.holdings_value == 0.0
    assert not valuation.degraded
    valuator.close()


def test_live_prices_are_used(holdings, events):
    oracle = StaticPriceOracle({"infy": 120.0, "TCS": 3600.0})
    valuator = PortfolioValuator(holdings, oracle, publisher=events)

    valuation = valuator.value("u1")

    assert valuation.holdings_value == 100 * 120.0 + 2 * 3600.0
    assert valuation.total == 90000.0 + 19200.0
    assert len(events) == 0
    valuator.close()


def test_missing_price_falls_back_to_average_cost(holdings, events, caplog):
    oracle = StaticPriceOracle({"INFY": 120.0})
    valuator = PortfolioValuator(holdings, oracle, publisher=events)

    valuation = valuator.value("u1")

    assert valuation.degraded_symbols == ["TCS"]
    assert valuation.total == 90000.0 + 12000.0 + 7000.0
    assert "degraded" in caplog.text
    [event] = events.recent(event_type="valuation_degraded")
    assert event.symbols == ["TCS"]
    valuator.close()


def test_non_positive_and_failing_prices_degrade(holdings):
    oracle = StaticPriceOracle({"INFY": 0.0, "TCS": -5.0})
    valuator = PortfolioValuator(holdings, oracle)
    assert valuator.value("u1").degraded_symbols == ["INFY", "TCS"]
    valuator.close()

    broken = PortfolioValuator(holdings, BrokenOracle())
    assert broken.value("u1").total == 90000.0 + 11000.0 + 7000.0
    broken.close()


@flaky(max_runs=3)
def test_slow_oracle_times_out_to_average_cost(holdings):
    valuator = PortfolioValuator(holdings, SlowOracle(delay=0.5, price=999.0), lookup_timeout=0.05)

    started = time.monotonic()
    valuation = valuator.value("u1")
    elapsed = time.monotonic() - started

    assert valuation.degraded_symbols == ["INFY", "TCS"]
    assert valuation.total == 90000.0 + 11000.0 + 7000.0
    assert elapsed < 0.5
    valuator.close()


def test_unknown_user_raises():
    valuator = PortfolioValuator(InMemoryHoldingsStore(), StaticPriceOracle())

    with pytest.raises(UserNotFound):
        valuator.value("ghost")
    valuator.close()


@flaky(max_runs=3)
def test_lookups_share_one_deadline():
    store = InMemoryHoldingsStore()
    store.set_cash("u1", 0.0)
    store.set_holdings("u1", [Holding(f"SYM{index}", 1, 10.0) for index in range(6)])
    valuator = PortfolioValuator(store, SlowOracle(delay=0.5, price=999.0), lookup_timeout=0.1)

    started = time.monotonic()
    valuation = valuator.value("u1")
    elapsed = time.monotonic() - started

    assert len(valuation.degraded_symbols) == 6
    assert valuation.total == 60.0
    assert elapsed < 0.3
    valuator.close()


def test_non_finite_price_falls_back_to_average_cost(holdings):
    valuator = PortfolioValuator(holdings, StaticPriceOracle({"INFY": float("inf"), "TCS": float("nan")}))

    valuation = valuator.value("u1")

    assert valuation.degraded_symbols == ["INFY", "TCS"]
    assert valuation.total == 90000.0 + 11000.0 + 7000.0
    valuator.close()

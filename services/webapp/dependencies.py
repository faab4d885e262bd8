"""
Application-wide dependency providers for the web service.

The functions declared here are meant to be used with FastAPI's dependency
injection framework while keeping instantiation logic in one place.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from earnings.events import RecentEventLog
from earnings.repository import (
    EarningsRepository,
    InfluxEarningsRepository,
    InMemoryEarningsRepository,
)
from pricing.holdings import HoldingsStore, HttpHoldingsStore, InMemoryHoldingsStore
from pricing.oracle import HttpPriceOracle, PriceOracle, StaticPriceOracle
from pricing.valuator import PortfolioValuator
from services.earnings import EarningsService

logger = logging.getLogger(__name__)

try:
    from config import (
        EARNINGS_FLUSH_INTERVAL,
        EARNINGS_STORE,
        INITIAL_ENDOWMENT,
        LEADERBOARD_SIZE,
        ORDERS_SERVICE_URL,
        PRICE_LOOKUP_TIMEOUT,
        PRICE_ORACLE_URL,
    )
except ImportError:  # pragma: no cover - fallback for test envs
    EARNINGS_FLUSH_INTERVAL = 14 * 60
    EARNINGS_STORE = "memory"
    INITIAL_ENDOWMENT = 100000.0
    LEADERBOARD_SIZE = 20
    ORDERS_SERVICE_URL = ""
    PRICE_LOOKUP_TIMEOUT = 2.0
    PRICE_ORACLE_URL = ""


@lru_cache(maxsize=1)
def get_earnings_repository() -> EarningsRepository:
    """Provide a shared repository instance for earnings persistence."""
    if str(EARNINGS_STORE).lower() == "influx":
        return InfluxEarningsRepository()
    logger.info("Using in-memory earnings store; aggregates will not survive restarts.")
    return InMemoryEarningsRepository()


@lru_cache(maxsize=1)
def get_price_oracle() -> PriceOracle:
    if PRICE_ORACLE_URL:
        return HttpPriceOracle(PRICE_ORACLE_URL, timeout=PRICE_LOOKUP_TIMEOUT)
    return StaticPriceOracle()


@lru_cache(maxsize=1)
def get_holdings_store() -> HoldingsStore:
    if ORDERS_SERVICE_URL:
        return HttpHoldingsStore(ORDERS_SERVICE_URL)
    return InMemoryHoldingsStore()


@lru_cache(maxsize=1)
def get_event_log() -> RecentEventLog:
    return RecentEventLog(maxlen=500)


@lru_cache(maxsize=1)
def get_earnings_service() -> EarningsService:
    """Return the process-wide earnings service; lifecycle is driven by the app."""
    valuator = PortfolioValuator(
        get_holdings_store(),
        get_price_oracle(),
        lookup_timeout=PRICE_LOOKUP_TIMEOUT,
        publisher=get_event_log(),
    )
    return EarningsService(
        get_earnings_repository(),
        valuator,
        initial_endowment=INITIAL_ENDOWMENT,
        flush_interval_seconds=EARNINGS_FLUSH_INTERVAL,
        leaderboard_size=LEADERBOARD_SIZE,
        publisher=get_event_log(),
    )

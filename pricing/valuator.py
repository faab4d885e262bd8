"""
Portfolio valuation from cash, holdings and the price oracle.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from earnings.events import EventPublisher, valuation_degraded
from pricing.holdings import Holding, HoldingsStore
from pricing.oracle import PriceOracle

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PortfolioValuation:
    """Result of valuing a single user's portfolio."""

    user_id: str
    cash_balance: float
    holdings_value: float
    total: float
    degraded_symbols: List[str] = field(default_factory=list)
    valued_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_symbols)


class PortfolioValuator:
    """
    Computes ``cash + sum(quantity * price)`` for a user.

    Lookups run concurrently against a single ``lookup_timeout`` deadline.
    Prices that are missing, non-positive, non-finite, raise, or miss the
    deadline fall back to the holding's average cost, so a flaky oracle
    degrades the figure instead of failing it. Only an unknown
    user propagates (``UserNotFound`` from the holdings store).
    """

    def __init__(
        self,
        holdings: HoldingsStore,
        oracle: PriceOracle,
        *,
        lookup_timeout: float = 2.0,
        publisher: Optional[EventPublisher] = None,
        max_workers: int = 8,
    ) -> None:
        self._holdings = holdings
        self._oracle = oracle
        self._lookup_timeout = lookup_timeout
        self._publisher = publisher
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="price-lookup")

    def value(self, user_id: str) -> PortfolioValuation:
        cash = float(self._holdings.get_cash_balance(user_id))
        positions = self._holdings.get_holdings(user_id)

        # All lookups share one deadline.
        pending = [(holding, self._executor.submit(self._oracle.lookup, holding.symbol)) for holding in positions]
        deadline = time.monotonic() + self._lookup_timeout

        holdings_value = 0.0
        degraded: List[str] = []
        for holding, future in pending:
            price = self._collect(holding, future, max(deadline - time.monotonic(), 0.0))
            if price is None:
                degraded.append(holding.symbol)
                price = holding.avg_cost
            holdings_value += holding.quantity * price

        total = max(cash + holdings_value, 0.0)
        valuation = PortfolioValuation(
            user_id=user_id,
            cash_balance=cash,
            holdings_value=holdings_value,
            total=total,
            degraded_symbols=degraded,
        )
        if degraded:
            logger.warning(
                "Valuation for %s degraded; priced %s at average cost",
                user_id,
                ", ".join(degraded),
            )
            if self._publisher is not None:
                self._publisher.publish(valuation_degraded(user_id, degraded))
        return valuation

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _collect(self, holding: Holding, future: Future, remaining: float) -> Optional[float]:
        try:
            price = future.result(timeout=remaining)
        except FutureTimeout:
            future.cancel()
            logger.debug("Price lookup for %s timed out after %.2fs", holding.symbol, self._lookup_timeout)
            return None
        except Exception as exc:
            logger.debug("Price lookup for %s failed: %s", holding.symbol, exc)
            return None
        if price is None:
            return None
        try:
            value = float(price)
        except (TypeError, ValueError):
            return None
        return value if math.isfinite(value) and value > 0 else None

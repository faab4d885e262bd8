"""
Price oracle interfaces and adapters.

The earnings engine only needs ``lookup(symbol) -> price | None``. How prices
are refreshed is the oracle's business; ``None`` means stale or unknown and the
valuator falls back to the holding's average cost.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Dict, Mapping, Optional, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)


@runtime_checkable
class PriceOracle(Protocol):
    """Maps a symbol to its last traded price."""

    def lookup(self, symbol: str) -> Optional[float]:
        """Return the last price for ``symbol`` or ``None`` when unavailable."""


class StaticPriceOracle:
    """Dictionary-backed oracle; prices are pushed in by whoever owns the feed."""

    def __init__(self, prices: Mapping[str, float] | None = None) -> None:
        self._prices: Dict[str, float] = {}
        self._lock = Lock()
        if prices:
            self.update(prices)

    def lookup(self, symbol: str) -> Optional[float]:
        with self._lock:
            return self._prices.get(_normalize_symbol(symbol))

    def update(self, prices: Mapping[str, float]) -> None:
        with self._lock:
            for symbol, price in prices.items():
                self._prices[_normalize_symbol(symbol)] = float(price)

    def remove(self, symbol: str) -> None:
        with self._lock:
            self._prices.pop(_normalize_symbol(symbol), None)


class HttpPriceOracle:
    """Fetches last prices from a quote service over HTTP with a bounded timeout."""

    def __init__(
        self,
        base_url: str,
        *,
        quote_path: str = "/api/quotes",
        timeout: float = 2.0,
    ) -> None:
        self._quote_path = quote_path.rstrip("/")
        self._client = httpx.Client(base_url=base_url, timeout=timeout)

    def lookup(self, symbol: str) -> Optional[float]:
        normalized = _normalize_symbol(symbol)
        try:
            response = self._client.get(f"{self._quote_path}/{normalized}")
            if response.status_code == httpx.codes.NOT_FOUND:
                return None
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Quote lookup for %s failed: %s", normalized, exc)
            return None
        return _extract_price(payload)

    def close(self) -> None:
        self._client.close()


def _normalize_symbol(symbol: str) -> str:
    return str(symbol).strip().upper()


def _extract_price(payload: object) -> Optional[float]:
    """Accept ``{"lastPrice": ..}``, ``{"data": {..}}`` or ``{"data": [{..}]}`` shapes."""
    if isinstance(payload, dict) and "data" in payload:
        payload = payload["data"]
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return None
    for key in ("lastPrice", "ltp", "price", "last"):
        if key in payload:
            price = _to_number(payload[key])
            if price is not None and price > 0:
                return price
    return None


def _to_number(value: object) -> Optional[float]:
    if value is None:
        return None
    text = str(value).replace(",", "").strip()
    try:
        return float(text)
    except ValueError:
        return None

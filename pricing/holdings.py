"""
Holdings and cash balance collaborators consumed by the portfolio valuator.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Dict, Iterable, List, Protocol

import httpx

from earnings.errors import UserNotFound


@dataclass(frozen=True, slots=True)
class Holding:
    """Single position held by a user."""

    symbol: str
    quantity: float
    avg_cost: float


class HoldingsStore(Protocol):
    """Read-only view of the order/holdings service."""

    def get_holdings(self, user_id: str) -> List[Holding]:
        """Return open holdings; raise ``UserNotFound`` for unknown users."""

    def get_cash_balance(self, user_id: str) -> float:
        """Return the wallet cash balance; raise ``UserNotFound`` for unknown users."""


class InMemoryHoldingsStore:
    """In-memory holdings book, kept in step with the order service by its owner."""

    def __init__(self) -> None:
        self._cash: Dict[str, float] = {}
        self._holdings: Dict[str, Dict[str, Holding]] = {}
        self._lock = Lock()

    def set_cash(self, user_id: str, amount: float) -> None:
        with self._lock:
            self._cash[user_id] = float(amount)
            self._holdings.setdefault(user_id, {})

    def set_holdings(self, user_id: str, holdings: Iterable[Holding]) -> None:
        with self._lock:
            self._cash.setdefault(user_id, 0.0)
            self._holdings[user_id] = {holding.symbol: holding for holding in holdings}

    def upsert_holding(self, user_id: str, holding: Holding) -> None:
        with self._lock:
            self._cash.setdefault(user_id, 0.0)
            book = self._holdings.setdefault(user_id, {})
            if holding.quantity <= 0:
                book.pop(holding.symbol, None)
            else:
                book[holding.symbol] = holding

    def get_holdings(self, user_id: str) -> List[Holding]:
        with self._lock:
            if user_id not in self._cash:
                raise UserNotFound(user_id)
            return list(self._holdings.get(user_id, {}).values())

    def get_cash_balance(self, user_id: str) -> float:
        with self._lock:
            if user_id not in self._cash:
                raise UserNotFound(user_id)
            return self._cash[user_id]


class HttpHoldingsStore:
    """Reads holdings and wallet balance from the order service REST API."""

    def __init__(self, base_url: str, *, timeout: float = 5.0) -> None:
        self._client = httpx.Client(base_url=base_url, timeout=timeout)

    def get_holdings(self, user_id: str) -> List[Holding]:
        payload = self._get(user_id, f"/api/users/{user_id}/holdings")
        rows = payload.get("data", payload) if isinstance(payload, dict) else payload
        holdings: List[Holding] = []
        for row in rows or []:
            try:
                holdings.append(
                    Holding(
                        symbol=str(row["symbol"]),
                        quantity=float(row.get("quantity", 0.0)),
                        avg_cost=float(row.get("averagePrice", row.get("avg_cost", 0.0)) or 0.0),
                    )
                )
            except (KeyError, TypeError, ValueError):
                continue
        return [holding for holding in holdings if holding.quantity > 0]

    def get_cash_balance(self, user_id: str) -> float:
        payload = self._get(user_id, f"/api/users/{user_id}/wallet")
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        if not isinstance(data, dict):
            return 0.0
        try:
            return float(data.get("walletBalance", data.get("cash_balance", 0.0)) or 0.0)
        except (TypeError, ValueError):
            return 0.0

    def close(self) -> None:
        self._client.close()

    def _get(self, user_id: str, path: str) -> object:
        response = self._client.get(path)
        if response.status_code == httpx.codes.NOT_FOUND:
            raise UserNotFound(user_id)
        response.raise_for_status()
        return response.json()

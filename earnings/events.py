"""
Structured events emitted for conditions that are observable but not errors.

Valuations priced from stale data, write-back failures and clock skew are all
recovered locally; publishing them lets monitoring see them without coupling
to the cache or valuator internals.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from threading import Lock
from typing import List, Literal, Protocol

EventType = Literal["valuation_degraded", "persistence_failure", "clock_skew"]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(slots=True)
class EarningsEvent:
    """Base event envelope for earnings domain messages."""

    user_id: str
    event_type: EventType
    emitted_at: datetime


@dataclass(slots=True)
class ValuationDegradedEvent(EarningsEvent):
    """One or more holdings were priced at average cost instead of a live price."""

    symbols: List[str] = field(default_factory=list)


@dataclass(slots=True)
class PersistenceFailureEvent(EarningsEvent):
    """The durable store rejected a write during flush; the entry stays dirty."""

    reason: str = ""


@dataclass(slots=True)
class ClockSkewEvent(EarningsEvent):
    """Boundary keys went backwards relative to the stored checkpoint."""

    period: Literal["day", "month"] = "day"
    stored_key: date | None = None
    observed_key: date | None = None


def valuation_degraded(user_id: str, symbols: List[str]) -> ValuationDegradedEvent:
    return ValuationDegradedEvent(
        user_id=user_id,
        event_type="valuation_degraded",
        emitted_at=_utcnow(),
        symbols=list(symbols),
    )


def persistence_failure(user_id: str, reason: str) -> PersistenceFailureEvent:
    return PersistenceFailureEvent(
        user_id=user_id,
        event_type="persistence_failure",
        emitted_at=_utcnow(),
        reason=reason,
    )


def clock_skew(user_id: str, period: Literal["day", "month"], stored: date, observed: date) -> ClockSkewEvent:
    return ClockSkewEvent(
        user_id=user_id,
        event_type="clock_skew",
        emitted_at=_utcnow(),
        period=period,
        stored_key=stored,
        observed_key=observed,
    )


class EventPublisher(Protocol):
    """Abstraction for publishing earnings events downstream."""

    def publish(self, event: EarningsEvent) -> None:
        """Publish the earnings event."""


class RecentEventLog:
    """Bounded in-memory publisher keeping the most recent events for inspection."""

    def __init__(self, maxlen: int = 200) -> None:
        self._events: deque[EarningsEvent] = deque(maxlen=maxlen)
        self._lock = Lock()

    def publish(self, event: EarningsEvent) -> None:
        with self._lock:
            self._events.append(event)

    def recent(self, limit: int = 20, event_type: EventType | None = None) -> List[EarningsEvent]:
        with self._lock:
            events = list(self._events)
        if event_type is not None:
            events = [event for event in events if event.event_type == event_type]
        return events[-limit:] if limit > 0 else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

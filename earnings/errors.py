"""
Exception taxonomy for the earnings engine.
"""

from __future__ import annotations

from typing import Optional


class EarningsError(RuntimeError):
    """Base error raised by the earnings engine."""

    def __init__(self, message: str, payload: Optional[dict] = None) -> None:
        super().__init__(message)
        self.payload = payload or {}


class UserNotFound(EarningsError):
    """Raised when an aggregate is requested for a user nobody knows about."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Unknown user_id '{user_id}'", payload={"user_id": user_id})
        self.user_id = user_id


class PersistenceFailure(EarningsError):
    """Raised by a durable store when a read or write cannot be completed."""


class TemporarilyUnavailable(EarningsError):
    """Raised when a cold cache miss coincides with a store outage; callers should retry."""

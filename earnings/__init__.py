"""
Earnings aggregation package: per-user day/month/lifetime profit with IST
calendar resets, a write-back cache, and durable storage.
"""

from .models import DailySnapshot, FlushResult, LeaderboardEntry, UserAggregate, UserEarnings  # noqa: F401
from .clock import BoundaryClock  # noqa: F401
from .errors import EarningsError, PersistenceFailure, TemporarilyUnavailable, UserNotFound  # noqa: F401
from .repository import EarningsRepository, InfluxEarningsRepository, InMemoryEarningsRepository  # noqa: F401
from .cache import EarningsCache  # noqa: F401

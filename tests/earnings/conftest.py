from datetime import datetime, timedelta, timezone

import pytest

from earnings.cache import EarningsCache
from earnings.clock import BoundaryClock
from earnings.errors import UserNotFound
from earnings.events import RecentEventLog
from earnings.repository import InMemoryEarningsRepository


class FakeNow:
    """Settable time source for BoundaryClock."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> None:
        self.moment += timedelta(**kwargs)


class DictValuer:
    """Valuer stub backed by a dict; unknown users raise UserNotFound."""

    def __init__(self) -> None:
        self.values = {}
        self.calls = 0

    def __call__(self, user_id: str) -> float:
        self.calls += 1
        if user_id not in self.values:
            raise UserNotFound(user_id)
        return self.values[user_id]


@pytest.fixture
def fake_now():
    # 2024-03-10 11:30 IST
    return FakeNow(datetime(2024, 3, 10, 6, 0, tzinfo=timezone.utc))


@pytest.fixture
def clock(fake_now):
    return BoundaryClock(now=fake_now)


@pytest.fixture
def repository():
    return InMemoryEarningsRepository()


@pytest.fixture
def valuer():
    return DictValuer()


@pytest.fixture
def event_log():
    return RecentEventLog()


@pytest.fixture
def cache(repository, valuer, clock, event_log):
    return EarningsCache(
        repository,
        valuer,
        clock=clock,
        initial_endowment=100000.0,
        publisher=event_log,
    )

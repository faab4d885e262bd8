"""
Background scheduler driving the periodic earnings write-back.
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from earnings.models import FlushResult

logger = logging.getLogger(__name__)

_FLUSH_JOB_ID = "flush_earnings_cache"
DEFAULT_FLUSH_INTERVAL = 14 * 60


def _sanitize_interval(value: int, minimum: int, maximum: int = 24 * 3600) -> int:
    return max(minimum, min(maximum, int(value)))


class FlushScheduler:
    """Owns an APScheduler job that calls ``flush`` every ``interval_seconds``."""

    def __init__(
        self,
        flush: Callable[[], FlushResult],
        *,
        interval_seconds: int = DEFAULT_FLUSH_INTERVAL,
    ) -> None:
        self._flush = flush
        self._interval = _sanitize_interval(interval_seconds, 1)
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def interval_seconds(self) -> int:
        return self._interval

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self._scheduler is not None:
            return
        scheduler = BackgroundScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self._flush_job,
            trigger=IntervalTrigger(seconds=self._interval),
            id=_FLUSH_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Earnings flush scheduled every %ds", self._interval)

    def update_interval(self, seconds: int) -> None:
        """Change the flush cadence, rescheduling the running job if any."""
        self._interval = _sanitize_interval(seconds, 1)
        scheduler = self._scheduler
        if scheduler is None:
            return
        trigger = IntervalTrigger(seconds=self._interval)
        try:
            scheduler.reschedule_job(_FLUSH_JOB_ID, trigger=trigger)
        except JobLookupError:
            scheduler.add_job(
                self._flush_job,
                trigger=trigger,
                id=_FLUSH_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        logger.info("Updated earnings flush interval to %ds", self._interval)

    def run_once(self) -> FlushResult:
        """Manually trigger the flush job."""
        return self._flush_job()

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=True)
            self._scheduler = None
            logger.info("Earnings flush scheduler stopped")

    def _flush_job(self) -> FlushResult:
        result = self._flush()
        if result.failed:
            logger.warning("Flush left %d aggregates dirty for retry", len(result.failed))
        else:
            logger.debug("Flush persisted %d aggregates", len(result.persisted))
        return result

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

import structlog

from newsdesk.jobs.queue import AGGREGATE_DAILY, AnalyticsQueue

logger = structlog.get_logger(__name__)

GUARD_TTL_SECONDS = 2 * 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until_next_utc_midnight(now: datetime) -> float:
    now = now.astimezone(timezone.utc)
    next_midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
    return (next_midnight - now).total_seconds()


class DailyAggregationScheduler:
    """At each UTC midnight, enqueues aggregate-daily for the day that just ended and the day before.

    The earlier day is recounted to pick up reads stamped before midnight that
    were committed after the previous run.
    """

    def __init__(
        self,
        queue: AnalyticsQueue,
        redis,
        clock: Callable[[], datetime] = _utcnow,
        guard_prefix: str = "newsdesk:schedule:aggregate-daily",
    ) -> None:
        self.queue = queue
        self._redis = redis
        self._clock = clock
        self.guard_prefix = guard_prefix
        self._stopping = asyncio.Event()

    async def trigger(self, day: date) -> bool:
        """Enqueue the run that closes ``day`` unless another scheduler already did."""
        claimed = await self._redis.set(f"{self.guard_prefix}:{day.isoformat()}", "1", nx=True, ex=GUARD_TTL_SECONDS)
        if not claimed:
            logger.debug("daily_aggregation_already_scheduled", day=day.isoformat())
            return False
        for target in (day - timedelta(days=1), day):
            await self.queue.add(AGGREGATE_DAILY, {"date": target.isoformat()})
        logger.info("daily_aggregation_enqueued", day=day.isoformat())
        return True

    async def run(self) -> None:
        logger.info("daily_aggregation_scheduler_started")
        while not self._stopping.is_set():
            now = self._clock().astimezone(timezone.utc)
            finished_day = now.date()
            delay = seconds_until_next_utc_midnight(now)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            if self._stopping.is_set():
                break
            # The loop timer is monotonic; wait again if the wall clock has not reached midnight.
            if self._clock().astimezone(timezone.utc).date() <= finished_day:
                continue
            try:
                await self.trigger(finished_day)
            except Exception as exc:
                logger.error("daily_aggregation_schedule_failed", day=finished_day.isoformat(), error=str(exc))
        logger.info("daily_aggregation_scheduler_stopped")

    def stop(self) -> None:
        self._stopping.set()

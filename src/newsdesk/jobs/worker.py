from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date

import structlog
from redis.exceptions import RedisError

from newsdesk.config import settings
from newsdesk.db.session import Database
from newsdesk.jobs.queue import AGGREGATE_DAILY, PROCESS_READ, AnalyticsQueue, Reservation
from newsdesk.services.analytics import aggregate_daily_analytics

logger = structlog.get_logger(__name__)

JobHandler = Callable[[dict], Awaitable[None]]


def _log_crash(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("job_task_crashed", error=str(task.exception()))


def build_analytics_handlers(database: Database) -> dict[str, JobHandler]:
    async def process_read(data: dict) -> None:
        # Reads are already persisted; delivery may repeat, so nothing here may count.
        logger.debug("read_event_processed", article_id=data.get("article_id"), read_at=data.get("read_at"))

    async def aggregate_daily(data: dict) -> None:
        target = date.fromisoformat(data["date"]) if data.get("date") else None
        async with database.session() as session:
            result = await aggregate_daily_analytics(session, target)
        if result.failed_article_ids:
            # Full-replace upserts make a whole-day rerun safe; let the queue retry it.
            raise RuntimeError(
                f"aggregation for {result.day.isoformat()} failed for articles: {', '.join(result.failed_article_ids)}"
            )

    return {PROCESS_READ: process_read, AGGREGATE_DAILY: aggregate_daily}


class AnalyticsWorker:
    def __init__(
        self,
        queue: AnalyticsQueue,
        handlers: dict[str, JobHandler],
        concurrency: int | None = None,
        poll_timeout: float | None = None,
        recover_on_start: bool = False,
    ) -> None:
        self.queue = queue
        self.handlers = handlers
        self.concurrency = max(1, concurrency or settings.worker_concurrency)
        self.poll_timeout = settings.queue_poll_timeout_seconds if poll_timeout is None else poll_timeout
        self.recover_on_start = recover_on_start
        self._stopping = asyncio.Event()
        self._inflight: set[asyncio.Task] = set()

    async def process(self, reservation: Reservation) -> None:
        message = reservation.message
        handler = self.handlers.get(message.name)
        if handler is None:
            logger.warning("job_unknown", job_id=message.id, job_name=message.name)
            await self._acknowledge(reservation)
            return

        try:
            await handler(message.data)
        except Exception as exc:
            try:
                retrying = await self.queue.fail(reservation, exc)
            except (RedisError, OSError) as ack_exc:
                # Message stays in processing; recover_stalled requeues it.
                logger.error("job_ack_failed", job_id=message.id, job_name=message.name, error=str(ack_exc))
                return
            logger.error(
                "job_failed",
                job_id=message.id,
                job_name=message.name,
                attempt=message.attempts + 1,
                retrying=retrying,
                error=str(exc),
            )
            return

        if await self._acknowledge(reservation):
            logger.debug("job_completed", job_id=message.id, job_name=message.name)

    async def _acknowledge(self, reservation: Reservation) -> bool:
        try:
            await self.queue.complete(reservation)
        except (RedisError, OSError) as exc:
            message = reservation.message
            logger.error("job_ack_failed", job_id=message.id, job_name=message.name, error=str(exc))
            return False
        return True

    async def run_once(self) -> bool:
        """Reserve and process a single message. Returns False if the queue was empty."""
        reservation = await self.queue.reserve(self.poll_timeout)
        if reservation is None:
            return False
        await self.process(reservation)
        return True

    async def run(self) -> None:
        # Requeues every processing entry, including ones held by other live workers.
        if self.recover_on_start:
            await self.queue.recover_stalled()
        slots = asyncio.Semaphore(self.concurrency)
        logger.info("analytics_worker_started", queue=self.queue.name, concurrency=self.concurrency)

        while not self._stopping.is_set():
            await slots.acquire()
            try:
                reservation = await self.queue.reserve(self.poll_timeout)
            except Exception as exc:
                slots.release()
                logger.error("queue_reserve_failed", error=str(exc))
                await asyncio.sleep(1)
                continue

            if reservation is None:
                slots.release()
                continue

            task = asyncio.create_task(self.process(reservation))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            task.add_done_callback(_log_crash)
            task.add_done_callback(lambda _: slots.release())

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("analytics_worker_stopped", queue=self.queue.name)

    def stop(self) -> None:
        self._stopping.set()

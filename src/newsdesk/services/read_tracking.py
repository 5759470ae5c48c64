"""Read tracking: dedup gate, event append and dispatch, run off the request path.

A read is counted at most once per (article, identifier) inside the dedup
window. The identifier is the reader id when authenticated, else the client
address, else a shared anonymous sentinel, so guests behind one address are
counted as a single reader.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.db.queries import record_read_event
from newsdesk.jobs.queue import PROCESS_READ, AnalyticsQueue

logger = structlog.get_logger(__name__)

ANONYMOUS_IDENTIFIER = "anonymous"


def resolve_identifier(reader_id: str | None, ip: str | None) -> str:
    return reader_id or ip or ANONYMOUS_IDENTIFIER


def dedup_key(article_id: str, identifier: str) -> str:
    return f"read_limit:{article_id}:{identifier}"


class ReadThrottle:
    def __init__(self, redis, window_seconds: int = 10, fail_open: bool = True) -> None:
        self._redis = redis
        self.window_seconds = window_seconds
        self.fail_open = fail_open

    async def should_record(self, article_id: str, reader_id: str | None, ip: str | None) -> bool:
        key = dedup_key(article_id, resolve_identifier(reader_id, ip))
        try:
            # SET NX EX: check and claim in one round trip.
            created = await self._redis.set(key, "1", nx=True, ex=self.window_seconds)
        except (RedisError, OSError) as exc:
            logger.warning("read_throttle_unavailable", key=key, fail_open=self.fail_open, error=str(exc))
            return self.fail_open
        return bool(created)


class ReadTracker:
    def __init__(
        self,
        throttle: ReadThrottle,
        session_factory: Callable[[], AsyncSession],
        queue: AnalyticsQueue,
    ) -> None:
        self.throttle = throttle
        self._session_factory = session_factory
        self.queue = queue
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def record_read(self, article_id: str, reader_id: str | None, ip: str | None) -> bool:
        """Run the full tracking chain. Returns True when a ReadEvent was stored; never raises."""
        try:
            if not await self.throttle.should_record(article_id, reader_id, ip):
                logger.debug("read_deduplicated", article_id=article_id)
                return False

            async with self._session_factory() as session:
                event = await record_read_event(session, article_id, reader_id)
        except Exception:
            logger.exception("read_record_failed", article_id=article_id)
            return False

        try:
            await self.queue.add(PROCESS_READ, {"article_id": article_id, "read_at": event.read_at.isoformat()})
        except Exception:
            logger.exception("read_enqueue_failed", article_id=article_id, read_event_id=event.id)
        return True

    def spawn(self, article_id: str, reader_id: str | None, ip: str | None) -> asyncio.Task:
        """Start tracking in the background; the caller does not await it."""
        task = asyncio.create_task(self.record_read(article_id, reader_id, ip))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

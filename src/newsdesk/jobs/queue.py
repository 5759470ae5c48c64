"""Redis-backed analytics job queue with at-least-once delivery.

Layout under ``{prefix}:{name}``:

* ``wait``        list of messages ready to run (FIFO)
* ``processing``  list of messages currently held by a worker
* ``delayed``     sorted set of retries scored by the time they become ready
* ``completed``   capped list of finished messages, newest first
* ``failed``      capped dead-letter list of messages that exhausted retries
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace

import structlog

from newsdesk.config import settings

logger = structlog.get_logger(__name__)

PROCESS_READ = "process-read"
AGGREGATE_DAILY = "aggregate-daily"


@dataclass(slots=True)
class QueueMessage:
    name: str
    data: dict
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempts: int = 0
    enqueued_at: float = 0.0
    last_error: str | None = None

    def dumps(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def loads(cls, raw: str) -> QueueMessage:
        return cls(**json.loads(raw))


@dataclass(slots=True)
class Reservation:
    message: QueueMessage
    raw: str


class AnalyticsQueue:
    def __init__(
        self,
        redis,
        name: str | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        keep_completed: int | None = None,
        keep_failed: int | None = None,
        prefix: str = "newsdesk:queue",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self.name = name or settings.analytics_queue_name
        self.max_attempts = max(1, max_attempts or settings.queue_max_attempts)
        self.backoff_seconds = settings.queue_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.keep_completed = keep_completed or settings.queue_keep_completed
        self.keep_failed = keep_failed or settings.queue_keep_failed
        self._clock = clock

        base = f"{prefix}:{self.name}"
        self.wait_key = f"{base}:wait"
        self.processing_key = f"{base}:processing"
        self.delayed_key = f"{base}:delayed"
        self.completed_key = f"{base}:completed"
        self.failed_key = f"{base}:failed"

    def backoff_delay(self, attempts: int) -> float:
        """Exponential delay before retry number ``attempts`` (1 -> base, 2 -> 2*base, ...)."""
        return self.backoff_seconds * (2 ** max(0, attempts - 1))

    async def add(self, name: str, data: dict | None = None) -> QueueMessage:
        message = QueueMessage(name=name, data=data or {}, enqueued_at=self._clock())
        await self._redis.rpush(self.wait_key, message.dumps())
        return message

    async def promote_due(self) -> int:
        due = await self._redis.zrangebyscore(self.delayed_key, "-inf", self._clock())
        promoted = 0
        for raw in due:
            # zrem succeeds for exactly one worker when several race on the same entry.
            if await self._redis.zrem(self.delayed_key, raw):
                await self._redis.rpush(self.wait_key, raw)
                promoted += 1
        return promoted

    async def reserve(self, timeout: float = 0) -> Reservation | None:
        """Move the next ready message to processing. ``timeout <= 0`` polls without blocking."""
        await self.promote_due()
        if timeout > 0:
            raw = await self._redis.blmove(self.wait_key, self.processing_key, timeout, "LEFT", "RIGHT")
        else:
            # BLMOVE with timeout 0 blocks forever.
            raw = await self._redis.lmove(self.wait_key, self.processing_key, "LEFT", "RIGHT")
        if raw is None:
            return None
        return Reservation(message=QueueMessage.loads(raw), raw=raw)

    async def complete(self, reservation: Reservation) -> None:
        await self._redis.lpush(self.completed_key, reservation.raw)
        await self._redis.ltrim(self.completed_key, 0, self.keep_completed - 1)
        await self._redis.lrem(self.processing_key, 1, reservation.raw)

    async def fail(self, reservation: Reservation, error: BaseException) -> bool:
        """Record a failed attempt. Returns True if the message will be retried."""
        message = replace(
            reservation.message,
            attempts=reservation.message.attempts + 1,
            last_error=f"{type(error).__name__}: {error}",
        )
        retry = message.attempts < self.max_attempts
        # Write the follow-up entry before releasing the held one so a crash duplicates rather than drops.
        if retry:
            ready_at = self._clock() + self.backoff_delay(message.attempts)
            await self._redis.zadd(self.delayed_key, {message.dumps(): ready_at})
        else:
            await self._redis.lpush(self.failed_key, message.dumps())
            await self._redis.ltrim(self.failed_key, 0, self.keep_failed - 1)
        await self._redis.lrem(self.processing_key, 1, reservation.raw)
        return retry

    async def recover_stalled(self) -> int:
        """Requeue messages left in ``processing`` by a worker that died mid-job."""
        recovered = 0
        while await self._redis.lmove(self.processing_key, self.wait_key, "RIGHT", "LEFT") is not None:
            recovered += 1
        if recovered:
            logger.warning("queue_recovered_stalled", queue=self.name, count=recovered)
        return recovered

    async def dead_letters(self, limit: int = 100) -> list[QueueMessage]:
        raws = await self._redis.lrange(self.failed_key, 0, limit - 1)
        return [QueueMessage.loads(raw) for raw in raws]

    async def counts(self) -> dict[str, int]:
        return {
            "wait": await self._redis.llen(self.wait_key),
            "processing": await self._redis.llen(self.processing_key),
            "delayed": await self._redis.zcard(self.delayed_key),
            "completed": await self._redis.llen(self.completed_key),
            "failed": await self._redis.llen(self.failed_key),
        }

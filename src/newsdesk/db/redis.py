import asyncio

import redis.asyncio as redis
import structlog

from newsdesk.config import settings

logger = structlog.get_logger(__name__)


class RedisClient:
    """Process-wide Redis connection with an explicit connect/close lifecycle."""

    def __init__(self, url: str | None = None) -> None:
        self.url = url or settings.redis_url
        self._client: redis.Redis | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis is not connected")
        return self._client

    async def connect(self, max_retries: int = 3, base_delay: float = 1.0) -> None:
        if self._client is not None:
            return
        last_error: Exception | None = None
        for attempt in range(max_retries):
            client = redis.from_url(self.url, decode_responses=True)
            try:
                await client.ping()
            except (redis.RedisError, OSError) as exc:
                last_error = exc
                await client.aclose()
                if attempt < max_retries - 1:
                    delay = base_delay * (2**attempt)
                    logger.warning("redis_connect_retry", attempt=attempt + 1, delay=delay, error=str(exc))
                    await asyncio.sleep(delay)
                continue
            self._client = client
            logger.info("redis_connected", url=self.url)
            return
        raise ConnectionError(f"Failed to connect to Redis after {max_retries} attempts: {last_error}")

    async def close(self) -> None:
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
        logger.info("redis_disconnected")

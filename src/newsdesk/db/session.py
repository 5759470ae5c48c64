import ssl
from collections.abc import AsyncGenerator

import structlog
from fastapi import Request
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from newsdesk.config import settings

logger = structlog.get_logger(__name__)


_VERIFIED_SSLMODES = {"verify-ca", "verify-full"}


def asyncpg_engine_options(database_url: str) -> tuple[str, dict]:
    """Translate libpq SSL query options, which asyncpg rejects, into an ``ssl`` connect argument."""
    url = make_url(database_url)
    sslmode = url.query.get("sslmode")
    url = url.difference_update_query(["sslmode", "channel_binding"])
    rendered = url.render_as_string(hide_password=False)
    if sslmode in (None, "disable"):
        return rendered, {}

    context = ssl.create_default_context()
    if sslmode not in _VERIFIED_SSLMODES:
        # allow, prefer and require encrypt without checking the server certificate.
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    elif sslmode == "verify-ca":
        context.check_hostname = False
    return rendered, {"ssl": context}


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, url: str | None = None) -> None:
        self.url = url or settings.database_url
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected")
        return self._engine

    async def connect(self) -> None:
        if self._engine is not None:
            return
        url, connect_args = asyncpg_engine_options(self.url)
        self._engine = create_async_engine(
            url, echo=False, connect_args=connect_args,
            pool_size=5, max_overflow=10, pool_pre_ping=True, pool_recycle=300,
        )
        self._sessionmaker = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("database_connected")

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.info("database_disconnected")

    def session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not connected")
        return self._sessionmaker()


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session

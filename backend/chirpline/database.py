"""
Chirpline Backend — Database Connection Management
====================================================

What:  Async SQLAlchemy engine, session factory, startup connection check,
       and the per-request session dependency for route groups.
How:   Database wraps one engine built from Settings. connect() probes the
       server with SELECT 1, retrying with exponential backoff and jitter
       (tenacity). The server schedules it once, in the background, after
       the listening socket is bound; requests are served while it runs.
Who:   Created by create_app(), stored on app.state.db; route groups use
       Depends(get_db_session).

Schema and models belong to the route-group packages, not to this module.
"""

import logging
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from chirpline.config import Settings
from chirpline.exceptions import ConfigurationError, DatabaseError

logger = logging.getLogger(__name__)

# Errors worth retrying while the database is still coming up
TRANSIENT_ERRORS = (SQLAlchemyError, OSError, ConnectionError, TimeoutError)


def build_engine(settings: Settings) -> AsyncEngine:
    options = {
        "pool_pre_ping": settings.db_pool_pre_ping,
        "echo": settings.log_level == "DEBUG",
    }
    # SQLite (tests, local tinkering) does not take queue-pool sizing
    if not settings.database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=3600,
        )
    return create_async_engine(settings.database_url, **options)


class Database:
    """Owns the engine and session factory for one application instance."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = build_engine(settings)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self.connected = False

    @property
    def display_url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def connect(self) -> None:
        """
        Verify the database is reachable, retrying transient failures.

        Attempts and backoff bounds come from DB_CONNECT_* settings.

        Raises:
            DatabaseError: every attempt failed.
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                stop=stop_after_attempt(self.settings.db_connect_attempts),
                wait=wait_exponential_jitter(
                    initial=self.settings.db_connect_min_wait,
                    max=self.settings.db_connect_max_wait,
                ),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    await self.ping()
        except TRANSIENT_ERRORS as e:
            logger.error(
                "Database unreachable at %s after %d attempts: %s",
                self.display_url,
                self.settings.db_connect_attempts,
                e,
            )
            raise DatabaseError(
                context={"url": self.display_url, "error": str(e)},
            ) from e

        self.connected = True
        logger.info("Database connected: %s", self.display_url)

    async def dispose(self) -> None:
        """Close every pooled connection. Called on shutdown."""
        await self.engine.dispose()
        self.connected = False


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: one session per request, committed on success and
    rolled back on any exception.
    """
    db: Database = getattr(request.app.state, "db", None)
    if db is None:
        raise ConfigurationError("Database is not initialized")

    async with db.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

"""Async database engine, session factory and declarative base."""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm.exc import StaleDataError

from fixit.core.config import get_settings
from fixit.core.errors import ConflictError

logger = logging.getLogger(__name__)

settings = get_settings()

T = TypeVar("T")

MAX_CONFLICT_RETRIES = 3

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all models."""


def _engine_kwargs(url: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        kwargs["connect_args"] = {
            "timeout": settings.db_timeout_seconds,
            "command_timeout": settings.db_timeout_seconds,
        }
    return kwargs


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session_factory() as session:
        yield session


async def run_in_transaction(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    attempts: int = MAX_CONFLICT_RETRIES,
) -> T:
    """Run ``operation`` and commit, retrying on optimistic-lock conflicts.

    ``operation`` must (re)load the rows it mutates, since a conflict rolls
    the session back and expires everything it holds.
    """
    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
            await db.commit()
            return result
        except StaleDataError:
            await db.rollback()
            logger.warning(f"[DB] Concurrent modification detected (attempt {attempt}/{attempts})")
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"[DB] Integrity violation: {e.orig}")
            raise ConflictError("The change conflicts with existing data") from e
        except Exception:
            await db.rollback()
            raise
    raise ConflictError("The resource was modified concurrently, please retry")

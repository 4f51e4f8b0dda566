# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Database configuration, async engine setup and transaction helpers."""

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, TypeVar

from sqlalchemy import DateTime, inspect
from sqlalchemy.engine import Dialect
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from swapmatch.config import get_settings
from swapmatch.errors import SchemaMismatchError, UnderlyingStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Session.info key tracking how many unit_of_work blocks are open
_UOW_DEPTH_KEY = "swapmatch_uow_depth"


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""

    pass


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timestamp stored as naive UTC and returned timezone-aware.

    SQLite drops offsets, so values are normalised to UTC on the way in
    and tagged with UTC on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(
        self, value: datetime | None, dialect: Dialect
    ) -> datetime | None:
        """Normalise to naive UTC before storage."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(
        self, value: datetime | None, dialect: Dialect
    ) -> datetime | None:
        """Attach UTC to loaded values."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def get_database_url() -> str:
    """Get the database URL, converting sqlite to async driver.

    Returns:
        Database URL with async driver prefix.
    """
    settings = get_settings()
    url = settings.database_url

    # Convert sqlite:// to sqlite+aiosqlite://
    if url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    return url


def create_engine() -> async_sessionmaker[AsyncSession]:
    """Create async database engine and session factory.

    Returns:
        Async session maker for database operations.
    """
    url = get_database_url()
    engine = create_async_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False} if "sqlite" in url else {},
    )

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Global session factory - initialized on first use
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session factory.

    Returns:
        Async session maker for database operations.
    """
    global _session_factory  # noqa: PLW0603
    if _session_factory is None:
        _session_factory = create_engine()
    return _session_factory


@asynccontextmanager
async def unit_of_work(
    session: AsyncSession, operation: str, **context: Any
) -> AsyncGenerator[AsyncSession]:
    """Run a block as one all-or-nothing transaction.

    Nested blocks join the outermost one; only the outermost block commits
    or rolls back. SQLAlchemy failures are logged with the operation name
    and context and re-raised as UnderlyingStoreError.

    Args:
        session: Session the work runs in.
        operation: Engine operation name, used in logs and errors.
        **context: Entity ids identifying the transaction.

    Yields:
        The same session.

    Raises:
        UnderlyingStoreError: If the database layer fails.
    """
    depth = session.info.get(_UOW_DEPTH_KEY, 0)
    session.info[_UOW_DEPTH_KEY] = depth + 1
    outermost = depth == 0
    try:
        yield session
        if outermost:
            await session.commit()
    except SQLAlchemyError as e:
        if outermost:
            await session.rollback()
        logger.error(
            "Store failure during %s (%s): %s",
            operation,
            ", ".join(f"{k}={v}" for k, v in context.items()),
            e,
        )
        raise UnderlyingStoreError(operation, context) from e
    except Exception:
        if outermost:
            await session.rollback()
        raise
    finally:
        session.info[_UOW_DEPTH_KEY] = depth


def in_unit_of_work(session: AsyncSession) -> bool:
    """Check whether a unit_of_work block is open on the session."""
    return session.info.get(_UOW_DEPTH_KEY, 0) > 0


async def read_with_retry(
    session: AsyncSession,
    operation: str,
    read: Callable[[], Awaitable[T]],
    **context: Any,
) -> T:
    """Run an idempotent read, retrying once on a transient store failure.

    Inside an open unit of work the read is not retried, since rolling
    back would discard the caller's pending writes.

    Args:
        session: Session the read runs in.
        operation: Engine operation name, used in logs and errors.
        read: Zero-argument coroutine factory performing the read.
        **context: Entity ids identifying the read.

    Returns:
        Result of the read.

    Raises:
        UnderlyingStoreError: If both attempts fail.
    """
    try:
        return await read()
    except OperationalError as e:
        if in_unit_of_work(session):
            raise UnderlyingStoreError(operation, context) from e
        logger.warning("Retrying %s after store failure: %s", operation, e)
        await session.rollback()
    except SQLAlchemyError as e:
        logger.error("Store failure during %s: %s", operation, e)
        raise UnderlyingStoreError(operation, context) from e

    try:
        return await read()
    except SQLAlchemyError as e:
        logger.error(
            "Store failure during %s (%s): %s",
            operation,
            ", ".join(f"{k}={v}" for k, v in context.items()),
            e,
        )
        raise UnderlyingStoreError(operation, context) from e


async def verify_schema(engine: AsyncEngine) -> None:
    """Check the live schema against the ORM metadata once.

    Args:
        engine: Engine connected to the database to check.

    Raises:
        SchemaMismatchError: If tables or columns are missing.
    """
    # Register every mapped table on Base.metadata
    import swapmatch.models  # noqa: F401, PLC0415

    def _collect_problems(sync_conn: Any) -> list[str]:
        inspector = inspect(sync_conn)
        existing = set(inspector.get_table_names())
        problems: list[str] = []
        for table in Base.metadata.sorted_tables:
            if table.name not in existing:
                problems.append(f"missing table {table.name}")
                continue
            live_columns = {col["name"] for col in inspector.get_columns(table.name)}
            problems.extend(
                f"missing column {table.name}.{column.name}"
                for column in table.columns
                if column.name not in live_columns
            )
        return problems

    async with engine.connect() as conn:
        problems = await conn.run_sync(_collect_problems)

    if problems:
        logger.error("Schema contract check failed: %s", "; ".join(problems))
        raise SchemaMismatchError(problems)

    logger.info("Schema contract check passed")

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Pytest fixtures for swap matching engine tests."""

import os
from collections.abc import AsyncGenerator
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


# Set environment variables BEFORE any swapmatch imports
def _setup_env() -> None:
    """Set up test environment variables at module load."""
    if "DATABASE_URL" not in os.environ:
        os.environ["DATABASE_URL"] = "sqlite:///./test.db"
    if "LOG_LEVEL" not in os.environ:
        os.environ["LOG_LEVEL"] = "DEBUG"
    if "VALIDATE_SCHEMA_ON_STARTUP" not in os.environ:
        os.environ["VALIDATE_SCHEMA_ON_STARTUP"] = "false"


_setup_env()

from fastapi import FastAPI  # noqa: E402

import swapmatch.models  # noqa: E402, F401
from swapmatch.config import Settings  # noqa: E402
from swapmatch.database import Base, utc_now  # noqa: E402
from swapmatch.models.auction import AuctionSettings  # noqa: E402
from swapmatch.models.listing import (  # noqa: E402
    AcceptanceStrategy,
    Listing,
    ListingStatus,
)
from swapmatch.models.reservation import Reservation  # noqa: E402
from swapmatch.services.auction_service import AuctionService  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    yield
    test_db_path = Path("test.db")
    if test_db_path.exists():
        test_db_path.unlink()


@pytest.fixture
async def async_engine():
    """Create an async in-memory test database engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        # Sessions share the one in-memory connection; a reset on checkin
        # would roll back a sibling session's uncommitted work
        pool_reset_on_return=None,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, _connection_record):
        """Enable SQLite FK constraints on each connection."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the test engine."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession]:
    """Create an async test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    """Engine settings with test defaults."""
    return Settings(
        database_url="sqlite:///:memory:",
        cycle_check_max_depth=10,
        auction_default_max_proposals=10,
        auction_min_lead_days=7,
        compatibility_cache_ttl_seconds=3600,
    )


class RecordingEventSink:
    """Event sink keeping every emitted event for assertions."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def events() -> RecordingEventSink:
    """Create a recording event sink."""
    return RecordingEventSink()


class MarketFactory:
    """Creates reservations, listings and auctions and returns their IDs.

    IDs are returned as plain integers so tests never touch ORM objects
    that a later rollback may have expired.
    """

    def __init__(self, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

    async def reservation(self, owner_id: str, **overrides: Any) -> int:
        now = utc_now()
        values: dict[str, Any] = {
            "owner_id": owner_id,
            "location": "Paris",
            "country": "France",
            "check_in": now + timedelta(days=60),
            "check_out": now + timedelta(days=65),
            "total_price": Decimal("1000.00"),
            "accommodation_type": "hotel",
            "guests": 2,
        }
        values.update(overrides)
        reservation = Reservation(**values)
        self._session.add(reservation)
        await self._session.flush()
        reservation_id = reservation.id
        await self._session.commit()
        return reservation_id

    async def listing(
        self,
        owner_id: str,
        strategy: AcceptanceStrategy = AcceptanceStrategy.FIRST_MATCH,
        status: ListingStatus = ListingStatus.PENDING,
        expires_in: timedelta = timedelta(days=30),
        reservation: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> int:
        reservation_id = await self.reservation(owner_id, **(reservation or {}))
        listing = Listing(
            reservation_id=reservation_id,
            status=status,
            acceptance_strategy=strategy,
            expires_at=utc_now() + expires_in,
            **overrides,
        )
        self._session.add(listing)
        await self._session.flush()
        listing_id = listing.id
        await self._session.commit()
        return listing_id

    async def auction_listing(
        self,
        owner_id: str,
        ends_in: timedelta = timedelta(days=10),
        expires_in: timedelta = timedelta(days=30),
        **auction_settings: Any,
    ) -> tuple[int, int]:
        """Create an auction-mode listing with a running auction."""
        listing_id = await self.listing(
            owner_id, AcceptanceStrategy.AUCTION, expires_in=expires_in
        )
        service = AuctionService(self._session, settings=self._settings)
        auction = await service.create_auction(
            listing_id,
            AuctionSettings(end_date=utc_now() + ends_in, **auction_settings),
        )
        return listing_id, auction.id


@pytest.fixture
def market(async_session, settings) -> MarketFactory:
    """Create a market factory bound to the test session."""
    return MarketFactory(async_session, settings)


@pytest.fixture
def app() -> FastAPI:
    """Create a test FastAPI application."""
    from swapmatch.main import create_app

    return create_app()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

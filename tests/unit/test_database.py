# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Unit tests for transaction helpers and the schema contract check."""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

from swapmatch.database import (
    UTCDateTime,
    in_unit_of_work,
    read_with_retry,
    unit_of_work,
    utc_now,
    verify_schema,
)
from swapmatch.errors import NotFoundError, SchemaMismatchError, UnderlyingStoreError
from swapmatch.models.listing import Listing
from swapmatch.models.reservation import Reservation


def _operational_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("database is locked"))


def _reservation(owner_id: str = "user-1") -> Reservation:
    now = utc_now()
    return Reservation(
        owner_id=owner_id,
        location="Rome",
        check_in=now + timedelta(days=30),
        check_out=now + timedelta(days=33),
        total_price=500,
    )


class TestUTCDateTime:
    """Tests for the UTCDateTime column type."""

    def test_bind_converts_to_naive_utc(self):
        """Test aware values are stored as naive UTC."""
        column_type = UTCDateTime()
        value = datetime(2026, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))

        stored = column_type.process_bind_param(value, None)

        assert stored == datetime(2026, 5, 1, 10, 0)
        assert stored.tzinfo is None

    def test_result_is_timezone_aware(self):
        """Test loaded values carry UTC."""
        column_type = UTCDateTime()

        loaded = column_type.process_result_value(datetime(2026, 5, 1, 10, 0), None)

        assert loaded == datetime(2026, 5, 1, 10, 0, tzinfo=UTC)

    def test_none_passes_through(self):
        """Test NULL stays NULL in both directions."""
        column_type = UTCDateTime()

        assert column_type.process_bind_param(None, None) is None
        assert column_type.process_result_value(None, None) is None


class TestUnitOfWork:
    """Tests for unit_of_work."""

    @pytest.mark.asyncio
    async def test_commits_on_success(self, async_session):
        """Test the outermost block commits."""
        async with unit_of_work(async_session, "create_reservation"):
            async_session.add(_reservation())
            await async_session.flush()

        await async_session.rollback()
        rows = (await async_session.execute(select(Reservation))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_rolls_back_on_domain_error(self, async_session):
        """Test domain errors roll back and propagate unchanged."""
        with pytest.raises(NotFoundError):
            async with unit_of_work(async_session, "create_reservation"):
                async_session.add(_reservation())
                await async_session.flush()
                raise NotFoundError("listing", 1)

        rows = (await async_session.execute(select(Reservation))).scalars().all()
        assert rows == []

    @pytest.mark.asyncio
    async def test_nested_blocks_commit_once(self, async_session):
        """Test inner blocks join the outer one and roll back with it."""
        with pytest.raises(RuntimeError):
            async with unit_of_work(async_session, "outer"):
                async with unit_of_work(async_session, "inner"):
                    async_session.add(_reservation())
                    await async_session.flush()
                    assert in_unit_of_work(async_session)
                raise RuntimeError("boom")

        assert not in_unit_of_work(async_session)
        rows = (await async_session.execute(select(Reservation))).scalars().all()
        assert rows == []

    @pytest.mark.asyncio
    async def test_store_errors_become_underlying_store_error(self, async_session):
        """Test SQLAlchemy failures are wrapped with operation context."""
        with pytest.raises(UnderlyingStoreError) as exc_info:
            async with unit_of_work(async_session, "create_listing", listing_id=0):
                async_session.add(
                    Listing(reservation_id=999, expires_at=utc_now() + timedelta(1))
                )
                await async_session.flush()

        assert exc_info.value.operation == "create_listing"
        assert exc_info.value.context == {"listing_id": 0}
        assert exc_info.value.retryable is True


class TestReadWithRetry:
    """Tests for read_with_retry."""

    @pytest.mark.asyncio
    async def test_returns_result(self, async_session):
        """Test a successful read is returned as is."""

        async def read():
            return 42

        assert await read_with_retry(async_session, "answer", read) == 42

    @pytest.mark.asyncio
    async def test_retries_once_on_operational_error(self, async_session):
        """Test a transient failure is retried a single time."""
        calls = []

        async def read():
            calls.append(1)
            if len(calls) == 1:
                raise _operational_error()
            return "ok"

        assert await read_with_retry(async_session, "flaky", read) == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_second_failure_raises(self, async_session):
        """Test two failures surface as UnderlyingStoreError."""
        calls = []

        async def read():
            calls.append(1)
            raise _operational_error()

        with pytest.raises(UnderlyingStoreError) as exc_info:
            await read_with_retry(async_session, "broken", read, listing_id=3)

        assert len(calls) == 2
        assert exc_info.value.context == {"listing_id": 3}

    @pytest.mark.asyncio
    async def test_no_retry_inside_unit_of_work(self, async_session):
        """Test reads inside a transaction are not retried."""
        calls = []

        async def read():
            calls.append(1)
            raise _operational_error()

        with pytest.raises(UnderlyingStoreError):
            async with unit_of_work(async_session, "outer"):
                await read_with_retry(async_session, "inner_read", read)

        assert len(calls) == 1


class TestVerifySchema:
    """Tests for the startup schema contract check."""

    @pytest.mark.asyncio
    async def test_matching_schema_passes(self, async_engine):
        """Test a freshly created schema passes."""
        await verify_schema(async_engine)

    @pytest.mark.asyncio
    async def test_missing_table_and_column_reported(self, async_engine):
        """Test every missing table and column is listed."""
        async with async_engine.begin() as conn:
            await conn.execute(text("DROP TABLE compatibility_cache"))
            await conn.execute(text("DROP TABLE targeting_history"))
            await conn.execute(
                text("CREATE TABLE targeting_history (id INTEGER PRIMARY KEY)")
            )

        with pytest.raises(SchemaMismatchError) as exc_info:
            await verify_schema(async_engine)

        problems = exc_info.value.problems
        assert "missing table compatibility_cache" in problems
        assert "missing column targeting_history.action" in problems
        assert "missing column targeting_history.metadata" in problems

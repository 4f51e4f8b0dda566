# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Repository for the compatibility score cache."""

from datetime import datetime
from typing import Any, cast

from sqlalchemy import CursorResult, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.database import utc_now
from swapmatch.models.compatibility import CompatibilityCacheEntry


class CompatibilityCacheRepository:
    """Repository for CompatibilityCacheEntry rows keyed by listing pair."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self._session = session

    async def get_fresh(
        self, first_id: int, second_id: int, now: datetime | None = None
    ) -> CompatibilityCacheEntry | None:
        """Get an unexpired entry for a pair.

        Args:
            first_id: One listing of the pair.
            second_id: The other listing.
            now: Reference time. Defaults to current UTC time.

        Returns:
            Entry if present and not expired, None otherwise.
        """
        low, high = CompatibilityCacheEntry.pair_key(first_id, second_id)
        result = await self._session.execute(
            select(CompatibilityCacheEntry).where(
                CompatibilityCacheEntry.listing_low_id == low,
                CompatibilityCacheEntry.listing_high_id == high,
                CompatibilityCacheEntry.expires_at > (now or utc_now()),
            )
        )
        return result.scalar_one_or_none()

    async def store(
        self,
        first_id: int,
        second_id: int,
        score: int,
        analysis: dict[str, Any],
        expires_at: datetime,
    ) -> CompatibilityCacheEntry:
        """Insert or replace the entry for a pair.

        Args:
            first_id: One listing of the pair.
            second_id: The other listing.
            score: Overall compatibility score.
            analysis: Factor breakdown.
            expires_at: When the entry stops being served.

        Returns:
            The stored entry.
        """
        low, high = CompatibilityCacheEntry.pair_key(first_id, second_id)
        result = await self._session.execute(
            select(CompatibilityCacheEntry).where(
                CompatibilityCacheEntry.listing_low_id == low,
                CompatibilityCacheEntry.listing_high_id == high,
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            entry = CompatibilityCacheEntry(listing_low_id=low, listing_high_id=high)
            self._session.add(entry)
        entry.score = score
        entry.analysis = analysis
        entry.computed_at = utc_now()
        entry.expires_at = expires_at
        await self._session.flush()
        return entry

    async def delete_pair(self, first_id: int, second_id: int) -> int:
        """Drop the entry for a pair.

        Returns:
            Number of rows deleted.
        """
        low, high = CompatibilityCacheEntry.pair_key(first_id, second_id)
        result = cast(
            "CursorResult[tuple[()]]",
            await self._session.execute(
                delete(CompatibilityCacheEntry).where(
                    CompatibilityCacheEntry.listing_low_id == low,
                    CompatibilityCacheEntry.listing_high_id == high,
                )
            ),
        )
        await self._session.flush()
        return result.rowcount or 0

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete entries past their expiry.

        Args:
            now: Reference time. Defaults to current UTC time.

        Returns:
            Number of rows deleted.
        """
        result = cast(
            "CursorResult[tuple[()]]",
            await self._session.execute(
                delete(CompatibilityCacheEntry).where(
                    CompatibilityCacheEntry.expires_at <= (now or utc_now())
                )
            ),
        )
        await self._session.flush()
        return result.rowcount or 0

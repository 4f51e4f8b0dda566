# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Repository for the targeting graph and its history log."""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, cast

from sqlalchemy import CursorResult, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.database import utc_now
from swapmatch.models.listing import Listing
from swapmatch.models.reservation import Reservation
from swapmatch.models.target_edge import (
    EdgeStatus,
    HistoryAction,
    TargetEdge,
    TargetingHistoryEntry,
)


class TargetRepository:
    """Repository for TargetEdge rows and their history entries.

    History entries are insert-only.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self._session = session

    async def get_by_id(self, edge_id: int) -> TargetEdge | None:
        """Get edge by ID.

        Args:
            edge_id: Edge primary key.

        Returns:
            TargetEdge if found, None otherwise.
        """
        result = await self._session.execute(
            select(TargetEdge)
            .where(TargetEdge.id == edge_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_outgoing(self, source_id: int) -> TargetEdge | None:
        """Get the active edge leaving a listing, if any."""
        result = await self._session.execute(
            select(TargetEdge)
            .where(
                TargetEdge.source_listing_id == source_id,
                TargetEdge.status == EdgeStatus.ACTIVE,
            )
            .order_by(TargetEdge.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_incoming(self, target_id: int) -> Sequence[TargetEdge]:
        """Get active edges pointing at a listing, oldest first."""
        result = await self._session.execute(
            select(TargetEdge)
            .where(
                TargetEdge.target_listing_id == target_id,
                TargetEdge.status == EdgeStatus.ACTIVE,
            )
            .order_by(TargetEdge.created_at, TargetEdge.id)
        )
        return result.scalars().all()

    async def get_active_involving(self, listing_id: int) -> Sequence[TargetEdge]:
        """Get active edges where the listing is source or target."""
        result = await self._session.execute(
            select(TargetEdge)
            .where(
                TargetEdge.status == EdgeStatus.ACTIVE,
                or_(
                    TargetEdge.source_listing_id == listing_id,
                    TargetEdge.target_listing_id == listing_id,
                ),
            )
            .order_by(TargetEdge.id)
        )
        return result.scalars().all()

    async def active_targets_of(self, listing_id: int) -> list[int]:
        """Get the targets of active edges leaving a listing.

        This is the graph read used by cycle detection.

        Args:
            listing_id: Source listing.

        Returns:
            Target listing IDs.
        """
        result = await self._session.execute(
            select(TargetEdge.target_listing_id).where(
                TargetEdge.source_listing_id == listing_id,
                TargetEdge.status == EdgeStatus.ACTIVE,
            )
        )
        return list(result.scalars().all())

    async def count_active_incoming(self, target_id: int) -> int:
        """Count active edges pointing at a listing."""
        result = await self._session.execute(
            select(func.count())
            .select_from(TargetEdge)
            .where(
                TargetEdge.target_listing_id == target_id,
                TargetEdge.status == EdgeStatus.ACTIVE,
            )
        )
        return result.scalar_one()

    async def has_active_outgoing(self, source_id: int) -> bool:
        """Check whether a listing currently targets anything."""
        result = await self._session.execute(
            select(TargetEdge.id)
            .where(
                TargetEdge.source_listing_id == source_id,
                TargetEdge.status == EdgeStatus.ACTIVE,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def active_incoming_owners(self, target_id: int) -> set[str]:
        """Resolve the owners of the sources of active incoming edges.

        Args:
            target_id: Target listing.

        Returns:
            Owner IDs derived through each source listing's reservation.
        """
        result = await self._session.execute(
            select(Reservation.owner_id)
            .select_from(TargetEdge)
            .join(Listing, Listing.id == TargetEdge.source_listing_id)
            .join(Reservation, Reservation.id == Listing.reservation_id)
            .where(
                TargetEdge.target_listing_id == target_id,
                TargetEdge.status == EdgeStatus.ACTIVE,
            )
        )
        return set(result.scalars().all())

    async def active_outgoing_for_owner(self, owner_id: str) -> Sequence[TargetEdge]:
        """Get active edges leaving any listing a user owns."""
        result = await self._session.execute(
            select(TargetEdge)
            .join(Listing, Listing.id == TargetEdge.source_listing_id)
            .join(Reservation, Reservation.id == Listing.reservation_id)
            .where(
                Reservation.owner_id == owner_id,
                TargetEdge.status == EdgeStatus.ACTIVE,
            )
            .order_by(TargetEdge.id)
        )
        return result.scalars().all()

    async def add(self, edge: TargetEdge) -> TargetEdge:
        """Insert a new edge.

        Args:
            edge: Edge entity to insert.

        Returns:
            Inserted edge with ID.
        """
        self._session.add(edge)
        await self._session.flush()
        await self._session.refresh(edge)
        return edge

    async def set_status(
        self, edge_id: int, expected: str, new_status: str, now: datetime | None = None
    ) -> bool:
        """Move an edge to a new status if it still has the expected one.

        Args:
            edge_id: Edge primary key.
            expected: Status the edge must currently have.
            new_status: Status to set.
            now: Resolution timestamp. Defaults to current UTC time.

        Returns:
            True if the row changed.
        """
        stamp = now or utc_now()
        result = cast(
            "CursorResult[tuple[()]]",
            await self._session.execute(
                update(TargetEdge)
                .where(TargetEdge.id == edge_id, TargetEdge.status == expected)
                .values(
                    status=new_status,
                    exclusive_target_id=None,
                    resolved_at=stamp,
                    updated_at=stamp,
                )
            ),
        )
        return (result.rowcount or 0) == 1

    async def add_history(
        self,
        edge: TargetEdge,
        action: HistoryAction,
        details: dict[str, Any] | None = None,
    ) -> TargetingHistoryEntry:
        """Append a history entry for an edge transition.

        Args:
            edge: Edge the transition applies to.
            action: Transition performed.
            details: Optional metadata such as the reason.

        Returns:
            The appended entry.
        """
        entry = TargetingHistoryEntry(
            edge_id=edge.id,
            source_listing_id=edge.source_listing_id,
            target_listing_id=edge.target_listing_id,
            action=action,
            details=details,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def history_for(self, listing_id: int) -> Sequence[TargetingHistoryEntry]:
        """Get history where the listing is source or target, newest first."""
        result = await self._session.execute(
            select(TargetingHistoryEntry)
            .where(
                or_(
                    TargetingHistoryEntry.source_listing_id == listing_id,
                    TargetingHistoryEntry.target_listing_id == listing_id,
                )
            )
            .order_by(
                TargetingHistoryEntry.created_at.desc(),
                TargetingHistoryEntry.id.desc(),
            )
        )
        return result.scalars().all()

    async def history_for_edge(self, edge_id: int) -> Sequence[TargetingHistoryEntry]:
        """Get history of a single edge in the order it was written."""
        result = await self._session.execute(
            select(TargetingHistoryEntry)
            .where(TargetingHistoryEntry.edge_id == edge_id)
            .order_by(TargetingHistoryEntry.id)
        )
        return result.scalars().all()

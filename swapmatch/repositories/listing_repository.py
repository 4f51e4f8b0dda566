# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Repository for Listing database operations."""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, cast

from sqlalchemy import CursorResult, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.database import utc_now
from swapmatch.errors import NotFoundError, StaleStateError
from swapmatch.models.listing import Listing, ListingStatus
from swapmatch.models.reservation import Reservation
from swapmatch.models.target_edge import EdgeStatus, TargetEdge


class ListingRepository:
    """Repository for Listing reads and status transitions.

    Ownership is always resolved through the reservation with a join,
    never read from or cached on the listing row.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self._session = session

    async def get_by_id(self, listing_id: int) -> Listing | None:
        """Get listing by ID.

        Args:
            listing_id: Listing primary key.

        Returns:
            Listing if found, None otherwise.
        """
        result = await self._session.execute(
            select(Listing)
            .where(Listing.id == listing_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, listing: Listing, now: datetime | None = None) -> Listing:
        """Create a new listing.

        Args:
            listing: Listing entity to create.
            now: Reference time. Defaults to current UTC time.

        Returns:
            Created listing with ID.

        Raises:
            ValueError: If a pending listing does not expire in the future.
        """
        status = listing.status or ListingStatus.PENDING
        if status == ListingStatus.PENDING and listing.expires_at <= (
            now or utc_now()
        ):
            raise ValueError("A pending listing must expire in the future")
        self._session.add(listing)
        await self._session.flush()
        await self._session.refresh(listing)
        return listing

    async def owner_of(self, listing_id: int) -> str | None:
        """Resolve the owner of a listing through its reservation.

        Args:
            listing_id: Listing primary key.

        Returns:
            Owner ID, or None if the listing does not exist.
        """
        result = await self._session.execute(
            select(Reservation.owner_id)
            .join(Listing, Listing.reservation_id == Reservation.id)
            .where(Listing.id == listing_id)
        )
        return result.scalar_one_or_none()

    async def owners_of(self, listing_ids: Iterable[int]) -> dict[int, str]:
        """Resolve owners of several listings in one query.

        Args:
            listing_ids: Listing primary keys.

        Returns:
            Mapping of listing ID to owner ID.
        """
        ids = set(listing_ids)
        if not ids:
            return {}
        result = await self._session.execute(
            select(Listing.id, Reservation.owner_id)
            .join(Reservation, Listing.reservation_id == Reservation.id)
            .where(Listing.id.in_(ids))
        )
        return {row.id: row.owner_id for row in result.all()}

    async def get_eligible_for_owner(
        self,
        owner_id: str,
        exclude_listing_id: int | None = None,
        now: datetime | None = None,
    ) -> Sequence[Listing]:
        """Get a user's listings that are free to make a proposal.

        A listing qualifies when it is pending, not yet expired and not
        part of an accepted edge.

        Args:
            owner_id: Owning user identifier.
            exclude_listing_id: Listing to leave out, usually the target.
            now: Reference time. Defaults to current UTC time.

        Returns:
            Qualifying listings, oldest first.
        """
        committed = exists().where(
            TargetEdge.status == EdgeStatus.ACCEPTED,
            or_(
                TargetEdge.source_listing_id == Listing.id,
                TargetEdge.target_listing_id == Listing.id,
            ),
        )
        stmt = (
            select(Listing)
            .join(Reservation, Listing.reservation_id == Reservation.id)
            .where(
                Reservation.owner_id == owner_id,
                Listing.status == ListingStatus.PENDING,
                Listing.expires_at > (now or utc_now()),
                ~committed,
            )
            .order_by(Listing.created_at, Listing.id)
        )
        if exclude_listing_id is not None:
            stmt = stmt.where(Listing.id != exclude_listing_id)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def transition(
        self,
        listing_id: int,
        from_statuses: Iterable[str],
        to_status: str,
        **values: Any,
    ) -> bool:
        """Move a listing to a new status if it is in an expected one.

        Args:
            listing_id: Listing primary key.
            from_statuses: Statuses the listing must currently have.
            to_status: New status.
            **values: Extra columns to set alongside the status.

        Returns:
            True if the row changed, False if its status did not match.
        """
        result = cast(
            "CursorResult[tuple[()]]",
            await self._session.execute(
                update(Listing)
                .where(
                    Listing.id == listing_id,
                    Listing.status.in_(list(from_statuses)),
                )
                .values(status=to_status, updated_at=utc_now(), **values)
            ),
        )
        return (result.rowcount or 0) == 1

    async def find_overdue(self, now: datetime | None = None) -> Sequence[Listing]:
        """Get pending listings whose expiry has passed.

        Args:
            now: Reference time. Defaults to current UTC time.

        Returns:
            Overdue listings.
        """
        result = await self._session.execute(
            select(Listing)
            .where(
                Listing.status == ListingStatus.PENDING,
                Listing.expires_at <= (now or utc_now()),
            )
            .order_by(Listing.expires_at)
        )
        return result.scalars().all()

    async def record_settlement_reference(
        self, listing_id: int, reference: str
    ) -> None:
        """Store the external settlement reference once.

        Args:
            listing_id: Listing primary key.
            reference: Opaque reference string.

        Raises:
            NotFoundError: If the listing does not exist.
            StaleStateError: If a different reference is already stored.
        """
        listing = await self.get_by_id(listing_id)
        if listing is None:
            raise NotFoundError("listing", listing_id)
        if listing.settlement_reference == reference:
            return
        if listing.settlement_reference is not None:
            raise StaleStateError(
                f"Listing {listing_id} already has settlement reference "
                f"{listing.settlement_reference}"
            )
        listing.settlement_reference = reference
        await self._session.flush()

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Repository for Reservation database operations."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.models.reservation import Reservation


class ReservationRepository:
    """Read-mostly access to reservations backing listings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self._session = session

    async def get_by_id(self, reservation_id: int) -> Reservation | None:
        """Get reservation by ID.

        Args:
            reservation_id: Reservation primary key.

        Returns:
            Reservation if found, None otherwise.
        """
        result = await self._session.execute(
            select(Reservation).where(Reservation.id == reservation_id)
        )
        return result.scalar_one_or_none()

    async def create(self, reservation: Reservation) -> Reservation:
        """Create a new reservation.

        Args:
            reservation: Reservation entity to create.

        Returns:
            Created reservation with ID.
        """
        self._session.add(reservation)
        await self._session.flush()
        await self._session.refresh(reservation)
        return reservation

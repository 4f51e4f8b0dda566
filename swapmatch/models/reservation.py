# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Reservation model holding the true owner of a listing."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from swapmatch.database import Base, UTCDateTime, utc_now


class Reservation(Base):
    """Bookable reservation a listing is built on.

    Read-mostly from the engine's point of view; the owner of every
    listing is derived from here.
    """

    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    check_in: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    check_out: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    accommodation_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="hotel"
    )
    guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="available")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("idx_reservation_owner", "owner_id", "id"),)

    @property
    def nights(self) -> int:
        """Get length of stay in nights."""
        return max((self.check_out - self.check_in).days, 0)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Reservation(id={self.id}, owner={self.owner_id})>"

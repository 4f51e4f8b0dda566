# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Listing model for reservations offered for exchange."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from swapmatch.database import Base, UTCDateTime, utc_now

if TYPE_CHECKING:
    from swapmatch.models.reservation import Reservation


class ListingStatus(StrEnum):
    """Lifecycle states of a listing."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class AcceptanceStrategy(StrEnum):
    """How a listing admits incoming proposals."""

    FIRST_MATCH = "first_match"
    AUCTION = "auction"


class PaymentPreference(StrEnum):
    """What a listing owner accepts in exchange."""

    BOOKING = "booking"
    CASH = "cash"
    BOTH = "both"


# Statuses in which expires_at no longer has to lie ahead
CLOSED_STATUSES = (
    ListingStatus.CANCELLED,
    ListingStatus.COMPLETED,
    ListingStatus.EXPIRED,
)


class Listing(Base):
    """Reservation offered for exchange.

    The owner is not stored here; it is always derived through the
    reservation (see ListingRepository.owner_of).
    """

    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reservation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("reservations.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ListingStatus.PENDING
    )
    acceptance_strategy: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AcceptanceStrategy.FIRST_MATCH
    )
    payment_preference: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentPreference.BOOKING
    )
    additional_payment: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    conditions: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    settlement_reference: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    # Relationships
    reservation: Mapped["Reservation"] = relationship("Reservation", lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "status IN ('cancelled', 'completed', 'expired') "
            "OR expires_at > created_at",
            name="ck_listing_expiry",
        ),
        Index("idx_listing_reservation", "reservation_id"),
        Index("idx_listing_status_expiry", "status", "expires_at"),
    )

    @property
    def is_auction(self) -> bool:
        """Check whether the listing runs in auction mode."""
        return self.acceptance_strategy == AcceptanceStrategy.AUCTION

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the listing's expiry has passed.

        Args:
            now: Reference time. Defaults to current UTC time.

        Returns:
            True if expires_at is not in the future.
        """
        return self.expires_at <= (now or utc_now())

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<Listing(id={self.id}, status={self.status}, "
            f"strategy={self.acceptance_strategy})>"
        )

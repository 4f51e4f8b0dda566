# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Auction and auction proposal models plus their validated payloads."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import (
    JSON,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from swapmatch.database import Base, UTCDateTime, utc_now

_ACTIVE_ONLY = text("status = 'active'")


class AuctionStatus(StrEnum):
    """Auction lifecycle; ended is terminal."""

    ACTIVE = "active"
    ENDED = "ended"


class ProposalType(StrEnum):
    """Kinds of bid an auction accepts."""

    BOOKING = "booking"
    CASH = "cash"


class ProposalStatus(StrEnum):
    """Proposal lifecycle; selected and rejected are terminal."""

    PENDING = "pending"
    SELECTED = "selected"
    REJECTED = "rejected"


class AuctionSettings(BaseModel):
    """Settings an auction is created with."""

    model_config = ConfigDict(frozen=True)

    end_date: datetime
    max_proposals: int | None = Field(default=None, ge=1, le=100)
    allow_booking_proposals: bool = True
    allow_cash_proposals: bool = True
    minimum_cash_offer: Decimal | None = Field(default=None, gt=0)

    @field_validator("end_date")
    @classmethod
    def require_timezone(cls, value: datetime) -> datetime:
        """Reject naive end dates."""
        if value.tzinfo is None:
            raise ValueError("end_date must be timezone-aware")
        return value


class CashOffer(BaseModel):
    """Payload of a cash proposal."""

    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    payment_method_id: str | None = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        """Upper-case and check the ISO 4217 style code."""
        if not value.isalpha():
            raise ValueError("currency must be a three letter code")
        return value.upper()


class Auction(Base):
    """Auction run on a listing in auction acceptance mode."""

    __tablename__ = "auctions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AuctionStatus.ACTIVE
    )
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # Plain integer: proposals already reference auctions
    winning_proposal_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    settlement_reference: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    end_settlement_reference: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index(
            "uq_auction_active_listing",
            "listing_id",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
        Index("idx_auction_status_ends", "status", "ends_at"),
    )

    @property
    def parsed_settings(self) -> AuctionSettings:
        """Get the settings column as a validated model."""
        return AuctionSettings.model_validate(self.settings)

    def is_active(self, now: datetime | None = None) -> bool:
        """Check whether the auction still accepts proposals.

        Args:
            now: Reference time. Defaults to current UTC time.

        Returns:
            True if active and the end date lies ahead.
        """
        return self.status == AuctionStatus.ACTIVE and self.ends_at > (
            now or utc_now()
        )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<Auction(id={self.id}, listing={self.listing_id}, "
            f"status={self.status})>"
        )


class AuctionProposal(Base):
    """Bid submitted against an auction."""

    __tablename__ = "auction_proposals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    auction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False
    )
    proposer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    proposal_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Offered listing for booking proposals
    listing_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("listings.id", ondelete="SET NULL"), nullable=True
    )
    target_edge_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("target_edges.id", ondelete="SET NULL"), nullable=True
    )
    cash_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    cash_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    payment_method_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProposalStatus.PENDING
    )
    settlement_reference: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    submitted_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_proposal_auction_status", "auction_id", "status"),
        Index("idx_proposal_edge", "target_edge_id"),
    )

    @property
    def is_cash(self) -> bool:
        """Check whether this is a cash bid."""
        return self.proposal_type == ProposalType.CASH

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<AuctionProposal(id={self.id}, auction={self.auction_id}, "
            f"type={self.proposal_type}, status={self.status})>"
        )

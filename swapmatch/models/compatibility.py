# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Compatibility cache model."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from swapmatch.database import Base, UTCDateTime, utc_now


class CompatibilityCacheEntry(Base):
    """Memoized score for an unordered pair of listings.

    Never a source of truth; rows may be dropped at any time.
    """

    __tablename__ = "compatibility_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    listing_low_id: Mapped[int] = mapped_column(Integer, nullable=False)
    listing_high_id: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    analysis: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "listing_low_id", "listing_high_id", name="uq_compatibility_pair"
        ),
        Index("idx_compatibility_expires", "expires_at"),
    )

    @staticmethod
    def pair_key(first_id: int, second_id: int) -> tuple[int, int]:
        """Order a listing pair so (a, b) and (b, a) share a row."""
        return (first_id, second_id) if first_id <= second_id else (second_id, first_id)

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<CompatibilityCacheEntry({self.listing_low_id}, "
            f"{self.listing_high_id}, score={self.score})>"
        )

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Targeting graph models: directed edges and their append-only history."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from swapmatch.database import Base, UTCDateTime, utc_now

_ACTIVE_ONLY = text("status = 'active'")


class EdgeStatus(StrEnum):
    """Lifecycle states of a target edge."""

    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class HistoryAction(StrEnum):
    """Transitions recorded in the targeting history."""

    CREATED = "created"
    CANCELLED = "cancelled"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class TargetEdge(Base):
    """Directed edge meaning "source listing wants to exchange for target".

    exclusive_target_id mirrors target_listing_id only when the target is
    in first-match mode, so the partial unique index below allows a single
    active incoming edge for such targets.
    """

    __tablename__ = "target_edges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
    )
    target_listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EdgeStatus.ACTIVE
    )
    exclusive_target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now
    )
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "source_listing_id <> target_listing_id", name="ck_target_edge_no_self"
        ),
        Index(
            "uq_target_edge_active_source",
            "source_listing_id",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
        Index(
            "uq_target_edge_active_exclusive",
            "exclusive_target_id",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
        Index("idx_target_edge_target_status", "target_listing_id", "status"),
        Index("idx_target_edge_source_status", "source_listing_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        """Check whether the edge is still open."""
        return self.status == EdgeStatus.ACTIVE

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<TargetEdge(id={self.id}, {self.source_listing_id}->"
            f"{self.target_listing_id}, status={self.status})>"
        )


class TargetingHistoryEntry(Base):
    """Immutable record of one edge transition."""

    __tablename__ = "targeting_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    edge_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("target_edges.id", ondelete="SET NULL"), nullable=True
    )
    source_listing_id: Mapped[int] = mapped_column(Integer, nullable=False)
    target_listing_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_history_source", "source_listing_id", "created_at"),
        Index("idx_history_target", "target_listing_id", "created_at"),
        Index("idx_history_edge", "edge_id"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<TargetingHistoryEntry(id={self.id}, edge={self.edge_id}, "
            f"action={self.action})>"
        )

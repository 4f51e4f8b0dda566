# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Create matching engine tables.

Revision ID: 3f1c2b7d9e40
Revises:
Create Date: 2026-10-19 09:12:44.318204+00:00

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c2b7d9e40"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_ONLY = sa.text("status = 'active'")


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=False),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("check_in", sa.DateTime(), nullable=False),
        sa.Column("check_out", sa.DateTime(), nullable=False),
        sa.Column("total_price", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("accommodation_type", sa.String(length=50), nullable=False),
        sa.Column("guests", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_reservation_owner", "reservations", ["owner_id", "id"], unique=False
    )

    op.create_table(
        "listings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("reservation_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("acceptance_strategy", sa.String(length=20), nullable=False),
        sa.Column("payment_preference", sa.String(length=20), nullable=False),
        sa.Column(
            "additional_payment", sa.Numeric(precision=12, scale=2), nullable=True
        ),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("settlement_reference", sa.String(length=255), nullable=True),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "status IN ('cancelled', 'completed', 'expired') "
            "OR expires_at > created_at",
            name="ck_listing_expiry",
        ),
        sa.ForeignKeyConstraint(
            ["reservation_id"], ["reservations.id"], ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_listing_reservation", "listings", ["reservation_id"], unique=False
    )
    op.create_index(
        "idx_listing_status_expiry", "listings", ["status", "expires_at"], unique=False
    )

    op.create_table(
        "target_edges",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source_listing_id", sa.Integer(), nullable=False),
        sa.Column("target_listing_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("exclusive_target_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "source_listing_id <> target_listing_id", name="ck_target_edge_no_self"
        ),
        sa.ForeignKeyConstraint(
            ["source_listing_id"], ["listings.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["target_listing_id"], ["listings.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_target_edge_active_source",
        "target_edges",
        ["source_listing_id"],
        unique=True,
        sqlite_where=ACTIVE_ONLY,
        postgresql_where=ACTIVE_ONLY,
    )
    op.create_index(
        "uq_target_edge_active_exclusive",
        "target_edges",
        ["exclusive_target_id"],
        unique=True,
        sqlite_where=ACTIVE_ONLY,
        postgresql_where=ACTIVE_ONLY,
    )
    op.create_index(
        "idx_target_edge_target_status",
        "target_edges",
        ["target_listing_id", "status"],
        unique=False,
    )
    op.create_index(
        "idx_target_edge_source_status",
        "target_edges",
        ["source_listing_id", "status"],
        unique=False,
    )

    op.create_table(
        "targeting_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("edge_id", sa.Integer(), nullable=True),
        sa.Column("source_listing_id", sa.Integer(), nullable=False),
        sa.Column("target_listing_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["edge_id"], ["target_edges.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_history_source",
        "targeting_history",
        ["source_listing_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_history_target",
        "targeting_history",
        ["target_listing_id", "created_at"],
        unique=False,
    )
    op.create_index("idx_history_edge", "targeting_history", ["edge_id"], unique=False)

    op.create_table(
        "auctions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("listing_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("ends_at", sa.DateTime(), nullable=False),
        sa.Column("winning_proposal_id", sa.Integer(), nullable=True),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("settlement_reference", sa.String(length=255), nullable=True),
        sa.Column("end_settlement_reference", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_auction_active_listing",
        "auctions",
        ["listing_id"],
        unique=True,
        sqlite_where=ACTIVE_ONLY,
        postgresql_where=ACTIVE_ONLY,
    )
    op.create_index(
        "idx_auction_status_ends", "auctions", ["status", "ends_at"], unique=False
    )

    op.create_table(
        "auction_proposals",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("auction_id", sa.Integer(), nullable=False),
        sa.Column("proposer_id", sa.String(length=64), nullable=False),
        sa.Column("proposal_type", sa.String(length=20), nullable=False),
        sa.Column("listing_id", sa.Integer(), nullable=True),
        sa.Column("target_edge_id", sa.Integer(), nullable=True),
        sa.Column("cash_amount", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("cash_currency", sa.String(length=3), nullable=True),
        sa.Column("payment_method_id", sa.String(length=255), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("settlement_reference", sa.String(length=255), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["auction_id"], ["auctions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["target_edge_id"], ["target_edges.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_proposal_auction_status",
        "auction_proposals",
        ["auction_id", "status"],
        unique=False,
    )
    op.create_index(
        "idx_proposal_edge", "auction_proposals", ["target_edge_id"], unique=False
    )

    op.create_table(
        "compatibility_cache",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("listing_low_id", sa.Integer(), nullable=False),
        sa.Column("listing_high_id", sa.Integer(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("analysis", sa.JSON(), nullable=False),
        sa.Column("computed_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "listing_low_id", "listing_high_id", name="uq_compatibility_pair"
        ),
    )
    op.create_index(
        "idx_compatibility_expires",
        "compatibility_cache",
        ["expires_at"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("idx_compatibility_expires", table_name="compatibility_cache")
    op.drop_table("compatibility_cache")
    op.drop_index("idx_proposal_edge", table_name="auction_proposals")
    op.drop_index("idx_proposal_auction_status", table_name="auction_proposals")
    op.drop_table("auction_proposals")
    op.drop_index("idx_auction_status_ends", table_name="auctions")
    op.drop_index("uq_auction_active_listing", table_name="auctions")
    op.drop_table("auctions")
    op.drop_index("idx_history_edge", table_name="targeting_history")
    op.drop_index("idx_history_target", table_name="targeting_history")
    op.drop_index("idx_history_source", table_name="targeting_history")
    op.drop_table("targeting_history")
    op.drop_index("idx_target_edge_source_status", table_name="target_edges")
    op.drop_index("idx_target_edge_target_status", table_name="target_edges")
    op.drop_index("uq_target_edge_active_exclusive", table_name="target_edges")
    op.drop_index("uq_target_edge_active_source", table_name="target_edges")
    op.drop_table("target_edges")
    op.drop_index("idx_listing_status_expiry", table_name="listings")
    op.drop_index("idx_listing_reservation", table_name="listings")
    op.drop_table("listings")
    op.drop_index("idx_reservation_owner", table_name="reservations")
    op.drop_table("reservations")

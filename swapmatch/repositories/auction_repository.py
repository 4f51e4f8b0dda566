# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Repository for auctions and their proposal ledger."""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import cast

from sqlalchemy import CursorResult, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.database import utc_now
from swapmatch.models.auction import (
    Auction,
    AuctionProposal,
    AuctionStatus,
    ProposalStatus,
)


class AuctionRepository:
    """Repository for Auction and AuctionProposal rows.

    Terminal transitions are conditional updates; a False return means
    another writer got there first.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self._session = session

    async def get_by_id(self, auction_id: int) -> Auction | None:
        """Get auction by ID.

        Args:
            auction_id: Auction primary key.

        Returns:
            Auction if found, None otherwise.
        """
        result = await self._session.execute(
            select(Auction)
            .where(Auction.id == auction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_for_listing(self, listing_id: int) -> Auction | None:
        """Get the running auction of a listing, if any."""
        result = await self._session.execute(
            select(Auction).where(
                Auction.listing_id == listing_id,
                Auction.status == AuctionStatus.ACTIVE,
            )
        )
        return result.scalar_one_or_none()

    async def create(self, auction: Auction) -> Auction:
        """Create a new auction.

        Args:
            auction: Auction entity to create.

        Returns:
            Created auction with ID.
        """
        self._session.add(auction)
        await self._session.flush()
        await self._session.refresh(auction)
        return auction

    async def find_expired(self, now: datetime | None = None) -> Sequence[Auction]:
        """Get active auctions whose end date has passed.

        Args:
            now: Reference time. Defaults to current UTC time.

        Returns:
            Expired auctions, earliest end first.
        """
        result = await self._session.execute(
            select(Auction)
            .where(
                Auction.status == AuctionStatus.ACTIVE,
                Auction.ends_at <= (now or utc_now()),
            )
            .order_by(Auction.ends_at, Auction.id)
        )
        return result.scalars().all()

    async def end(
        self,
        auction_id: int,
        winning_proposal_id: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """End an active auction.

        Args:
            auction_id: Auction primary key.
            winning_proposal_id: Selected proposal, or None for no winner.
            now: End timestamp. Defaults to current UTC time.

        Returns:
            True if the auction was active and is now ended.
        """
        stamp = now or utc_now()
        result = cast(
            "CursorResult[tuple[()]]",
            await self._session.execute(
                update(Auction)
                .where(Auction.id == auction_id, Auction.status == AuctionStatus.ACTIVE)
                .values(
                    status=AuctionStatus.ENDED,
                    winning_proposal_id=winning_proposal_id,
                    ended_at=stamp,
                    updated_at=stamp,
                )
            ),
        )
        return (result.rowcount or 0) == 1

    async def get_proposal(self, proposal_id: int) -> AuctionProposal | None:
        """Get proposal by ID."""
        result = await self._session.execute(
            select(AuctionProposal)
            .where(AuctionProposal.id == proposal_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_proposals(
        self, auction_id: int, status: str | None = None
    ) -> Sequence[AuctionProposal]:
        """Get proposals of an auction in submission order.

        Args:
            auction_id: Auction primary key.
            status: Optional status filter.

        Returns:
            Matching proposals.
        """
        stmt = select(AuctionProposal).where(AuctionProposal.auction_id == auction_id)
        if status is not None:
            stmt = stmt.where(AuctionProposal.status == status)
        result = await self._session.execute(
            stmt.order_by(AuctionProposal.submitted_at, AuctionProposal.id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def count_pending(self, auction_id: int) -> int:
        """Count proposals still awaiting a decision."""
        result = await self._session.execute(
            select(func.count())
            .select_from(AuctionProposal)
            .where(
                AuctionProposal.auction_id == auction_id,
                AuctionProposal.status == ProposalStatus.PENDING,
            )
        )
        return result.scalar_one()

    async def get_pending_for_edges(
        self, edge_ids: Iterable[int]
    ) -> Sequence[AuctionProposal]:
        """Get pending proposals linked to the given target edges."""
        ids = set(edge_ids)
        if not ids:
            return []
        result = await self._session.execute(
            select(AuctionProposal).where(
                AuctionProposal.target_edge_id.in_(ids),
                AuctionProposal.status == ProposalStatus.PENDING,
            )
        )
        return result.scalars().all()

    async def add_proposal(self, proposal: AuctionProposal) -> AuctionProposal:
        """Insert a new proposal.

        Args:
            proposal: Proposal entity to insert.

        Returns:
            Inserted proposal with ID.
        """
        self._session.add(proposal)
        await self._session.flush()
        await self._session.refresh(proposal)
        return proposal

    async def select_proposal(self, auction_id: int, proposal_id: int) -> bool:
        """Mark a pending proposal of the auction as selected.

        Returns:
            True if the proposal was pending and is now selected.
        """
        result = cast(
            "CursorResult[tuple[()]]",
            await self._session.execute(
                update(AuctionProposal)
                .where(
                    AuctionProposal.id == proposal_id,
                    AuctionProposal.auction_id == auction_id,
                    AuctionProposal.status == ProposalStatus.PENDING,
                )
                .values(status=ProposalStatus.SELECTED, updated_at=utc_now())
            ),
        )
        return (result.rowcount or 0) == 1

    async def reject_pending(
        self, auction_id: int, except_proposal_id: int | None = None
    ) -> int:
        """Reject every still-pending proposal of an auction.

        Args:
            auction_id: Auction primary key.
            except_proposal_id: Proposal to leave untouched.

        Returns:
            Number of proposals rejected.
        """
        stmt = update(AuctionProposal).where(
            AuctionProposal.auction_id == auction_id,
            AuctionProposal.status == ProposalStatus.PENDING,
        )
        if except_proposal_id is not None:
            stmt = stmt.where(AuctionProposal.id != except_proposal_id)
        result = cast(
            "CursorResult[tuple[()]]",
            await self._session.execute(
                stmt.values(status=ProposalStatus.REJECTED, updated_at=utc_now())
            ),
        )
        return result.rowcount or 0

    async def reject_proposal(self, proposal_id: int) -> bool:
        """Reject a single pending proposal.

        Returns:
            True if the proposal was pending.
        """
        result = cast(
            "CursorResult[tuple[()]]",
            await self._session.execute(
                update(AuctionProposal)
                .where(
                    AuctionProposal.id == proposal_id,
                    AuctionProposal.status == ProposalStatus.PENDING,
                )
                .values(status=ProposalStatus.REJECTED, updated_at=utc_now())
            ),
        )
        return (result.rowcount or 0) == 1

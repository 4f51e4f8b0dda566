# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Unit tests for settlement references and completion."""

import pytest

from swapmatch.errors import NotFoundError, StaleStateError
from swapmatch.models.listing import ListingStatus
from swapmatch.repositories.auction_repository import AuctionRepository
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.services.auction_service import AuctionService
from swapmatch.services.matching_coordinator import MatchingCoordinator
from swapmatch.services.settlement_service import SettlementService


@pytest.fixture
def settlement(async_session) -> SettlementService:
    """Create a settlement service."""
    return SettlementService(async_session)


class TestRecordReference:
    """Tests for SettlementService.record_reference."""

    @pytest.mark.asyncio
    async def test_listing_reference_is_write_once(
        self, async_session, settlement, market
    ):
        """Test the same reference is idempotent and a new one is refused."""
        listing_id = await market.listing("u1")

        await settlement.record_reference("listing", listing_id, "pay_123")
        await settlement.record_reference("listing", listing_id, "pay_123")
        with pytest.raises(StaleStateError):
            await settlement.record_reference("listing", listing_id, "pay_456")

        listing = await ListingRepository(async_session).get_by_id(listing_id)
        assert listing.settlement_reference == "pay_123"

    @pytest.mark.asyncio
    async def test_auction_references(self, async_session, settlement, market):
        """Test auctions keep separate start and end references."""
        _, auction_id = await market.auction_listing("owner")

        await settlement.record_reference("auction", auction_id, "fee_1")
        await settlement.record_reference("auction_end", auction_id, "fee_2")
        with pytest.raises(StaleStateError):
            await settlement.record_reference("auction", auction_id, "fee_3")

        auction = await AuctionRepository(async_session).get_by_id(auction_id)
        assert auction.settlement_reference == "fee_1"
        assert auction.end_settlement_reference == "fee_2"

    @pytest.mark.asyncio
    async def test_proposal_reference(
        self, async_session, settlement, settings, market
    ):
        """Test cash proposals can carry a payment reference."""
        _, auction_id = await market.auction_listing("owner")
        auctions = AuctionService(async_session, settings=settings)
        proposal = await auctions.submit_proposal(
            auction_id, "bidder", "cash", cash_offer={"amount": 20, "currency": "USD"}
        )
        proposal_id = proposal.id

        await settlement.record_reference("proposal", proposal_id, "hold_9")

        stored = await AuctionRepository(async_session).get_proposal(proposal_id)
        assert stored.settlement_reference == "hold_9"

    @pytest.mark.asyncio
    async def test_missing_entities(self, settlement):
        """Test unknown IDs raise NotFoundError for every kind."""
        for kind in ("listing", "auction", "auction_end", "proposal"):
            with pytest.raises(NotFoundError):
                await settlement.record_reference(kind, 999, "ref")

    @pytest.mark.asyncio
    async def test_bad_arguments(self, settlement, market):
        """Test empty references and unknown kinds raise ValueError."""
        listing_id = await market.listing("u1")

        with pytest.raises(ValueError):
            await settlement.record_reference("listing", listing_id, "")
        with pytest.raises(ValueError):
            await settlement.record_reference("invoice", listing_id, "ref")


class TestCompletion:
    """Tests for moving settled listings to completed."""

    @pytest.mark.asyncio
    async def test_complete_swap(self, async_session, settlement, settings, market):
        """Test both listings of an accepted edge become completed."""
        coordinator = MatchingCoordinator(async_session, settings=settings)
        source = await market.listing("u1")
        target = await market.listing("u2")
        edge = await coordinator.propose(source, target, "u1")
        await coordinator.accept(edge.id, "u2")

        await settlement.complete_swap(edge.id)

        listings = ListingRepository(async_session)
        for listing_id in (source, target):
            listing = await listings.get_by_id(listing_id)
            assert listing.status == ListingStatus.COMPLETED
            assert listing.completed_at is not None
        with pytest.raises(StaleStateError):
            await settlement.complete_swap(edge.id)

    @pytest.mark.asyncio
    async def test_complete_swap_requires_accepted_edge(
        self, async_session, settlement, settings, market
    ):
        """Test an edge still awaiting acceptance cannot be completed."""
        coordinator = MatchingCoordinator(async_session, settings=settings)
        source = await market.listing("u1")
        target = await market.listing("u2")
        edge = await coordinator.propose(source, target, "u1")

        with pytest.raises(StaleStateError):
            await settlement.complete_swap(edge.id)
        with pytest.raises(NotFoundError):
            await settlement.complete_swap(999)

        listing = await ListingRepository(async_session).get_by_id(target)
        assert listing.status == ListingStatus.PENDING
        assert listing.completed_at is None

    @pytest.mark.asyncio
    async def test_complete_cash_sale(
        self, async_session, settlement, settings, market
    ):
        """Test a listing sold for cash completes on its own."""
        listing_id, auction_id = await market.auction_listing("owner")
        auctions = AuctionService(async_session, settings=settings)
        proposal = await auctions.submit_proposal(
            auction_id,
            "bidder",
            "cash",
            cash_offer={"amount": "400.00", "currency": "USD"},
        )
        await auctions.select_winner(auction_id, proposal.id)

        await settlement.complete_listing(listing_id)

        listing = await ListingRepository(async_session).get_by_id(listing_id)
        assert listing.status == ListingStatus.COMPLETED
        assert listing.completed_at is not None

    @pytest.mark.asyncio
    async def test_complete_listing_requires_accepted(self, settlement, market):
        """Test pending or unknown listings cannot be completed."""
        listing_id = await market.listing("u1")

        with pytest.raises(StaleStateError):
            await settlement.complete_listing(listing_id)
        with pytest.raises(NotFoundError):
            await settlement.complete_listing(999)

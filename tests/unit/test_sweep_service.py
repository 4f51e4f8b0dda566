# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Unit tests for the background sweeps."""

from datetime import timedelta

import pytest

from swapmatch.database import utc_now
from swapmatch.errors import AuctionClosedError
from swapmatch.models.auction import AuctionStatus, ProposalStatus
from swapmatch.models.listing import ListingStatus
from swapmatch.models.target_edge import EdgeStatus
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.services.compatibility_service import CompatibilityService
from swapmatch.services.matching_coordinator import MatchingCoordinator
from swapmatch.services.sweep_service import SweepService
from swapmatch.services.targeting_service import REASON_LISTING_EXPIRED


@pytest.fixture
def sweeps(async_session, events, settings) -> SweepService:
    """Create a sweep service."""
    return SweepService(async_session, events=events, settings=settings)


@pytest.fixture
def coordinator(async_session, settings) -> MatchingCoordinator:
    """Create a coordinator for setting up proposals."""
    return MatchingCoordinator(async_session, settings=settings)


class TestExpireListings:
    """Tests for SweepService.expire_listings."""

    @pytest.mark.asyncio
    async def test_expire_overdue(
        self, async_session, sweeps, coordinator, events, market
    ):
        """Test overdue listings expire and their proposals are withdrawn."""
        target, auction_id = await market.auction_listing("owner")
        short_lived = await market.listing("u1", expires_in=timedelta(hours=1))
        long_lived = await market.listing("u2")
        edge = await coordinator.propose(short_lived, target, "u1")
        edge_id = edge.id
        later = utc_now() + timedelta(hours=2)

        assert await sweeps.expire_listings(later) == 1

        listings = ListingRepository(async_session)
        assert (await listings.get_by_id(short_lived)).status == ListingStatus.EXPIRED
        assert (await listings.get_by_id(long_lived)).status == ListingStatus.PENDING
        assert (await coordinator.targeting.get_edge(edge_id)).status == (
            EdgeStatus.CANCELLED
        )
        history = await coordinator.targeting.history_for_edge(edge_id)
        assert history[-1].details == {"reason": REASON_LISTING_EXPIRED}
        (proposal,) = await coordinator.auctions.get_proposals(auction_id)
        assert proposal.status == ProposalStatus.REJECTED
        assert events.names().count("listing_expired") == 1

    @pytest.mark.asyncio
    async def test_expired_listing_ends_its_auction(
        self, sweeps, coordinator, events, market
    ):
        """Test expiring an auction listing ends the auction and stops bids."""
        _, auction_id = await market.auction_listing(
            "owner", expires_in=timedelta(days=2)
        )
        later = utc_now() + timedelta(days=3)

        assert await sweeps.expire_listings(later) == 1

        auction = await coordinator.auctions.get_auction(auction_id)
        assert auction.status == AuctionStatus.ENDED
        assert auction.winning_proposal_id is None
        assert "auction_ended" in events.names()
        with pytest.raises(AuctionClosedError):
            await coordinator.auctions.submit_proposal(
                auction_id,
                "bidder",
                "cash",
                cash_offer={"amount": "250.00", "currency": "EUR"},
                now=later,
            )
        assert await coordinator.auctions.get_proposals(auction_id) == []

    @pytest.mark.asyncio
    async def test_rerun_is_noop(self, sweeps, market):
        """Test a second run finds nothing left to expire."""
        await market.listing("u1", expires_in=timedelta(hours=1))
        later = utc_now() + timedelta(hours=2)

        assert await sweeps.expire_listings(later) == 1
        assert await sweeps.expire_listings(later) == 0

    @pytest.mark.asyncio
    async def test_nothing_due(self, sweeps, market):
        """Test listings before their expiry are left alone."""
        await market.listing("u1")

        assert await sweeps.expire_listings() == 0


class TestOtherSweeps:
    """Tests for the auction and cache sweeps."""

    @pytest.mark.asyncio
    async def test_end_expired_auctions(self, sweeps, coordinator, market):
        """Test expired auctions are settled through the auction engine."""
        _, auction_id = await market.auction_listing("owner")
        await coordinator.auctions.submit_proposal(
            auction_id, "bidder", "cash", cash_offer={"amount": 50, "currency": "EUR"}
        )
        later = utc_now() + timedelta(days=11)

        stats = await sweeps.end_expired_auctions(later)

        assert stats == {"selected": 1, "ended": 0, "skipped": 0}
        auction = await coordinator.auctions.get_auction(auction_id)
        assert auction.status == AuctionStatus.ENDED

    @pytest.mark.asyncio
    async def test_purge_compatibility_cache(
        self, async_session, sweeps, settings, market
    ):
        """Test expired cache rows are purged."""
        source = await market.listing("u1")
        target = await market.listing("u2")
        await CompatibilityService(async_session, settings=settings).score(
            source, target
        )

        assert await sweeps.purge_compatibility_cache() == 0
        purged = await sweeps.purge_compatibility_cache(utc_now() + timedelta(hours=2))
        assert purged == 1

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Unit tests for the targeting graph store."""

import asyncio

import pytest

from swapmatch.errors import (
    AlreadyTargetedError,
    CycleError,
    NotEligibleError,
    NotFoundError,
    SelfTargetError,
    StaleStateError,
)
from swapmatch.models import AcceptanceStrategy, EdgeStatus, ListingStatus
from swapmatch.models.auction import ProposalStatus
from swapmatch.repositories import ListingRepository
from swapmatch.services.auction_service import AuctionService
from swapmatch.services.eligibility_service import EligibilityService
from swapmatch.services.matching_coordinator import MatchingCoordinator
from swapmatch.services.targeting_service import (
    REASON_LISTING_COMMITTED,
    REASON_RETARGETING,
    TargetingService,
)


@pytest.fixture
def targeting(async_session, events, settings) -> TargetingService:
    """Create a targeting service with a recording event sink."""
    return TargetingService(async_session, events=events, settings=settings)


class TestCreateEdge:
    """Tests for TargetingService.create_edge."""

    @pytest.mark.asyncio
    async def test_creates_active_edge_with_history(self, targeting, market, events):
        """Test a new edge is active and recorded."""
        a = await market.listing("u1")
        b = await market.listing("u2")

        edge = await targeting.create_edge(a, b)

        assert edge.status == EdgeStatus.ACTIVE
        assert edge.exclusive_target_id == b
        history = await targeting.history_for_edge(edge.id)
        assert [h.action for h in history] == ["created"]
        assert history[0].details == {"acceptance_strategy": "first_match"}
        assert "edge_created" in events.names()

    @pytest.mark.asyncio
    async def test_self_target_rejected(self, targeting, market):
        """Test createEdge(A, A) always fails."""
        a = await market.listing("u1")

        with pytest.raises(SelfTargetError):
            await targeting.create_edge(a, a)

    @pytest.mark.asyncio
    async def test_missing_listing(self, targeting, market):
        """Test unknown listings raise NotFoundError."""
        a = await market.listing("u1")

        with pytest.raises(NotFoundError):
            await targeting.create_edge(a, a + 100)

    @pytest.mark.asyncio
    async def test_two_cycle_rejected(self, targeting, market, events):
        """Test B -> A fails while A -> B is active."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        await targeting.create_edge(a, b)

        with pytest.raises(CycleError) as exc_info:
            await targeting.create_edge(b, a)

        assert exc_info.value.path == [a, b]
        assert "cycle_rejected" in events.names()

    @pytest.mark.asyncio
    async def test_three_cycle_rejected(self, targeting, market):
        """Test C -> A fails given the chain A -> B -> C."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        c = await market.listing("u3")
        await targeting.create_edge(a, b)
        await targeting.create_edge(b, c)

        with pytest.raises(CycleError):
            await targeting.create_edge(c, a)

        assert await targeting.has_active_outgoing(c) is False

    @pytest.mark.asyncio
    async def test_cycle_depth_is_configurable(self, async_session, market, settings):
        """Test loops longer than the configured depth are not detected."""
        shallow_settings = settings.model_copy(update={"cycle_check_max_depth": 1})
        shallow = TargetingService(async_session, settings=shallow_settings)
        a = await market.listing("u1")
        b = await market.listing("u2")
        c = await market.listing("u3")
        await shallow.create_edge(a, b)
        await shallow.create_edge(b, c)

        edge = await shallow.create_edge(c, a)

        assert edge.status == EdgeStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_retargeting_is_exclusive(self, targeting, market):
        """Test A -> B then A -> C leaves one active edge and one cancellation."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        c = await market.listing("u3")
        first = await targeting.create_edge(a, b)
        first_id = first.id

        second = await targeting.create_edge(a, c)

        outgoing = await targeting.get_active_outgoing(a)
        assert outgoing.id == second.id
        assert outgoing.target_listing_id == c
        history = await targeting.history_for_edge(first_id)
        cancelled = [h for h in history if h.action == "cancelled"]
        assert len(cancelled) == 1
        assert cancelled[0].details == {"reason": REASON_RETARGETING}
        assert (await targeting.get_edge(first_id)).status == EdgeStatus.CANCELLED
        assert await targeting.count_active_incoming(b) == 0

    @pytest.mark.asyncio
    async def test_same_target_is_idempotent(self, targeting, market):
        """Test re-targeting the same listing returns the active edge."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        edge = await targeting.create_edge(a, b)

        again = await targeting.create_edge(a, b)

        assert again.id == edge.id
        assert len(await targeting.history_for_edge(edge.id)) == 1

    @pytest.mark.asyncio
    async def test_first_match_exclusivity(self, targeting, market):
        """Test a second source cannot target a taken first-match listing."""
        s1 = await market.listing("u1")
        s2 = await market.listing("u2")
        t = await market.listing("u3")
        await targeting.create_edge(s1, t)

        with pytest.raises(AlreadyTargetedError):
            await targeting.create_edge(s2, t)

        assert await targeting.count_active_incoming(t) == 1
        assert await targeting.has_active_outgoing(s2) is False

    @pytest.mark.asyncio
    async def test_failed_retarget_keeps_previous_edge(self, targeting, market):
        """Test a rejected retarget leaves the old edge untouched."""
        s1 = await market.listing("u1")
        s2 = await market.listing("u2")
        t = await market.listing("u3")
        other = await market.listing("u4")
        await targeting.create_edge(s1, t)
        kept = await targeting.create_edge(s2, other)
        kept_id = kept.id

        with pytest.raises(AlreadyTargetedError):
            await targeting.create_edge(s2, t)

        edge = await targeting.get_edge(kept_id)
        assert edge.status == EdgeStatus.ACTIVE
        assert len(await targeting.history_for_edge(kept_id)) == 1

    @pytest.mark.asyncio
    async def test_auction_target_admits_many(self, targeting, market):
        """Test four distinct sources may all target an auction listing."""
        t = await market.listing("owner", AcceptanceStrategy.AUCTION)
        sources = [await market.listing(f"bidder-{n}") for n in range(4)]

        edges = [await targeting.create_edge(s, t) for s in sources]

        assert await targeting.count_active_incoming(t) == 4
        assert all(edge.exclusive_target_id is None for edge in edges)

    @pytest.mark.asyncio
    async def test_concurrent_auction_proposals(
        self, session_factory, settings, market
    ):
        """Test four bidders proposing at once to a five-slot auction all land."""
        target, auction_id = await market.auction_listing("owner", max_proposals=5)
        bidders = [f"bidder-{n}" for n in range(4)]
        sources = [await market.listing(bidder) for bidder in bidders]

        async def propose(source_id: int, user_id: str) -> int:
            async with session_factory() as session:
                coordinator = MatchingCoordinator(session, settings=settings)
                edge = await coordinator.propose(source_id, target, user_id)
                return edge.id

        edge_ids = await asyncio.gather(
            *(propose(s, u) for s, u in zip(sources, bidders, strict=True))
        )

        assert len(set(edge_ids)) == 4
        async with session_factory() as session:
            check = await EligibilityService(session, settings=settings).eligibility(
                target, "watcher"
            )
            proposals = await AuctionService(session, settings=settings).get_proposals(
                auction_id, ProposalStatus.PENDING
            )
        assert check.current_incoming_count == 4
        assert check.max_incoming == 5
        assert check.can_target
        assert len(proposals) == 4


class TestAcceptEdge:
    """Tests for accepting and rejecting edges."""

    @pytest.mark.asyncio
    async def test_accept_commits_both_listings(self, targeting, market, async_session):
        """Test accepting A -> B moves both listings to accepted."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        edge = await targeting.create_edge(a, b)

        acceptance = await targeting.accept_edge(edge.id)

        assert acceptance.edge.status == EdgeStatus.ACCEPTED
        listings = ListingRepository(async_session)
        for listing_id in (a, b):
            listing = await listings.get_by_id(listing_id)
            assert listing.status == ListingStatus.ACCEPTED
            assert listing.accepted_at is not None
        history = await targeting.history_for_edge(edge.id)
        assert [h.action for h in history] == ["created", "accepted"]

    @pytest.mark.asyncio
    async def test_accept_displaces_other_edges(self, targeting, market):
        """Test other edges touching the committed listings are closed."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        c = await market.listing("u3")
        d = await market.listing("u4", AcceptanceStrategy.AUCTION)
        await targeting.create_edge(b, d)
        into_a = await targeting.create_edge(c, a)
        into_a_id = into_a.id
        edge = await targeting.create_edge(a, b)

        acceptance = await targeting.accept_edge(edge.id)

        assert len(acceptance.displaced) == 2
        rejected = await targeting.get_edge(into_a_id)
        assert rejected.status == EdgeStatus.REJECTED
        history = await targeting.history_for_edge(into_a_id)
        assert history[-1].details == {"reason": REASON_LISTING_COMMITTED}
        assert await targeting.has_active_outgoing(b) is False

    @pytest.mark.asyncio
    async def test_accept_twice_is_stale(self, targeting, market):
        """Test a second acceptance fails with StaleStateError."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        edge = await targeting.create_edge(a, b)
        edge_id = edge.id
        await targeting.accept_edge(edge_id)

        with pytest.raises(StaleStateError):
            await targeting.accept_edge(edge_id)

    @pytest.mark.asyncio
    async def test_accept_with_committed_source_rolls_back(
        self, targeting, market, async_session
    ):
        """Test a non-pending listing aborts the whole acceptance."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        edge = await targeting.create_edge(a, b)
        edge_id = edge.id
        await ListingRepository(async_session).transition(
            a, [ListingStatus.PENDING], ListingStatus.CANCELLED
        )
        await async_session.commit()

        with pytest.raises(StaleStateError):
            await targeting.accept_edge(edge_id)

        edge = await targeting.get_edge(edge_id)
        assert edge.status == EdgeStatus.ACTIVE
        assert [h.action for h in await targeting.history_for_edge(edge_id)] == [
            "created"
        ]

    @pytest.mark.asyncio
    async def test_accept_auction_edge_not_allowed(self, targeting, market):
        """Test auction edges are settled by winner selection only."""
        a = await market.listing("u1")
        t = await market.listing("u2", AcceptanceStrategy.AUCTION)
        edge = await targeting.create_edge(a, t)

        with pytest.raises(NotEligibleError):
            await targeting.accept_edge(edge.id)

    @pytest.mark.asyncio
    async def test_reject_edge(self, targeting, market):
        """Test rejecting frees the first-match slot."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        c = await market.listing("u3")
        edge = await targeting.create_edge(a, b)

        rejected = await targeting.reject_edge(edge.id, "not interested")

        assert rejected.status == EdgeStatus.REJECTED
        history = await targeting.history_for_edge(edge.id)
        assert history[-1].action == "rejected"
        assert history[-1].details == {"reason": "not interested"}
        assert (await targeting.create_edge(c, b)).status == EdgeStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_reject_closed_edge_is_stale(self, targeting, market):
        """Test rejecting a cancelled edge fails."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        edge = await targeting.create_edge(a, b)
        edge_id = edge.id
        await targeting.cancel_outgoing_edges(a)

        with pytest.raises(StaleStateError):
            await targeting.reject_edge(edge_id)

    @pytest.mark.asyncio
    async def test_history_for_listing_newest_first(self, targeting, market):
        """Test history covers source and target, newest first."""
        a = await market.listing("u1")
        b = await market.listing("u2")
        edge = await targeting.create_edge(a, b)
        await targeting.reject_edge(edge.id)

        history = await targeting.history_for(b)

        assert [h.action for h in history] == ["rejected", "created"]

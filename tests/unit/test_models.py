# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Unit tests for ORM models, payload models and storage constraints."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from swapmatch.database import utc_now
from swapmatch.models import (
    AcceptanceStrategy,
    Auction,
    AuctionProposal,
    AuctionSettings,
    AuctionStatus,
    CashOffer,
    CompatibilityCacheEntry,
    EdgeStatus,
    Listing,
    ProposalType,
    Reservation,
    TargetEdge,
)


class TestListing:
    """Tests for Listing helpers."""

    def test_is_expired(self):
        """Test expiry is judged against the reference time."""
        now = datetime(2026, 6, 1, tzinfo=UTC)
        listing = Listing(expires_at=now + timedelta(hours=1))

        assert listing.is_expired(now) is False
        assert listing.is_expired(now + timedelta(hours=1)) is True

    def test_is_auction(self):
        """Test acceptance strategy flag."""
        assert Listing(acceptance_strategy=AcceptanceStrategy.AUCTION).is_auction
        first_match = Listing(acceptance_strategy=AcceptanceStrategy.FIRST_MATCH)
        assert not first_match.is_auction


class TestReservation:
    """Tests for Reservation helpers."""

    def test_nights(self):
        """Test stay length in nights."""
        check_in = datetime(2026, 7, 1, tzinfo=UTC)
        reservation = Reservation(
            check_in=check_in, check_out=check_in + timedelta(days=4)
        )

        assert reservation.nights == 4


class TestAuctionSettings:
    """Tests for AuctionSettings validation."""

    def test_defaults(self):
        """Test both proposal types are allowed by default."""
        settings = AuctionSettings(end_date=datetime(2026, 6, 1, tzinfo=UTC))

        assert settings.allow_booking_proposals is True
        assert settings.allow_cash_proposals is True
        assert settings.max_proposals is None

    def test_naive_end_date_rejected(self):
        """Test end dates must carry a timezone."""
        with pytest.raises(ValidationError):
            AuctionSettings(end_date=datetime(2026, 6, 1))

    @pytest.mark.parametrize("max_proposals", [0, 101])
    def test_max_proposals_bounds(self, max_proposals):
        """Test max proposals stays within 1..100."""
        with pytest.raises(ValidationError):
            AuctionSettings(
                end_date=datetime(2026, 6, 1, tzinfo=UTC),
                max_proposals=max_proposals,
            )

    def test_json_round_trip_through_auction(self):
        """Test settings stored as JSON parse back to the model."""
        settings = AuctionSettings(
            end_date=datetime(2026, 6, 1, tzinfo=UTC),
            max_proposals=5,
            minimum_cash_offer=Decimal("100"),
        )
        auction = Auction(settings=settings.model_dump(mode="json"))

        assert auction.parsed_settings == settings


class TestCashOffer:
    """Tests for CashOffer validation."""

    def test_currency_upper_cased(self):
        """Test currency codes are normalised."""
        assert CashOffer(amount=Decimal("10"), currency="eur").currency == "EUR"

    @pytest.mark.parametrize(
        "payload",
        [
            {"amount": 0, "currency": "USD"},
            {"amount": -5, "currency": "USD"},
            {"amount": 10, "currency": ""},
            {"amount": 10, "currency": "US"},
            {"amount": 10, "currency": "U$D"},
        ],
    )
    def test_invalid_offers(self, payload):
        """Test non-positive amounts and bad currencies are rejected."""
        with pytest.raises(ValidationError):
            CashOffer.model_validate(payload)


class TestAuction:
    """Tests for Auction helpers."""

    def test_is_active(self):
        """Test an auction is active until its end date."""
        now = datetime(2026, 6, 1, tzinfo=UTC)
        auction = Auction(status=AuctionStatus.ACTIVE, ends_at=now + timedelta(days=1))

        assert auction.is_active(now) is True
        assert auction.is_active(now + timedelta(days=1)) is False

    def test_ended_auction_is_not_active(self):
        """Test the ended status wins over the end date."""
        now = datetime(2026, 6, 1, tzinfo=UTC)
        auction = Auction(status=AuctionStatus.ENDED, ends_at=now + timedelta(days=1))

        assert auction.is_active(now) is False

    def test_proposal_is_cash(self):
        """Test proposal type flag."""
        assert AuctionProposal(proposal_type=ProposalType.CASH).is_cash
        assert not AuctionProposal(proposal_type=ProposalType.BOOKING).is_cash


class TestCompatibilityCacheEntry:
    """Tests for the unordered pair key."""

    def test_pair_key_is_unordered(self):
        """Test both orders map to the same key."""
        assert CompatibilityCacheEntry.pair_key(9, 3) == (3, 9)
        assert CompatibilityCacheEntry.pair_key(3, 9) == (3, 9)


class TestStorageConstraints:
    """Tests for constraints enforced by the database."""

    @pytest.mark.asyncio
    async def test_self_edge_rejected(self, async_session, market):
        """Test the no-self-loop check constraint."""
        listing_id = await market.listing("owner-a")
        async_session.add(
            TargetEdge(
                source_listing_id=listing_id,
                target_listing_id=listing_id,
                status=EdgeStatus.ACTIVE,
            )
        )

        with pytest.raises(IntegrityError):
            await async_session.flush()

    @pytest.mark.asyncio
    async def test_one_active_outgoing_edge_per_source(self, async_session, market):
        """Test the partial unique index on active sources."""
        source = await market.listing("owner-a")
        first = await market.listing("owner-b")
        second = await market.listing("owner-c")
        async_session.add(
            TargetEdge(source_listing_id=source, target_listing_id=first)
        )
        await async_session.flush()
        async_session.add(
            TargetEdge(source_listing_id=source, target_listing_id=second)
        )

        with pytest.raises(IntegrityError):
            await async_session.flush()

    @pytest.mark.asyncio
    async def test_closed_edges_do_not_count(self, async_session, market):
        """Test cancelled edges leave the active slot free."""
        source = await market.listing("owner-a")
        first = await market.listing("owner-b")
        second = await market.listing("owner-c")
        async_session.add(
            TargetEdge(
                source_listing_id=source,
                target_listing_id=first,
                status=EdgeStatus.CANCELLED,
            )
        )
        async_session.add(
            TargetEdge(source_listing_id=source, target_listing_id=second)
        )

        await async_session.flush()

    @pytest.mark.asyncio
    async def test_one_active_edge_per_exclusive_target(self, async_session, market):
        """Test first-match targets admit a single active incoming edge."""
        target = await market.listing("owner-t")
        first = await market.listing("owner-a")
        second = await market.listing("owner-b")
        async_session.add(
            TargetEdge(
                source_listing_id=first,
                target_listing_id=target,
                exclusive_target_id=target,
            )
        )
        await async_session.flush()
        async_session.add(
            TargetEdge(
                source_listing_id=second,
                target_listing_id=target,
                exclusive_target_id=target,
            )
        )

        with pytest.raises(IntegrityError):
            await async_session.flush()

    @pytest.mark.asyncio
    async def test_expired_listing_may_keep_past_expiry(self, async_session, market):
        """Test closed listings are exempt from the expiry check."""
        listing_id = await market.listing(
            "owner-a", status="expired", expires_in=timedelta(days=-2)
        )

        assert listing_id > 0

    @pytest.mark.asyncio
    async def test_pending_listing_needs_future_expiry(self, async_session, market):
        """Test pending listings must expire after creation."""
        reservation_id = await market.reservation("owner-a")
        async_session.add(
            Listing(
                reservation_id=reservation_id,
                status="pending",
                expires_at=utc_now() - timedelta(days=1),
            )
        )

        with pytest.raises(IntegrityError):
            await async_session.flush()

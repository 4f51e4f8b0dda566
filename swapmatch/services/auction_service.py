# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Auction engine: bid ledger, winner selection and expiry processing."""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from functools import cmp_to_key
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.config import Settings, get_settings
from swapmatch.database import read_with_retry, unit_of_work, utc_now
from swapmatch.errors import (
    AuctionClosedError,
    InvalidProposalError,
    NotEligibleError,
    NotFoundError,
    StaleStateError,
)
from swapmatch.models.auction import (
    Auction,
    AuctionProposal,
    AuctionSettings,
    AuctionStatus,
    CashOffer,
    ProposalStatus,
    ProposalType,
)
from swapmatch.models.listing import ListingStatus
from swapmatch.repositories.auction_repository import AuctionRepository
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.repositories.reservation_repository import ReservationRepository
from swapmatch.services.eligibility_service import REASON_AUCTION_FULL
from swapmatch.services.ports import LoggingEventSink, MatchingEventSink
from swapmatch.services.targeting_service import (
    REASON_AUCTION_LOST,
    REASON_LISTING_COMMITTED,
    TargetingService,
)

logger = logging.getLogger(__name__)

REASON_AUCTION_ENDED = "auction_ended"

ProposalComparator = Callable[[AuctionProposal, AuctionProposal], int]


def highest_cash_then_first_booking(a: AuctionProposal, b: AuctionProposal) -> int:
    """Order proposals best first.

    Cash offers outrank booking offers and are ordered by amount, highest
    first. Booking offers are ordered by submission time. Remaining ties
    fall back to the proposal ID.
    """
    if a.is_cash != b.is_cash:
        return -1 if a.is_cash else 1
    if a.is_cash and a.cash_amount != b.cash_amount:
        return -1 if (a.cash_amount or 0) > (b.cash_amount or 0) else 1
    if a.submitted_at != b.submitted_at:
        return -1 if a.submitted_at < b.submitted_at else 1
    return (a.id > b.id) - (a.id < b.id)


def rank(
    proposals: Sequence[AuctionProposal],
    comparator: ProposalComparator = highest_cash_then_first_booking,
) -> list[AuctionProposal]:
    """Sort proposals best first with the given comparator."""
    return sorted(proposals, key=cmp_to_key(comparator))


class AuctionService:
    """Runs auctions on listings in auction acceptance mode.

    State transitions are conditional updates, so a second caller racing
    on the same auction or proposal gets StaleStateError instead of a
    double application.
    """

    def __init__(
        self,
        session: AsyncSession,
        targeting: TargetingService | None = None,
        events: MatchingEventSink | None = None,
        settings: Settings | None = None,
        comparator: ProposalComparator | None = None,
    ) -> None:
        """Initialize AuctionService.

        Args:
            session: Async database session.
            targeting: Graph store used to settle proposal edges.
            events: Sink for structured engine events.
            settings: Engine settings. Defaults to the global settings.
            comparator: Proposal ranking policy.
        """
        self._session = session
        self._events = events or LoggingEventSink()
        self._settings = settings or get_settings()
        self._targeting = targeting or TargetingService(
            session, events=self._events, settings=self._settings
        )
        self._comparator = comparator or highest_cash_then_first_booking
        self._auctions = AuctionRepository(session)
        self._listings = ListingRepository(session)
        self._reservations = ReservationRepository(session)

    async def create_auction(
        self,
        listing_id: int,
        settings: AuctionSettings | dict[str, Any],
        owner_id: str | None = None,
        now: datetime | None = None,
    ) -> Auction:
        """Open an auction on a listing.

        Args:
            listing_id: Listing to auction.
            settings: Auction settings or a dict to validate into them.
            owner_id: Acting user; checked against the derived owner if given.
            now: Reference time. Defaults to current UTC time.

        Returns:
            The created auction.

        Raises:
            NotFoundError: If the listing does not exist.
            NotEligibleError: If the listing cannot run an auction now.
            InvalidProposalError: If settings fail validation.
        """
        stamp = now or utc_now()
        if not isinstance(settings, AuctionSettings):
            try:
                settings = AuctionSettings.model_validate(settings)
            except ValidationError as e:
                raise InvalidProposalError(
                    "Invalid auction settings", [err["msg"] for err in e.errors()]
                ) from e

        async with unit_of_work(
            self._session, "create_auction", listing_id=listing_id
        ):
            listing = await self._listings.get_by_id(listing_id)
            if listing is None:
                raise NotFoundError("listing", listing_id)

            problems: list[str] = []
            if owner_id is not None:
                if await self._listings.owner_of(listing_id) != owner_id:
                    problems.append("Only the listing owner can start an auction")
            if not listing.is_auction:
                problems.append("Listing is not in auction mode")
            if listing.status != ListingStatus.PENDING:
                problems.append("Listing is not pending")
            if await self._auctions.get_active_for_listing(listing_id) is not None:
                problems.append("Listing already has an active auction")
            if settings.end_date <= stamp:
                problems.append("Auction end date must be in the future")

            reservation = await self._reservations.get_by_id(listing.reservation_id)
            if reservation is not None:
                latest_end = reservation.check_in - timedelta(
                    days=self._settings.auction_min_lead_days
                )
                if settings.end_date > latest_end:
                    problems.append(
                        "Auction must end at least "
                        f"{self._settings.auction_min_lead_days} days before "
                        f"check-in (by {latest_end.isoformat()})"
                    )

            if problems:
                raise NotEligibleError(problems[0], problems)

            auction = Auction(
                listing_id=listing_id,
                status=AuctionStatus.ACTIVE,
                settings=settings.model_dump(mode="json"),
                ends_at=settings.end_date,
            )
            try:
                await self._auctions.create(auction)
            except IntegrityError as e:
                raise NotEligibleError("Listing already has an active auction") from e

        self._events.emit(
            "auction_created",
            auction_id=auction.id,
            listing_id=listing_id,
            ends_at=auction.ends_at.isoformat(),
        )
        logger.info("Created auction %s for listing %s", auction.id, listing_id)
        return auction

    async def submit_proposal(
        self,
        auction_id: int,
        proposer_id: str,
        proposal_type: ProposalType | str,
        *,
        listing_id: int | None = None,
        target_edge_id: int | None = None,
        cash_offer: CashOffer | dict[str, Any] | None = None,
        message: str | None = None,
        conditions: list[str] | None = None,
        now: datetime | None = None,
    ) -> AuctionProposal:
        """Record a bid against an active auction.

        Args:
            auction_id: Auction to bid on.
            proposer_id: Bidding user.
            proposal_type: "booking" or "cash".
            listing_id: Offered listing for booking proposals.
            target_edge_id: Graph edge backing a booking proposal.
            cash_offer: Offer payload for cash proposals.
            message: Free text for the auction owner.
            conditions: Proposer conditions.
            now: Reference time. Defaults to current UTC time.

        Returns:
            The pending proposal.

        Raises:
            NotFoundError: If the auction does not exist.
            AuctionClosedError: If the auction ended, its end date passed or
                its listing is no longer pending.
            NotEligibleError: If the proposer may not bid or the auction is full.
            InvalidProposalError: If the payload is invalid for this auction.
        """
        stamp = now or utc_now()
        async with unit_of_work(
            self._session,
            "submit_proposal",
            auction_id=auction_id,
            proposer_id=proposer_id,
        ):
            auction = await self._require_auction(auction_id)
            if not auction.is_active(stamp):
                raise AuctionClosedError(f"Auction {auction_id} is closed")
            auctioned = await self._listings.get_by_id(auction.listing_id)
            if auctioned is None or auctioned.status != ListingStatus.PENDING:
                raise AuctionClosedError(
                    f"Listing of auction {auction_id} is no longer open"
                )

            try:
                kind = ProposalType(proposal_type)
            except ValueError as e:
                raise InvalidProposalError(
                    f"Unknown proposal type {proposal_type!r}"
                ) from e

            if await self._listings.owner_of(auction.listing_id) == proposer_id:
                raise NotEligibleError("Cannot submit a proposal to your own auction")

            settings = auction.parsed_settings
            offer = await self._validate_payload(
                settings, kind, proposer_id, listing_id, cash_offer
            )

            max_proposals = (
                settings.max_proposals or self._settings.auction_default_max_proposals
            )
            if await self._auctions.count_pending(auction_id) >= max_proposals:
                raise NotEligibleError(REASON_AUCTION_FULL)

            proposal = AuctionProposal(
                auction_id=auction_id,
                proposer_id=proposer_id,
                proposal_type=kind,
                listing_id=listing_id if kind == ProposalType.BOOKING else None,
                target_edge_id=target_edge_id,
                cash_amount=offer.amount if offer else None,
                cash_currency=offer.currency if offer else None,
                payment_method_id=offer.payment_method_id if offer else None,
                message=message,
                conditions=conditions,
                status=ProposalStatus.PENDING,
                submitted_at=stamp,
            )
            await self._auctions.add_proposal(proposal)

        self._events.emit(
            "proposal_submitted",
            auction_id=auction_id,
            proposal_id=proposal.id,
            proposal_type=kind,
        )
        logger.info(
            "Proposal %s (%s) submitted to auction %s", proposal.id, kind, auction_id
        )
        return proposal

    async def select_winner(
        self, auction_id: int, proposal_id: int, now: datetime | None = None
    ) -> Auction:
        """End an auction with a winning proposal.

        In one transaction the auction ends, the proposal is selected and
        every other pending proposal is rejected. The winner's edge is
        accepted and the losers' edges are rejected.

        Args:
            auction_id: Auction to settle.
            proposal_id: Winning proposal.
            now: Selection timestamp. Defaults to current UTC time.

        Returns:
            The ended auction.

        Raises:
            NotFoundError: If the auction or proposal does not exist.
            StaleStateError: If the auction already ended or the proposal
                is no longer pending.
        """
        stamp = now or utc_now()
        async with unit_of_work(
            self._session,
            "select_winner",
            auction_id=auction_id,
            proposal_id=proposal_id,
        ):
            auction = await self._require_auction(auction_id)
            proposal = await self._auctions.get_proposal(proposal_id)
            if proposal is None or proposal.auction_id != auction_id:
                raise NotFoundError("proposal", proposal_id)

            if not await self._auctions.end(auction_id, proposal_id, stamp):
                raise StaleStateError(f"Auction {auction_id} has already ended")
            if not await self._auctions.select_proposal(auction_id, proposal_id):
                raise StaleStateError(f"Proposal {proposal_id} is no longer pending")
            rejected = await self._auctions.reject_pending(
                auction_id, except_proposal_id=proposal_id
            )

            await self._settle_listing(
                auction.listing_id, proposal.target_edge_id, REASON_AUCTION_LOST, stamp
            )

        self._events.emit(
            "auction_ended",
            auction_id=auction_id,
            winning_proposal_id=proposal_id,
            rejected=rejected,
        )
        logger.info(
            "Auction %s won by proposal %s; %d rejected",
            auction_id,
            proposal_id,
            rejected,
        )
        return auction

    async def end_auction(
        self, auction_id: int, now: datetime | None = None
    ) -> Auction:
        """End an auction without a winner.

        Pending proposals and their edges are rejected; the listing stays
        as it is.

        Raises:
            NotFoundError: If the auction does not exist.
            StaleStateError: If the auction already ended.
        """
        stamp = now or utc_now()
        async with unit_of_work(self._session, "end_auction", auction_id=auction_id):
            auction = await self._require_auction(auction_id)
            if not await self._auctions.end(auction_id, None, stamp):
                raise StaleStateError(f"Auction {auction_id} has already ended")
            rejected = await self._auctions.reject_pending(auction_id)
            for edge in await self._targeting.get_active_incoming(auction.listing_id):
                await self._targeting.reject_edge(edge.id, REASON_AUCTION_ENDED)

        self._events.emit(
            "auction_ended",
            auction_id=auction_id,
            winning_proposal_id=None,
            rejected=rejected,
        )
        logger.info("Auction %s ended without a winner", auction_id)
        return auction

    async def withdraw_proposals_for_edges(self, edge_ids: Sequence[int]) -> int:
        """Reject pending proposals backed by edges that are gone.

        Args:
            edge_ids: Edges cancelled or rejected by the graph store.

        Returns:
            Number of proposals rejected.
        """
        withdrawn = 0
        async with unit_of_work(self._session, "withdraw_proposals"):
            for proposal in await self._auctions.get_pending_for_edges(edge_ids):
                if await self._auctions.reject_proposal(proposal.id):
                    withdrawn += 1
        return withdrawn

    async def get_auction(self, auction_id: int) -> Auction:
        """Get an auction or raise NotFoundError."""
        return await self._require_auction(auction_id)

    async def get_active_for_listing(self, listing_id: int) -> Auction | None:
        """Get the running auction of a listing, if any."""
        return await self._auctions.get_active_for_listing(listing_id)

    async def get_proposals(
        self, auction_id: int, status: str | None = None
    ) -> Sequence[AuctionProposal]:
        """Get proposals of an auction in submission order."""
        return await self._auctions.get_proposals(auction_id, status)

    async def find_expired(self, now: datetime | None = None) -> Sequence[Auction]:
        """Get active auctions whose end date has passed."""
        return await read_with_retry(
            self._session,
            "find_expired_auctions",
            lambda: self._auctions.find_expired(now),
        )

    async def rank_proposals(
        self, auction_id: int, comparator: ProposalComparator | None = None
    ) -> list[AuctionProposal]:
        """Rank the pending proposals of an auction, best first.

        Args:
            auction_id: Auction whose proposals are ranked.
            comparator: Ranking policy. Defaults to the service's policy.

        Returns:
            Pending proposals in rank order.
        """
        pending = await self._auctions.get_proposals(auction_id, ProposalStatus.PENDING)
        return rank(pending, comparator or self._comparator)

    async def process_expired(self, now: datetime | None = None) -> dict[str, int]:
        """End every expired auction, selecting the best proposal if any.

        Safe to run from several workers: an auction settled concurrently
        raises StaleStateError here, which is logged and skipped.

        Args:
            now: Reference time. Defaults to current UTC time.

        Returns:
            Counts of auctions settled with a winner, ended empty and skipped.
        """
        stamp = now or utc_now()
        stats = {"selected": 0, "ended": 0, "skipped": 0}
        expired_ids = [auction.id for auction in await self.find_expired(stamp)]

        for auction_id in expired_ids:
            candidates = [p.id for p in await self.rank_proposals(auction_id)]
            outcome = await self._settle_expired(auction_id, candidates, stamp)
            stats[outcome] += 1

        if expired_ids:
            logger.info(
                "Processed %d expired auctions: %d selected, %d ended, %d skipped",
                len(expired_ids),
                stats["selected"],
                stats["ended"],
                stats["skipped"],
            )
        return stats

    async def _settle_expired(
        self, auction_id: int, candidates: list[int], now: datetime
    ) -> str:
        for proposal_id in candidates:
            try:
                await self.select_winner(auction_id, proposal_id, now)
                return "selected"
            except StaleStateError as e:
                auction = await self._auctions.get_by_id(auction_id)
                if auction is None or auction.status != AuctionStatus.ACTIVE:
                    logger.info("Auction %s settled elsewhere: %s", auction_id, e)
                    return "skipped"
                logger.warning(
                    "Proposal %s of auction %s could not win: %s",
                    proposal_id,
                    auction_id,
                    e,
                )

        try:
            await self.end_auction(auction_id, now)
        except StaleStateError as e:
            logger.info("Auction %s settled elsewhere: %s", auction_id, e)
            return "skipped"
        return "ended"

    async def _settle_listing(
        self,
        listing_id: int,
        winning_edge_id: int | None,
        loser_reason: str,
        now: datetime,
    ) -> None:
        for edge in await self._targeting.get_active_incoming(listing_id):
            if edge.id != winning_edge_id:
                await self._targeting.reject_edge(edge.id, loser_reason)

        if winning_edge_id is not None:
            edge = await self._targeting.get_edge(winning_edge_id)
            await self._targeting.commit_edge(edge, now)
            return

        # Cash win: no edge to accept, commit the auctioned listing directly
        if not await self._listings.transition(
            listing_id, [ListingStatus.PENDING], ListingStatus.ACCEPTED, accepted_at=now
        ):
            raise StaleStateError(f"Listing {listing_id} is no longer pending")
        await self._targeting.release_listing(
            listing_id, REASON_LISTING_COMMITTED, reject_incoming=True
        )

    async def _validate_payload(
        self,
        settings: AuctionSettings,
        kind: ProposalType,
        proposer_id: str,
        listing_id: int | None,
        cash_offer: CashOffer | dict[str, Any] | None,
    ) -> CashOffer | None:
        if kind == ProposalType.BOOKING:
            if not settings.allow_booking_proposals:
                raise InvalidProposalError(
                    "Booking proposals are not allowed for this auction"
                )
            if listing_id is None:
                raise InvalidProposalError(
                    "A listing is required for booking proposals"
                )
            owner = await self._listings.owner_of(listing_id)
            if owner is None:
                raise NotFoundError("listing", listing_id)
            if owner != proposer_id:
                raise NotEligibleError("You can only propose your own listings")
            return None

        if not settings.allow_cash_proposals:
            raise InvalidProposalError(
                "Cash proposals are not allowed for this auction"
            )
        if cash_offer is None:
            raise InvalidProposalError("Cash offer details are required")
        try:
            offer = (
                cash_offer
                if isinstance(cash_offer, CashOffer)
                else CashOffer.model_validate(cash_offer)
            )
        except ValidationError as e:
            raise InvalidProposalError(
                "Invalid cash offer",
                [
                    f"{'.'.join(map(str, err['loc']))}: {err['msg']}"
                    for err in e.errors()
                ],
            ) from e
        if settings.minimum_cash_offer and offer.amount < settings.minimum_cash_offer:
            raise InvalidProposalError(
                f"Cash offer must be at least {settings.minimum_cash_offer}"
            )
        return offer

    async def _require_auction(self, auction_id: int) -> Auction:
        auction = await self._auctions.get_by_id(auction_id)
        if auction is None:
            raise NotFoundError("auction", auction_id)
        return auction

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Matching coordinator: the caller-facing surface of the engine."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.config import Settings, get_settings
from swapmatch.database import unit_of_work, utc_now
from swapmatch.errors import (
    AlreadyTargetedError,
    AuctionClosedError,
    NotEligibleError,
    NotFoundError,
    SelfTargetError,
)
from swapmatch.models.auction import Auction, ProposalStatus, ProposalType
from swapmatch.models.listing import AcceptanceStrategy, Listing, ListingStatus
from swapmatch.models.target_edge import TargetEdge, TargetingHistoryEntry
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.services.auction_service import AuctionService, ProposalComparator
from swapmatch.services.compatibility_service import (
    CompatibilityResult,
    CompatibilityScorer,
    CompatibilityService,
)
from swapmatch.services.eligibility_service import (
    REASON_ALREADY_TARGETED,
    REASON_AUCTION_ENDED,
    REASON_NOT_FOUND,
    EligibilityResult,
    EligibilityService,
)
from swapmatch.services.ports import (
    LoggingEventSink,
    LoggingNotificationDispatcher,
    MatchingEventSink,
    NotificationDispatcher,
    NullUserDirectory,
    UserDirectory,
)
from swapmatch.services.targeting_service import (
    REASON_DECLINED,
    REASON_LISTING_CANCELLED,
    REASON_LISTING_COMMITTED,
    REASON_RETARGETING,
    REASON_WITHDRAWN,
    EdgeAcceptance,
    TargetingService,
)

logger = logging.getLogger(__name__)


@dataclass
class IncomingProposal:
    """Active incoming edge decorated for display."""

    edge_id: int
    source_listing_id: int
    proposer_id: str | None
    proposer_name: str | None
    created_at: datetime


class MatchingCoordinator:
    """Composes targeting, eligibility, auctions and scoring for callers.

    Every mutation runs in a single unit of work, so the component
    operations it combines commit or roll back together. Notifications
    are sent after commit and their failures are only logged.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        users: UserDirectory | None = None,
        events: MatchingEventSink | None = None,
        settings: Settings | None = None,
        comparator: ProposalComparator | None = None,
        scorer: CompatibilityScorer | None = None,
    ) -> None:
        """Initialize MatchingCoordinator.

        Args:
            session: Async database session.
            notifier: Notification port. Defaults to logging only.
            users: User directory port. Defaults to an empty directory.
            events: Event sink port. Defaults to debug logging.
            settings: Engine settings. Defaults to the global settings.
            comparator: Auction proposal ranking policy.
            scorer: Compatibility scoring function.
        """
        self._session = session
        self._notifier = notifier or LoggingNotificationDispatcher()
        self._users = users or NullUserDirectory()
        self._events = events or LoggingEventSink()
        self._settings = settings or get_settings()
        self._listings = ListingRepository(session)
        self.targeting = TargetingService(
            session, events=self._events, settings=self._settings
        )
        self.eligibility = EligibilityService(session, settings=self._settings)
        self.auctions = AuctionService(
            session,
            targeting=self.targeting,
            events=self._events,
            settings=self._settings,
            comparator=comparator,
        )
        self.compatibility = CompatibilityService(
            session, scorer=scorer, events=self._events, settings=self._settings
        )

    async def propose(
        self,
        source_id: int,
        target_id: int,
        user_id: str,
        message: str | None = None,
        conditions: list[str] | None = None,
    ) -> TargetEdge:
        """Offer one of the user's listings for another listing.

        Args:
            source_id: Listing the user offers.
            target_id: Listing the user wants.
            user_id: Acting user; must own the source listing.
            message: Note for auction owners.
            conditions: Proposer conditions for auction proposals.

        Returns:
            The active edge.

        Raises:
            NotFoundError: If a listing does not exist.
            NotEligibleError: If the user may not make this proposal.
            AlreadyTargetedError: If a first-match target is taken.
            AuctionClosedError: If the target's auction has ended.
            SelfTargetError: If source and target are the same.
            CycleError: If the proposal would close a loop.
        """
        if source_id == target_id:
            raise SelfTargetError(source_id)

        retargeted: list[TargetEdge] = []
        async with unit_of_work(
            self._session, "propose", source_id=source_id, target_id=target_id
        ):
            await self._require_own_pending(source_id, user_id)
            check = await self.eligibility.eligibility(target_id, user_id, source_id)
            if not check.can_target:
                raise self._blocking_error(target_id, check)

            current = await self.targeting.get_active_outgoing(source_id)
            if current is not None and current.target_listing_id != target_id:
                retargeted = await self.targeting.cancel_outgoing_edges(
                    source_id, REASON_RETARGETING
                )
                await self.auctions.withdraw_proposals_for_edges(
                    [edge.id for edge in retargeted]
                )

            edge = await self.targeting.create_edge(source_id, target_id)

            if check.mode == AcceptanceStrategy.AUCTION and (
                current is None or current.id != edge.id
            ):
                auction = await self.auctions.get_active_for_listing(target_id)
                if auction is None:
                    raise AuctionClosedError(
                        f"Listing {target_id} has no active auction"
                    )
                await self.auctions.submit_proposal(
                    auction.id,
                    user_id,
                    ProposalType.BOOKING,
                    listing_id=source_id,
                    target_edge_id=edge.id,
                    message=message,
                    conditions=conditions,
                )

            target_owner = await self._listings.owner_of(target_id)
            previous_owners = await self._listings.owners_of(
                e.target_listing_id for e in retargeted
            )

        await self._notify(
            target_owner,
            "proposal_received",
            {
                "edge_id": edge.id,
                "source_listing_id": source_id,
                "target_listing_id": target_id,
            },
        )
        for old in retargeted:
            await self._notify(
                previous_owners.get(old.target_listing_id),
                "proposal_withdrawn",
                {"edge_id": old.id, "reason": REASON_RETARGETING},
            )
        return edge

    async def retarget(
        self, source_id: int, new_target_id: int, user_id: str, **kwargs: Any
    ) -> TargetEdge:
        """Move an existing proposal to a different listing.

        Raises:
            NotEligibleError: If the source listing has no active proposal.
        """
        if not await self.targeting.has_active_outgoing(source_id):
            raise NotEligibleError(
                f"Listing {source_id} has no active proposal to retarget"
            )
        return await self.propose(source_id, new_target_id, user_id, **kwargs)

    async def withdraw(self, source_id: int, user_id: str) -> list[TargetEdge]:
        """Withdraw the user's active proposal from a listing.

        Returns:
            The cancelled edges; empty if nothing was active.
        """
        async with unit_of_work(self._session, "withdraw", source_id=source_id):
            await self._require_owner(source_id, user_id)
            cancelled = await self.targeting.cancel_outgoing_edges(
                source_id, REASON_WITHDRAWN
            )
            await self.auctions.withdraw_proposals_for_edges([e.id for e in cancelled])
            owners = await self._listings.owners_of(
                e.target_listing_id for e in cancelled
            )

        for edge in cancelled:
            await self._notify(
                owners.get(edge.target_listing_id),
                "proposal_withdrawn",
                {"edge_id": edge.id, "reason": REASON_WITHDRAWN},
            )
        return cancelled

    async def accept(self, edge_id: int, user_id: str) -> EdgeAcceptance:
        """Accept a first-match proposal as the target owner.

        Raises:
            NotFoundError: If the edge does not exist.
            NotEligibleError: If the user does not own the target, or the
                target runs an auction.
            StaleStateError: If the edge or a listing moved on.
        """
        async with unit_of_work(self._session, "accept", edge_id=edge_id):
            edge = await self.targeting.get_edge(edge_id)
            await self._require_owner(edge.target_listing_id, user_id)
            acceptance = await self.targeting.accept_edge(edge_id)
            await self.auctions.withdraw_proposals_for_edges(
                [e.id for e in acceptance.displaced]
            )
            proposer = await self._listings.owner_of(edge.source_listing_id)
            displaced_owners = await self._listings.owners_of(
                e.source_listing_id for e in acceptance.displaced
            )

        await self._notify(
            proposer,
            "proposal_accepted",
            {"edge_id": edge_id, "target_listing_id": edge.target_listing_id},
        )
        for other in acceptance.displaced:
            await self._notify(
                displaced_owners.get(other.source_listing_id),
                "proposal_rejected",
                {"edge_id": other.id, "reason": REASON_LISTING_COMMITTED},
            )
        return acceptance

    async def reject(
        self, edge_id: int, user_id: str, reason: str = REASON_DECLINED
    ) -> TargetEdge:
        """Decline a first-match proposal as the target owner.

        Raises:
            NotFoundError: If the edge does not exist.
            NotEligibleError: If the user does not own the target, or the
                target runs an auction.
            StaleStateError: If the edge is no longer active.
        """
        async with unit_of_work(self._session, "reject", edge_id=edge_id):
            edge = await self.targeting.get_edge(edge_id)
            target = await self._require_owner(edge.target_listing_id, user_id)
            if target.is_auction:
                raise NotEligibleError(
                    f"Listing {target.id} runs an auction; select a winner instead"
                )
            await self.targeting.reject_edge(edge_id, reason)
            proposer = await self._listings.owner_of(edge.source_listing_id)

        await self._notify(
            proposer, "proposal_rejected", {"edge_id": edge_id, "reason": reason}
        )
        return edge

    async def select_winner(
        self, auction_id: int, proposal_id: int, user_id: str
    ) -> Auction:
        """Pick the winning proposal of an auction as the listing owner.

        Raises:
            NotFoundError: If the auction or proposal does not exist.
            NotEligibleError: If the user does not own the auctioned listing.
            StaleStateError: If the auction already ended.
        """
        async with unit_of_work(
            self._session, "select_winner", auction_id=auction_id
        ):
            auction = await self.auctions.get_auction(auction_id)
            await self._require_owner(auction.listing_id, user_id)
            proposals = await self.auctions.get_proposals(
                auction_id, ProposalStatus.PENDING
            )
            await self.auctions.select_winner(auction_id, proposal_id)

        for proposal in proposals:
            won = proposal.id == proposal_id
            await self._notify(
                proposal.proposer_id,
                "auction_won" if won else "auction_lost",
                {"auction_id": auction_id, "proposal_id": proposal.id},
            )
        return auction

    async def cancel_listing(
        self, listing_id: int, user_id: str, now: datetime | None = None
    ) -> Listing:
        """Withdraw a pending or expired listing from the market.

        The expiry timestamp is left as it is. Active edges in both
        directions are cancelled and a running auction is ended.

        Raises:
            NotFoundError: If the listing does not exist.
            NotEligibleError: If the user is not the owner or the listing
                is already committed or closed.
        """
        stamp = now or utc_now()
        async with unit_of_work(
            self._session, "cancel_listing", listing_id=listing_id
        ):
            listing = await self._require_owner(listing_id, user_id)
            if not await self._listings.transition(
                listing_id,
                [ListingStatus.PENDING, ListingStatus.EXPIRED],
                ListingStatus.CANCELLED,
                cancelled_at=stamp,
            ):
                raise NotEligibleError(
                    f"Listing {listing_id} cannot be cancelled "
                    f"in status {listing.status}"
                )

            closed = await self.targeting.release_listing(
                listing_id, REASON_LISTING_CANCELLED
            )
            await self.auctions.withdraw_proposals_for_edges([e.id for e in closed])

            # Remaining pending proposals are cash bids without edges
            auction = await self.auctions.get_active_for_listing(listing_id)
            if auction is not None:
                await self.auctions.end_auction(auction.id, stamp)

            counterparts = {
                edge.id: (
                    edge.source_listing_id
                    if edge.target_listing_id == listing_id
                    else edge.target_listing_id
                )
                for edge in closed
            }
            owners = await self._listings.owners_of(counterparts.values())

        self._events.emit("listing_cancelled", listing_id=listing_id)
        for edge in closed:
            await self._notify(
                owners.get(counterparts[edge.id]),
                "proposal_cancelled",
                {"edge_id": edge.id, "reason": REASON_LISTING_CANCELLED},
            )
        logger.info("Listing %s cancelled by %s", listing_id, user_id)
        return listing

    async def check_eligibility(
        self, target_id: int, user_id: str, source_id: int | None = None
    ) -> EligibilityResult:
        """Check whether the user may target a listing."""
        return await self.eligibility.eligibility(target_id, user_id, source_id)

    async def eligible_listings_for(
        self, user_id: str, target_id: int
    ) -> Sequence[Listing]:
        """List the user's listings that may be offered for a target."""
        return await self.eligibility.eligible_listings_for(user_id, target_id)

    async def score(self, source_id: int, target_id: int) -> CompatibilityResult:
        """Score the compatibility of two listings."""
        return await self.compatibility.score(source_id, target_id)

    async def history_for(self, listing_id: int) -> Sequence[TargetingHistoryEntry]:
        """Get targeting history touching a listing, newest first."""
        return await self.targeting.history_for(listing_id)

    async def incoming_proposals(self, listing_id: int) -> list[IncomingProposal]:
        """Get active proposals to a listing with proposer display names."""
        edges = await self.targeting.get_active_incoming(listing_id)
        owners = await self._listings.owners_of(e.source_listing_id for e in edges)
        proposals: list[IncomingProposal] = []
        for edge in edges:
            proposer_id = owners.get(edge.source_listing_id)
            summary = (
                await self._users.get_user_summary(proposer_id) if proposer_id else None
            )
            proposals.append(
                IncomingProposal(
                    edge_id=edge.id,
                    source_listing_id=edge.source_listing_id,
                    proposer_id=proposer_id,
                    proposer_name=summary.display_name if summary else None,
                    created_at=edge.created_at,
                )
            )
        return proposals

    async def _require_owner(self, listing_id: int, user_id: str) -> Listing:
        listing = await self._listings.get_by_id(listing_id)
        if listing is None:
            raise NotFoundError("listing", listing_id)
        if await self._listings.owner_of(listing_id) != user_id:
            raise NotEligibleError(f"Listing {listing_id} does not belong to {user_id}")
        return listing

    async def _require_own_pending(self, listing_id: int, user_id: str) -> Listing:
        listing = await self._require_owner(listing_id, user_id)
        if listing.status != ListingStatus.PENDING or listing.is_expired():
            raise NotEligibleError(f"Listing {listing_id} is not available to offer")
        return listing

    @staticmethod
    def _blocking_error(target_id: int, check: EligibilityResult) -> Exception:
        first = check.reasons[0]
        if first == REASON_NOT_FOUND:
            return NotFoundError("listing", target_id)
        if first == REASON_ALREADY_TARGETED:
            return AlreadyTargetedError(target_id)
        if first == REASON_AUCTION_ENDED:
            return AuctionClosedError(f"Auction on listing {target_id} has ended")
        return NotEligibleError(first, check.reasons)

    async def _notify(
        self, user_id: str | None, event_type: str, payload: dict[str, Any]
    ) -> None:
        if user_id is None:
            return
        try:
            await self._notifier.notify(user_id, event_type, payload)
        except Exception:
            logger.exception("Failed to notify %s of %s", user_id, event_type)

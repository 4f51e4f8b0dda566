# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Eligibility resolver deciding who may target which listing."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.config import Settings, get_settings
from swapmatch.database import read_with_retry, utc_now
from swapmatch.models.listing import AcceptanceStrategy, Listing, ListingStatus
from swapmatch.repositories.auction_repository import AuctionRepository
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.repositories.target_repository import TargetRepository

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "Listing not found"
REASON_OWN_LISTING = "Cannot target your own listing"
REASON_NOT_AVAILABLE = "Listing is not available for proposals"
REASON_AUCTION_ENDED = "Auction has ended"
REASON_ALREADY_TARGETED = "Listing already has a pending proposal"
REASON_AUCTION_FULL = "Auction has reached its maximum number of proposals"


@dataclass
class EligibilityResult:
    """Structured answer to "may this user target that listing?".

    Blocking problems go to reasons; informational notes go to warnings.
    """

    can_target: bool
    reasons: list[str] = field(default_factory=list)
    mode: AcceptanceStrategy | None = None
    current_incoming_count: int = 0
    max_incoming: int = 0
    warnings: list[str] = field(default_factory=list)
    has_existing_proposal: bool = False
    auction_ends_at: datetime | None = None


class EligibilityService:
    """Computes targeting eligibility from derived ownership and graph state."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        """Initialize EligibilityService.

        Args:
            session: Async database session.
            settings: Engine settings. Defaults to the global settings.
        """
        self._session = session
        self._settings = settings or get_settings()
        self._listings = ListingRepository(session)
        self._targets = TargetRepository(session)
        self._auctions = AuctionRepository(session)

    async def eligibility(
        self,
        target_id: int,
        user_id: str,
        source_id: int | None = None,
        now: datetime | None = None,
    ) -> EligibilityResult:
        """Check whether a user may target a listing.

        Args:
            target_id: Listing the user wants to propose to.
            user_id: Requesting user.
            source_id: Listing the user would offer, if already chosen.
            now: Reference time. Defaults to current UTC time.

        Returns:
            EligibilityResult; never raises for domain reasons.
        """
        return await read_with_retry(
            self._session,
            "eligibility",
            lambda: self._evaluate(target_id, user_id, source_id, now or utc_now()),
            target_id=target_id,
            user_id=user_id,
        )

    async def eligible_listings_for(
        self, user_id: str, target_id: int, now: datetime | None = None
    ) -> Sequence[Listing]:
        """Get the user's listings that are free to target a listing.

        Args:
            user_id: Requesting user.
            target_id: Listing to leave out of the result.
            now: Reference time. Defaults to current UTC time.

        Returns:
            Pending, unexpired, uncommitted listings owned by the user.
        """
        return await read_with_retry(
            self._session,
            "eligible_listings_for",
            lambda: self._listings.get_eligible_for_owner(
                user_id, exclude_listing_id=target_id, now=now
            ),
            target_id=target_id,
            user_id=user_id,
        )

    async def _evaluate(
        self,
        target_id: int,
        user_id: str,
        source_id: int | None,
        now: datetime,
    ) -> EligibilityResult:
        target = await self._listings.get_by_id(target_id)
        if target is None:
            return EligibilityResult(can_target=False, reasons=[REASON_NOT_FOUND])

        mode = AcceptanceStrategy(target.acceptance_strategy)
        result = EligibilityResult(can_target=False, mode=mode)

        owner_id = await self._listings.owner_of(target_id)
        if owner_id == user_id:
            result.reasons.append(REASON_OWN_LISTING)

        if target.status != ListingStatus.PENDING or target.is_expired(now):
            result.reasons.append(REASON_NOT_AVAILABLE)

        result.current_incoming_count = await self._targets.count_active_incoming(
            target_id
        )
        proposers = await self._targets.active_incoming_owners(target_id)
        result.has_existing_proposal = user_id in proposers

        if mode == AcceptanceStrategy.AUCTION:
            auction = await self._auctions.get_active_for_listing(target_id)
            if auction is None or not auction.is_active(now):
                result.reasons.append(REASON_AUCTION_ENDED)
                result.max_incoming = 0
            else:
                result.auction_ends_at = auction.ends_at
                result.max_incoming = (
                    auction.parsed_settings.max_proposals
                    or self._settings.auction_default_max_proposals
                )
                if (
                    result.current_incoming_count >= result.max_incoming
                    and not result.has_existing_proposal
                ):
                    result.reasons.append(REASON_AUCTION_FULL)
        else:
            result.max_incoming = 1
            if result.current_incoming_count >= 1 and not result.has_existing_proposal:
                result.reasons.append(REASON_ALREADY_TARGETED)

        await self._add_retarget_warning(result, target_id, user_id, source_id)

        result.can_target = not result.reasons
        if not result.can_target:
            logger.debug(
                "User %s may not target listing %s: %s",
                user_id,
                target_id,
                "; ".join(result.reasons),
            )
        return result

    async def _add_retarget_warning(
        self,
        result: EligibilityResult,
        target_id: int,
        user_id: str,
        source_id: int | None,
    ) -> None:
        if source_id is not None:
            current = await self._targets.get_active_outgoing(source_id)
            elsewhere = (
                [current]
                if current is not None and current.target_listing_id != target_id
                else []
            )
        else:
            elsewhere = [
                edge
                for edge in await self._targets.active_outgoing_for_owner(user_id)
                if edge.target_listing_id != target_id
            ]

        for edge in elsewhere:
            result.warnings.append(
                f"Listing {edge.source_listing_id} already targets listing "
                f"{edge.target_listing_id}; proposing here will retarget it"
            )

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Background sweeps expiring listings, ending auctions and purging the cache."""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.config import Settings, get_settings
from swapmatch.database import unit_of_work, utc_now
from swapmatch.errors import StaleStateError
from swapmatch.models.listing import ListingStatus
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.services.auction_service import AuctionService
from swapmatch.services.compatibility_service import CompatibilityService
from swapmatch.services.ports import LoggingEventSink, MatchingEventSink
from swapmatch.services.targeting_service import (
    REASON_LISTING_EXPIRED,
    TargetingService,
)

logger = logging.getLogger(__name__)


class SweepService:
    """Idempotent maintenance passes run by the scheduler.

    Each row is handled in its own unit of work and guarded by a
    conditional status update, so overlapping runs from several workers
    do no harm.
    """

    def __init__(
        self,
        session: AsyncSession,
        events: MatchingEventSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize SweepService.

        Args:
            session: Async database session.
            events: Sink for structured engine events.
            settings: Engine settings. Defaults to the global settings.
        """
        self._session = session
        self._events = events or LoggingEventSink()
        self._settings = settings or get_settings()
        self._listings = ListingRepository(session)
        self._targeting = TargetingService(
            session, events=self._events, settings=self._settings
        )
        self._auctions = AuctionService(
            session,
            targeting=self._targeting,
            events=self._events,
            settings=self._settings,
        )
        self._compatibility = CompatibilityService(
            session, events=self._events, settings=self._settings
        )

    async def expire_listings(self, now: datetime | None = None) -> int:
        """Mark overdue pending listings expired and close what hangs off them.

        Edges in both directions are cancelled, proposals they back are
        rejected and a running auction on the listing is ended.

        Args:
            now: Reference time. Defaults to current UTC time.

        Returns:
            Number of listings expired by this run.
        """
        stamp = now or utc_now()
        overdue = await self._listings.find_overdue(stamp)
        overdue_ids = [listing.id for listing in overdue]
        expired = 0
        for listing_id in overdue_ids:
            try:
                async with unit_of_work(
                    self._session, "expire_listing", listing_id=listing_id
                ):
                    if not await self._listings.transition(
                        listing_id, [ListingStatus.PENDING], ListingStatus.EXPIRED
                    ):
                        raise StaleStateError(f"Listing {listing_id} already moved on")
                    closed = await self._targeting.release_listing(
                        listing_id, REASON_LISTING_EXPIRED
                    )
                    await self._auctions.withdraw_proposals_for_edges(
                        [edge.id for edge in closed]
                    )
                    auction = await self._auctions.get_active_for_listing(listing_id)
                    if auction is not None:
                        await self._auctions.end_auction(auction.id, stamp)
            except StaleStateError as e:
                logger.debug("Skipping listing %s: %s", listing_id, e)
                continue
            expired += 1
            self._events.emit("listing_expired", listing_id=listing_id)

        if expired:
            logger.info("Expired %d overdue listings", expired)
        return expired

    async def end_expired_auctions(self, now: datetime | None = None) -> dict[str, int]:
        """Settle auctions whose end date has passed.

        Returns:
            Counts of auctions selected, ended and skipped.
        """
        return await self._auctions.process_expired(now)

    async def purge_compatibility_cache(self, now: datetime | None = None) -> int:
        """Delete expired compatibility cache rows.

        Returns:
            Number of rows deleted.
        """
        async with unit_of_work(self._session, "purge_compatibility_cache"):
            return await self._compatibility.purge_expired(now)

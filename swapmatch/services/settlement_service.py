# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Settlement bookkeeping: write-once references and completion."""

import logging
from datetime import datetime
from enum import StrEnum

from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.database import unit_of_work, utc_now
from swapmatch.errors import NotFoundError, StaleStateError
from swapmatch.models.listing import ListingStatus
from swapmatch.models.target_edge import EdgeStatus
from swapmatch.repositories.auction_repository import AuctionRepository
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.repositories.target_repository import TargetRepository
from swapmatch.services.ports import LoggingEventSink, MatchingEventSink

logger = logging.getLogger(__name__)


class SettlementEntity(StrEnum):
    """Entities that can carry a settlement reference."""

    LISTING = "listing"
    AUCTION = "auction"
    AUCTION_END = "auction_end"
    PROPOSAL = "proposal"


class SettlementService:
    """Records settlement outcomes against engine entities.

    A reference is written once; writing the same value again is a no-op
    and writing a different value raises StaleStateError. Once an
    exchange settles, its accepted listings are marked completed.
    """

    def __init__(
        self, session: AsyncSession, events: MatchingEventSink | None = None
    ) -> None:
        """Initialize SettlementService.

        Args:
            session: Async database session.
            events: Sink for structured engine events.
        """
        self._session = session
        self._events = events or LoggingEventSink()
        self._targets = TargetRepository(session)
        self._listings = ListingRepository(session)
        self._auctions = AuctionRepository(session)

    async def record_reference(
        self, entity: SettlementEntity | str, entity_id: int, reference: str
    ) -> None:
        """Attach a settlement reference to an entity.

        Args:
            entity: Kind of entity.
            entity_id: Entity primary key.
            reference: Opaque reference from the settlement system.

        Raises:
            ValueError: If the entity kind is unknown or reference is empty.
            NotFoundError: If the entity does not exist.
            StaleStateError: If a different reference is already stored.
        """
        kind = SettlementEntity(entity)
        if not reference:
            raise ValueError("Settlement reference must not be empty")

        async with unit_of_work(
            self._session, "record_reference", entity=kind, entity_id=entity_id
        ):
            if kind == SettlementEntity.LISTING:
                await self._listings.record_settlement_reference(entity_id, reference)
            elif kind == SettlementEntity.PROPOSAL:
                proposal = await self._auctions.get_proposal(entity_id)
                if proposal is None:
                    raise NotFoundError("proposal", entity_id)
                proposal.settlement_reference = _merge(
                    proposal.settlement_reference, reference, kind, entity_id
                )
            else:
                auction = await self._auctions.get_by_id(entity_id)
                if auction is None:
                    raise NotFoundError("auction", entity_id)
                if kind == SettlementEntity.AUCTION:
                    auction.settlement_reference = _merge(
                        auction.settlement_reference, reference, kind, entity_id
                    )
                else:
                    auction.end_settlement_reference = _merge(
                        auction.end_settlement_reference, reference, kind, entity_id
                    )
            await self._session.flush()

        logger.info("Recorded settlement reference for %s %s", kind, entity_id)

    async def complete_swap(self, edge_id: int, now: datetime | None = None) -> None:
        """Close out a settled exchange.

        Both listings of the accepted edge move from accepted to completed
        in one transaction.

        Args:
            edge_id: Accepted edge joining the exchanged listings.
            now: Completion timestamp. Defaults to current UTC time.

        Raises:
            NotFoundError: If the edge does not exist.
            StaleStateError: If the edge was not accepted or either listing
                is no longer accepted.
        """
        stamp = now or utc_now()
        async with unit_of_work(self._session, "complete_swap", edge_id=edge_id):
            edge = await self._targets.get_by_id(edge_id)
            if edge is None:
                raise NotFoundError("edge", edge_id)
            if edge.status != EdgeStatus.ACCEPTED:
                raise StaleStateError(
                    f"Edge {edge_id} is {edge.status}, not accepted"
                )
            for listing_id in (edge.source_listing_id, edge.target_listing_id):
                await self._complete(listing_id, stamp)

        self._events.emit(
            "swap_completed",
            edge_id=edge_id,
            source_id=edge.source_listing_id,
            target_id=edge.target_listing_id,
        )
        logger.info("Completed swap on edge %s", edge_id)

    async def complete_listing(
        self, listing_id: int, now: datetime | None = None
    ) -> None:
        """Close out a settled listing sold without a counter-listing.

        Raises:
            NotFoundError: If the listing does not exist.
            StaleStateError: If the listing is not accepted.
        """
        stamp = now or utc_now()
        async with unit_of_work(
            self._session, "complete_listing", listing_id=listing_id
        ):
            if await self._listings.get_by_id(listing_id) is None:
                raise NotFoundError("listing", listing_id)
            await self._complete(listing_id, stamp)

        self._events.emit("listing_completed", listing_id=listing_id)
        logger.info("Completed listing %s", listing_id)

    async def _complete(self, listing_id: int, stamp: datetime) -> None:
        if not await self._listings.transition(
            listing_id,
            [ListingStatus.ACCEPTED],
            ListingStatus.COMPLETED,
            completed_at=stamp,
        ):
            raise StaleStateError(f"Listing {listing_id} is not accepted")


def _merge(
    current: str | None, reference: str, kind: SettlementEntity, entity_id: int
) -> str:
    if current is not None and current != reference:
        raise StaleStateError(
            f"{kind.capitalize()} {entity_id} already has "
            f"settlement reference {current}"
        )
    return reference

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Targeting graph store: transactional edge mutations with history."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.config import Settings, get_settings
from swapmatch.database import unit_of_work, utc_now
from swapmatch.errors import (
    AlreadyTargetedError,
    CycleError,
    NotEligibleError,
    NotFoundError,
    SelfTargetError,
    StaleStateError,
)
from swapmatch.models.listing import Listing, ListingStatus
from swapmatch.models.target_edge import (
    EdgeStatus,
    HistoryAction,
    TargetEdge,
    TargetingHistoryEntry,
)
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.repositories.target_repository import TargetRepository
from swapmatch.services.cycle_detection import find_cycle_path
from swapmatch.services.ports import LoggingEventSink, MatchingEventSink

logger = logging.getLogger(__name__)

REASON_RETARGETING = "retargeting"
REASON_WITHDRAWN = "withdrawn"
REASON_DECLINED = "declined"
REASON_LISTING_COMMITTED = "listing_committed"
REASON_LISTING_CANCELLED = "listing_cancelled"
REASON_LISTING_EXPIRED = "listing_expired"
REASON_AUCTION_LOST = "auction_lost"


@dataclass
class EdgeAcceptance:
    """Outcome of accepting an edge.

    Attributes:
        edge: The accepted edge.
        displaced: Other edges closed because both listings are now committed.
    """

    edge: TargetEdge
    displaced: list[TargetEdge] = field(default_factory=list)


class TargetingService:
    """Owns every mutation of the targeting graph.

    Each public mutation runs in a unit of work so edge changes and their
    history entries commit or roll back together. When called inside a
    caller's unit of work, the work joins it instead of committing.
    """

    def __init__(
        self,
        session: AsyncSession,
        events: MatchingEventSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize TargetingService.

        Args:
            session: Async database session.
            events: Sink for structured engine events.
            settings: Engine settings. Defaults to the global settings.
        """
        self._session = session
        self._events = events or LoggingEventSink()
        self._settings = settings or get_settings()
        self._listings = ListingRepository(session)
        self._targets = TargetRepository(session)

    async def create_edge(self, source_id: int, target_id: int) -> TargetEdge:
        """Create an active edge source -> target.

        Any other active edge leaving source is cancelled first. Targeting
        the same listing again while the edge is active returns it.

        Args:
            source_id: Listing making the proposal.
            target_id: Listing being proposed to.

        Returns:
            The active edge.

        Raises:
            SelfTargetError: If source and target are the same listing.
            NotFoundError: If either listing does not exist.
            CycleError: If an active path target -> ... -> source exists.
            AlreadyTargetedError: If a first-match target already has an
                active edge from another source.
        """
        if source_id == target_id:
            raise SelfTargetError(source_id)

        async with unit_of_work(
            self._session, "create_edge", source_id=source_id, target_id=target_id
        ):
            await self._require_listing(source_id)
            target = await self._require_listing(target_id)

            path = await find_cycle_path(
                self._targets,
                source_id,
                target_id,
                max_depth=self._settings.cycle_check_max_depth,
            )
            if path is not None:
                self._events.emit(
                    "cycle_rejected",
                    source_id=source_id,
                    target_id=target_id,
                    path=path,
                )
                raise CycleError(source_id, target_id, path)

            current = await self._targets.get_active_outgoing(source_id)
            if current is not None and current.target_listing_id == target_id:
                logger.debug("Edge %s already targets %s", current.id, target_id)
                return current

            if not target.is_auction:
                incoming = await self._targets.get_active_incoming(target_id)
                if any(edge.source_listing_id != source_id for edge in incoming):
                    raise AlreadyTargetedError(target_id)

            await self._close_outgoing(source_id, REASON_RETARGETING)

            edge = TargetEdge(
                source_listing_id=source_id,
                target_listing_id=target_id,
                status=EdgeStatus.ACTIVE,
                exclusive_target_id=None if target.is_auction else target_id,
            )
            try:
                await self._targets.add(edge)
            except IntegrityError as e:
                # A concurrent writer claimed the slot between read and insert
                logger.info(
                    "Edge %s -> %s lost a uniqueness race", source_id, target_id
                )
                if not target.is_auction:
                    raise AlreadyTargetedError(target_id) from e
                raise StaleStateError(
                    f"Listing {source_id} was retargeted concurrently"
                ) from e

            await self._targets.add_history(
                edge,
                HistoryAction.CREATED,
                {"acceptance_strategy": target.acceptance_strategy},
            )

        self._events.emit(
            "edge_created",
            edge_id=edge.id,
            source_id=source_id,
            target_id=target_id,
            mode=target.acceptance_strategy,
        )
        logger.info("Created edge %s: %s -> %s", edge.id, source_id, target_id)
        return edge

    async def cancel_outgoing_edges(
        self, source_id: int, reason: str = REASON_RETARGETING
    ) -> list[TargetEdge]:
        """Cancel every active edge leaving a listing.

        Args:
            source_id: Listing whose outgoing edges are cancelled.
            reason: Reason stored in each history entry.

        Returns:
            The cancelled edges.
        """
        async with unit_of_work(
            self._session, "cancel_outgoing_edges", source_id=source_id
        ):
            return await self._close_outgoing(source_id, reason)

    async def accept_edge(self, edge_id: int) -> EdgeAcceptance:
        """Accept a first-match edge on behalf of the target owner.

        Args:
            edge_id: Edge to accept.

        Returns:
            The accepted edge and the edges it displaced.

        Raises:
            NotFoundError: If the edge does not exist.
            NotEligibleError: If the target runs an auction.
            StaleStateError: If the edge or either listing moved on.
        """
        async with unit_of_work(self._session, "accept_edge", edge_id=edge_id):
            edge = await self._require_edge(edge_id)
            target = await self._require_listing(edge.target_listing_id)
            if target.is_auction:
                raise NotEligibleError(
                    f"Listing {target.id} runs an auction; select a winner instead"
                )
            return await self.commit_edge(edge)

    async def commit_edge(
        self, edge: TargetEdge, now: datetime | None = None
    ) -> EdgeAcceptance:
        """Accept an edge and commit both of its listings.

        Both listings move from pending to accepted. Other active edges
        touching either listing are closed: edges leaving them are
        cancelled, edges pointing at them are rejected.

        Args:
            edge: Active edge to accept.
            now: Acceptance timestamp. Defaults to current UTC time.

        Returns:
            The accepted edge and the edges it displaced.

        Raises:
            StaleStateError: If the edge or either listing is no longer pending.
        """
        stamp = now or utc_now()
        async with unit_of_work(self._session, "commit_edge", edge_id=edge.id):
            if not await self._targets.set_status(
                edge.id, EdgeStatus.ACTIVE, EdgeStatus.ACCEPTED, stamp
            ):
                raise StaleStateError(f"Edge {edge.id} is no longer active")
            await self._targets.add_history(edge, HistoryAction.ACCEPTED)

            for listing_id in (edge.source_listing_id, edge.target_listing_id):
                if not await self._listings.transition(
                    listing_id,
                    [ListingStatus.PENDING],
                    ListingStatus.ACCEPTED,
                    accepted_at=stamp,
                ):
                    raise StaleStateError(f"Listing {listing_id} is no longer pending")

            displaced: list[TargetEdge] = []
            for listing_id in (edge.source_listing_id, edge.target_listing_id):
                displaced.extend(
                    await self.release_listing(
                        listing_id, REASON_LISTING_COMMITTED, reject_incoming=True
                    )
                )

        self._events.emit(
            "edge_accepted",
            edge_id=edge.id,
            source_id=edge.source_listing_id,
            target_id=edge.target_listing_id,
            displaced=len(displaced),
        )
        logger.info("Accepted edge %s", edge.id)
        return EdgeAcceptance(edge=edge, displaced=displaced)

    async def reject_edge(
        self, edge_id: int, reason: str = REASON_DECLINED
    ) -> TargetEdge:
        """Reject an active edge.

        Args:
            edge_id: Edge to reject.
            reason: Reason stored in the history entry.

        Returns:
            The rejected edge.

        Raises:
            NotFoundError: If the edge does not exist.
            StaleStateError: If the edge is no longer active.
        """
        async with unit_of_work(self._session, "reject_edge", edge_id=edge_id):
            edge = await self._require_edge(edge_id)
            await self._close_edge(edge, EdgeStatus.REJECTED, reason, strict=True)
        return edge

    async def release_listing(
        self, listing_id: int, reason: str, reject_incoming: bool = False
    ) -> list[TargetEdge]:
        """Close every active edge touching a listing.

        Args:
            listing_id: Listing leaving the market.
            reason: Reason stored in each history entry.
            reject_incoming: Reject edges pointing at the listing instead of
                cancelling them.

        Returns:
            The closed edges.
        """
        async with unit_of_work(
            self._session, "release_listing", listing_id=listing_id
        ):
            closed: list[TargetEdge] = []
            for edge in await self._targets.get_active_involving(listing_id):
                incoming = edge.target_listing_id == listing_id
                status = (
                    EdgeStatus.REJECTED
                    if incoming and reject_incoming
                    else EdgeStatus.CANCELLED
                )
                if await self._close_edge(edge, status, reason):
                    closed.append(edge)
            return closed

    async def get_edge(self, edge_id: int) -> TargetEdge:
        """Get an edge or raise NotFoundError."""
        return await self._require_edge(edge_id)

    async def get_active_outgoing(self, source_id: int) -> TargetEdge | None:
        """Get the active edge leaving a listing, if any."""
        return await self._targets.get_active_outgoing(source_id)

    async def get_active_incoming(self, target_id: int) -> Sequence[TargetEdge]:
        """Get active edges pointing at a listing."""
        return await self._targets.get_active_incoming(target_id)

    async def count_active_incoming(self, target_id: int) -> int:
        """Count active edges pointing at a listing."""
        return await self._targets.count_active_incoming(target_id)

    async def has_active_outgoing(self, source_id: int) -> bool:
        """Check whether a listing currently targets anything."""
        return await self._targets.has_active_outgoing(source_id)

    async def history_for(self, listing_id: int) -> Sequence[TargetingHistoryEntry]:
        """Get history touching a listing, newest first."""
        return await self._targets.history_for(listing_id)

    async def history_for_edge(self, edge_id: int) -> Sequence[TargetingHistoryEntry]:
        """Get history of one edge in write order."""
        return await self._targets.history_for_edge(edge_id)

    async def _close_outgoing(self, source_id: int, reason: str) -> list[TargetEdge]:
        closed: list[TargetEdge] = []
        for edge in await self._targets.get_active_involving(source_id):
            if edge.source_listing_id != source_id:
                continue
            if await self._close_edge(edge, EdgeStatus.CANCELLED, reason):
                closed.append(edge)
        return closed

    async def _close_edge(
        self, edge: TargetEdge, status: EdgeStatus, reason: str, strict: bool = False
    ) -> bool:
        """Move an active edge to a closed status and append history.

        Returns:
            True if this call closed the edge.

        Raises:
            StaleStateError: If strict and the edge was no longer active.
        """
        if not await self._targets.set_status(edge.id, EdgeStatus.ACTIVE, status):
            if strict:
                raise StaleStateError(f"Edge {edge.id} is no longer active")
            return False

        action = (
            HistoryAction.REJECTED
            if status == EdgeStatus.REJECTED
            else HistoryAction.CANCELLED
        )
        await self._targets.add_history(edge, action, {"reason": reason})
        self._events.emit(
            f"edge_{status}",
            edge_id=edge.id,
            source_id=edge.source_listing_id,
            target_id=edge.target_listing_id,
            reason=reason,
        )
        logger.debug("Edge %s %s (%s)", edge.id, status, reason)
        return True

    async def _require_listing(self, listing_id: int) -> Listing:
        listing = await self._listings.get_by_id(listing_id)
        if listing is None:
            raise NotFoundError("listing", listing_id)
        return listing

    async def _require_edge(self, edge_id: int) -> TargetEdge:
        edge = await self._targets.get_by_id(edge_id)
        if edge is None:
            raise NotFoundError("edge", edge_id)
        return edge

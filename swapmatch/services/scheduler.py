# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Background scheduler running the matching engine sweeps."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from swapmatch.config import Settings, get_settings
from swapmatch.services.ports import MatchingEventSink
from swapmatch.services.sweep_service import SweepService

logger = logging.getLogger(__name__)


class SweepScheduler:
    """Runs listing expiry, auction expiry and cache purge on a timer.

    Every job opens its own session, and failures are logged rather than
    raised out of the job.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        events: MatchingEventSink | None = None,
    ) -> None:
        """Initialize scheduler.

        Args:
            session_factory: Factory for creating database sessions.
            settings: Engine settings. Defaults to the global settings.
            events: Sink passed to the sweep service.
        """
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._events = events
        self._scheduler = AsyncIOScheduler()
        self._running = False

    def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            logger.warning("Sweep scheduler already running")
            return

        interval = self._settings.sweep_interval_seconds
        self._scheduler.add_job(
            self._expire_listings,
            trigger=IntervalTrigger(seconds=interval),
            id="expire_listings",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self._end_expired_auctions,
            trigger=IntervalTrigger(seconds=interval),
            id="end_expired_auctions",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self._purge_compatibility_cache,
            trigger=CronTrigger(hour=2, minute=0, timezone="UTC"),
            id="purge_compatibility_cache",
            replace_existing=True,
            max_instances=1,
        )

        self._scheduler.start()
        self._running = True
        logger.info("Sweep scheduler started with %d second interval", interval)

    def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Sweep scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    async def _expire_listings(self) -> None:
        async with self._session_factory() as session:
            try:
                await self._sweeps(session).expire_listings()
            except Exception:
                logger.exception("Error during listing expiry sweep")

    async def _end_expired_auctions(self) -> None:
        async with self._session_factory() as session:
            try:
                await self._sweeps(session).end_expired_auctions()
            except Exception:
                logger.exception("Error during auction expiry sweep")

    async def _purge_compatibility_cache(self) -> None:
        async with self._session_factory() as session:
            try:
                await self._sweeps(session).purge_compatibility_cache()
            except Exception:
                logger.exception("Error during compatibility cache purge")

    def _sweeps(self, session: AsyncSession) -> SweepService:
        return SweepService(session, events=self._events, settings=self._settings)


# Global scheduler instance
_scheduler: SweepScheduler | None = None


def get_scheduler() -> SweepScheduler | None:
    """Get the global scheduler instance.

    Returns:
        SweepScheduler instance or None if not initialized.
    """
    return _scheduler


def init_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
) -> SweepScheduler:
    """Initialize the global scheduler.

    Args:
        session_factory: Factory for creating database sessions.
        settings: Engine settings.

    Returns:
        Initialized SweepScheduler.
    """
    global _scheduler  # noqa: PLW0603
    _scheduler = SweepScheduler(session_factory, settings)
    return _scheduler

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Collaborator interfaces the engine calls out to, with default implementations."""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserSummary:
    """Display data for a user; never used for authorization."""

    display_name: str
    email: str | None = None


class NotificationDispatcher(Protocol):
    """Delivers user-facing notifications."""

    async def notify(
        self, user_id: str, event_type: str, payload: dict[str, Any]
    ) -> None:
        """Send event_type with payload to user_id."""
        ...


class UserDirectory(Protocol):
    """Looks up presentation data for users."""

    async def get_user_summary(self, user_id: str) -> UserSummary | None:
        """Get display data for a user, or None if unknown."""
        ...


class MatchingEventSink(Protocol):
    """Receives structured engine events for metrics or tracing."""

    def emit(self, event: str, **fields: Any) -> None:
        """Record one event."""
        ...


class LoggingNotificationDispatcher:
    """Dispatcher that only logs; used when no delivery backend is wired."""

    async def notify(
        self, user_id: str, event_type: str, payload: dict[str, Any]
    ) -> None:
        """Log the notification."""
        logger.info("Notify %s of %s: %s", user_id, event_type, payload)


class NullUserDirectory:
    """Directory that knows nobody."""

    async def get_user_summary(self, user_id: str) -> UserSummary | None:
        """Return None for every user."""
        return None


class LoggingEventSink:
    """Event sink writing one debug line per event."""

    def emit(self, event: str, **fields: Any) -> None:
        """Log the event and its fields."""
        logger.debug(
            "event=%s %s",
            event,
            " ".join(f"{key}={value}" for key, value in sorted(fields.items())),
        )

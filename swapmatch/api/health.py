# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Health check API endpoint."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from swapmatch import __version__
from swapmatch.services.scheduler import get_scheduler

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Health status with timestamp, version and sweep scheduler state.
    """
    scheduler = get_scheduler()
    return {
        "status": "healthy",
        "timestamp": datetime.now(tz=UTC).isoformat(),
        "version": __version__,
        "scheduler_running": scheduler is not None and scheduler.is_running,
    }

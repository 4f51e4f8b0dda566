# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""FastAPI host for the swap matching engine."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from swapmatch import __version__
from swapmatch.api import health
from swapmatch.config import get_settings
from swapmatch.database import get_session_factory, verify_schema
from swapmatch.middleware.error_handler import (
    ErrorHandlerMiddleware,
    register_exception_handlers,
)
from swapmatch.services.scheduler import init_scheduler
from swapmatch.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup/shutdown events.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    setup_logging()
    settings = get_settings()
    app.state.settings = settings

    session_factory = get_session_factory()
    if settings.validate_schema_on_startup:
        await verify_schema(session_factory.kw["bind"])

    scheduler = init_scheduler(session_factory, settings)
    scheduler.start()
    logger.info("Swap matching engine %s started", __version__)

    yield

    scheduler.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Swap Matching Engine",
        description="Listing targeting graph, eligibility and auction matching",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(ErrorHandlerMiddleware)
    register_exception_handlers(app)

    app.include_router(health.router)

    return app


# Application instance
app = create_app()

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Error translation from engine exceptions to JSON responses."""

import logging
from collections.abc import Awaitable, Callable

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from swapmatch.errors import (
    AlreadyTargetedError,
    AuctionClosedError,
    CycleError,
    InvalidProposalError,
    MatchingError,
    NotEligibleError,
    NotFoundError,
    SelfTargetError,
    StaleStateError,
    UnderlyingStoreError,
)

logger = logging.getLogger(__name__)

# Seconds a client should wait before retrying after a store failure
STORE_RETRY_AFTER_SECONDS = 1

# Most specific first; MatchingError subclasses not listed fall back to 400
_STATUS_BY_ERROR: tuple[tuple[type[MatchingError], int, str], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (NotEligibleError, status.HTTP_403_FORBIDDEN, "not_eligible"),
    (SelfTargetError, status.HTTP_422_UNPROCESSABLE_ENTITY, "self_target"),
    (CycleError, status.HTTP_422_UNPROCESSABLE_ENTITY, "cycle"),
    (InvalidProposalError, status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_proposal"),
    (AlreadyTargetedError, status.HTTP_409_CONFLICT, "already_targeted"),
    (StaleStateError, status.HTTP_409_CONFLICT, "stale_state"),
    (AuctionClosedError, status.HTTP_410_GONE, "auction_closed"),
)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware turning unexpected exceptions into a generic 500.

    Engine errors are translated by the handlers from
    register_exception_handlers before they reach this point.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process request and handle any exceptions.

        Args:
            request: Incoming HTTP request.
            call_next: Next middleware or route handler.

        Returns:
            HTTP response.
        """
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception:
            logger.exception(
                "Unhandled exception for %s %s", request.method, request.url.path
            )
            return create_error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "An internal error occurred. Please try again later.",
                "internal_error",
            )


def create_error_response(
    status_code: int,
    message: str,
    error_type: str = "error",
    reasons: list[str] | None = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        status_code: HTTP status code.
        message: User-facing error message.
        error_type: Error type identifier.
        reasons: Structured reasons, included when present.

    Returns:
        JSONResponse with error details.
    """
    content: dict[str, object] = {"detail": message, "type": error_type}
    if reasons:
        content["reasons"] = reasons
    return JSONResponse(status_code=status_code, content=content)


def service_unavailable_response(
    message: str = "Service temporarily unavailable",
    retry_after: int | None = None,
) -> JSONResponse:
    """Create a 503 Service Unavailable response.

    Args:
        message: User-facing error message.
        retry_after: Seconds until retry (optional).

    Returns:
        JSONResponse with 503 status and optional Retry-After header.
    """
    headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": message, "type": "service_unavailable"},
        headers=headers,
    )


async def matching_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate a MatchingError into its HTTP status."""
    for error_cls, status_code, error_type in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            break
    else:
        status_code, error_type = status.HTTP_400_BAD_REQUEST, "matching_error"

    reasons = getattr(exc, "reasons", None) or getattr(exc, "errors", None)
    logger.info(
        "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc
    )
    return create_error_response(status_code, str(exc), error_type, reasons)


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate an UnderlyingStoreError into a retryable 503."""
    logger.error(
        "Store failure on %s %s: %s", request.method, request.url.path, exc
    )
    return service_unavailable_response(
        "Storage is temporarily unavailable", retry_after=STORE_RETRY_AFTER_SECONDS
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the engine exception handlers on an application.

    Args:
        app: FastAPI application.
    """
    app.add_exception_handler(MatchingError, matching_error_handler)
    app.add_exception_handler(UnderlyingStoreError, store_error_handler)

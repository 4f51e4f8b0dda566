# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Exception types raised by the matching engine."""

from collections.abc import Sequence
from typing import Any


class MatchingError(Exception):
    """Base class for domain errors callers are expected to handle."""

    pass


class SelfTargetError(MatchingError):
    """A listing tried to target itself."""

    def __init__(self, listing_id: int) -> None:
        """Initialize with the offending listing.

        Args:
            listing_id: Listing that targeted itself.
        """
        super().__init__(f"Listing {listing_id} cannot target itself")
        self.listing_id = listing_id


class CycleError(MatchingError):
    """Adding the edge would close a loop of active edges."""

    def __init__(self, source_id: int, target_id: int, path: Sequence[int]) -> None:
        """Initialize with the existing path that closes the loop.

        Args:
            source_id: Proposed edge source.
            target_id: Proposed edge target.
            path: Listing ids from the target back to the source.
        """
        chain = " -> ".join(str(node) for node in path)
        super().__init__(
            f"Targeting {target_id} from {source_id} would create a cycle ({chain})"
        )
        self.source_id = source_id
        self.target_id = target_id
        self.path = list(path)


class AlreadyTargetedError(MatchingError):
    """A first-match listing already has an active proposal."""

    def __init__(self, target_id: int) -> None:
        """Initialize with the occupied listing.

        Args:
            target_id: Listing that already has an active incoming edge.
        """
        super().__init__(f"Listing {target_id} already has a pending proposal")
        self.target_id = target_id


class NotEligibleError(MatchingError):
    """The caller or listing does not meet the preconditions."""

    def __init__(self, message: str, reasons: Sequence[str] | None = None) -> None:
        """Initialize with a message and structured reasons.

        Args:
            message: Human readable summary.
            reasons: Individual blocking reasons.
        """
        super().__init__(message)
        self.reasons = list(reasons) if reasons else [message]


class AuctionClosedError(MatchingError):
    """The auction no longer accepts proposals."""

    pass


class StaleStateError(MatchingError):
    """A terminal-state transition lost a race; re-read and retry."""

    pass


class NotFoundError(MatchingError):
    """A listing, auction, proposal or edge does not exist."""

    def __init__(self, entity: str, entity_id: Any) -> None:
        """Initialize with the missing entity.

        Args:
            entity: Entity kind, e.g. "listing".
            entity_id: Identifier that was looked up.
        """
        super().__init__(f"{entity.capitalize()} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidProposalError(MatchingError):
    """An auction proposal payload failed validation."""

    def __init__(self, message: str, errors: Sequence[str] | None = None) -> None:
        """Initialize with validation errors.

        Args:
            message: Human readable summary.
            errors: Individual validation failures.
        """
        super().__init__(message)
        self.errors = list(errors) if errors else [message]


class UnderlyingStoreError(Exception):
    """Transport or transaction failure from the database layer."""

    retryable = True

    def __init__(self, operation: str, context: dict[str, Any] | None = None) -> None:
        """Initialize with the failed operation.

        Args:
            operation: Engine operation that was running.
            context: Entity ids needed to reconstruct the transaction.
        """
        super().__init__(f"Store failure during {operation}")
        self.operation = operation
        self.context = context or {}


class SchemaMismatchError(Exception):
    """Live database schema does not match the ORM metadata."""

    def __init__(self, problems: Sequence[str]) -> None:
        """Initialize with the detected differences.

        Args:
            problems: Missing tables or columns.
        """
        super().__init__("Schema mismatch: " + "; ".join(problems))
        self.problems = list(problems)

# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""SQLAlchemy ORM models for the swap matching engine."""

from swapmatch.models.auction import (
    Auction,
    AuctionProposal,
    AuctionSettings,
    AuctionStatus,
    CashOffer,
    ProposalStatus,
    ProposalType,
)
from swapmatch.models.compatibility import CompatibilityCacheEntry
from swapmatch.models.listing import (
    AcceptanceStrategy,
    Listing,
    ListingStatus,
    PaymentPreference,
)
from swapmatch.models.reservation import Reservation
from swapmatch.models.target_edge import (
    EdgeStatus,
    HistoryAction,
    TargetEdge,
    TargetingHistoryEntry,
)

__all__ = [
    "AcceptanceStrategy",
    "Auction",
    "AuctionProposal",
    "AuctionSettings",
    "AuctionStatus",
    "CashOffer",
    "CompatibilityCacheEntry",
    "EdgeStatus",
    "HistoryAction",
    "Listing",
    "ListingStatus",
    "PaymentPreference",
    "ProposalStatus",
    "ProposalType",
    "Reservation",
    "TargetEdge",
    "TargetingHistoryEntry",
]

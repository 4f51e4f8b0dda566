# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Swap matching repositories package."""

from swapmatch.repositories.auction_repository import AuctionRepository
from swapmatch.repositories.compatibility_cache_repository import (
    CompatibilityCacheRepository,
)
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.repositories.reservation_repository import ReservationRepository
from swapmatch.repositories.target_repository import TargetRepository

__all__ = [
    "AuctionRepository",
    "CompatibilityCacheRepository",
    "ListingRepository",
    "ReservationRepository",
    "TargetRepository",
]

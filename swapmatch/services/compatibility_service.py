# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Compatibility scoring with a best-effort database cache."""

import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from swapmatch.config import Settings, get_settings
from swapmatch.database import in_unit_of_work, unit_of_work, utc_now
from swapmatch.errors import NotFoundError, UnderlyingStoreError
from swapmatch.models.reservation import Reservation
from swapmatch.repositories.compatibility_cache_repository import (
    CompatibilityCacheRepository,
)
from swapmatch.repositories.listing_repository import ListingRepository
from swapmatch.repositories.reservation_repository import ReservationRepository
from swapmatch.services.ports import LoggingEventSink, MatchingEventSink

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: dict[str, float] = {
    "location": 0.25,
    "date": 0.20,
    "value": 0.30,
    "accommodation": 0.15,
    "guests": 0.10,
}

_REGIONS = (
    ("new york", "manhattan", "brooklyn", "queens", "bronx", "nyc"),
    ("los angeles", "hollywood", "beverly hills", "santa monica"),
    ("san francisco", "oakland", "berkeley", "san jose", "bay area"),
    ("london", "westminster", "kensington", "chelsea", "camden", "greenwich"),
    ("paris", "montmartre", "marais", "saint germain"),
    ("tokyo", "shibuya", "shinjuku", "harajuku", "ginza", "roppongi"),
)

_COUNTRIES = (
    ("usa", "united states", "new york", "los angeles", "chicago", "miami"),
    ("uk", "united kingdom", "england", "london", "manchester", "birmingham"),
    ("france", "paris", "lyon", "marseille", "nice"),
    ("germany", "berlin", "munich", "hamburg", "cologne"),
    ("italy", "rome", "milan", "florence", "venice"),
    ("spain", "madrid", "barcelona", "seville", "valencia"),
    ("japan", "tokyo", "osaka", "kyoto"),
    ("australia", "sydney", "melbourne", "brisbane", "perth"),
)

_CONTINENTS = (
    ("europe", "uk", "france", "germany", "italy", "spain", "london", "paris"),
    ("north america", "usa", "united states", "canada", "mexico", "new york"),
    ("asia", "japan", "china", "korea", "thailand", "singapore", "tokyo"),
    ("oceania", "australia", "new zealand", "sydney", "melbourne"),
    ("south america", "brazil", "argentina", "chile", "colombia"),
    ("africa", "south africa", "egypt", "morocco", "kenya"),
)

# Longest keys first so "guesthouse" is not read as "house"
_ACCOMMODATION_TYPES = (
    ("bed and breakfast", "guesthouse"),
    ("condominium", "apartment"),
    ("guesthouse", "guesthouse"),
    ("apartment", "apartment"),
    ("cottage", "cottage"),
    ("resort", "resort"),
    ("hostel", "hostel"),
    ("cabin", "cottage"),
    ("motel", "hotel"),
    ("hotel", "hotel"),
    ("villa", "villa"),
    ("house", "house"),
    ("condo", "apartment"),
    ("flat", "apartment"),
    ("home", "house"),
    ("b&b", "guesthouse"),
    ("inn", "hotel"),
)

_SIMILAR_TYPES = (
    {"hotel", "resort"},
    {"apartment"},
    {"house", "villa", "cottage"},
    {"hostel", "guesthouse"},
)

_COMPATIBLE_TYPES = (
    {"hotel", "apartment"},
    {"resort", "villa"},
    {"apartment", "house"},
    {"villa", "cottage"},
    {"hotel", "guesthouse"},
)

_LUXURY_LEVELS = {
    "resort": 5,
    "villa": 4,
    "hotel": 3,
    "apartment": 2,
    "house": 2,
    "cottage": 2,
    "guesthouse": 1,
    "hostel": 1,
}


@dataclass(frozen=True)
class CompatibilityResult:
    """Overall score (0-100) plus the factor breakdown."""

    score: int
    analysis: dict[str, Any]


class CompatibilityScorer(Protocol):
    """Pure scoring function over two reservations; must be symmetric."""

    def score(self, first: Reservation, second: Reservation) -> CompatibilityResult:
        """Score a pair of reservations."""
        ...


def _factor(score: float, weight: float, details: str) -> dict[str, Any]:
    value = max(0, min(100, round(score)))
    if value >= 90:
        status = "excellent"
    elif value >= 70:
        status = "good"
    elif value >= 40:
        status = "fair"
    else:
        status = "poor"
    return {"score": value, "weight": weight, "status": status, "details": details}


def _normalize_location(location: str) -> str:
    return re.sub(r"[^\w\s]", "", location.lower()).strip()


def _same_group(first: str, second: str, groups: tuple[tuple[str, ...], ...]) -> bool:
    return any(
        any(place in first for place in group)
        and any(place in second for place in group)
        for group in groups
    )


def _normalize_accommodation(kind: str) -> str:
    normalized = kind.lower().strip()
    for key, value in _ACCOMMODATION_TYPES:
        if key in normalized:
            return value
    return normalized


def _season(month: int) -> int:
    # 0 winter, 1 spring, 2 summer, 3 autumn
    return (month % 12) // 3


class WeightedCompatibilityScorer:
    """Weighted five-factor scorer over location, dates, value, type and guests.

    Every factor is symmetric in its two arguments, so score(a, b) equals
    score(b, a) and results can be cached under an unordered pair key.
    """

    def __init__(self, weights: dict[str, float] | None = None) -> None:
        """Initialize the scorer.

        Args:
            weights: Per-factor weights overriding DEFAULT_WEIGHTS.
        """
        self._weights = {**DEFAULT_WEIGHTS, **(weights or {})}

    def score(self, first: Reservation, second: Reservation) -> CompatibilityResult:
        """Score a pair of reservations.

        Args:
            first: One reservation.
            second: The other reservation.

        Returns:
            CompatibilityResult with factors, recommendations and issues.
        """
        factors = {
            "location": self._location(first, second),
            "date": self._dates(first, second),
            "value": self._value(first.total_price, second.total_price),
            "accommodation": self._accommodation(
                first.accommodation_type, second.accommodation_type
            ),
            "guests": self._guests(first.guests, second.guests),
        }
        total_weight = sum(f["weight"] for f in factors.values())
        overall = (
            round(
                sum(f["score"] * f["weight"] for f in factors.values()) / total_weight
            )
            if total_weight
            else 50
        )
        return CompatibilityResult(
            score=overall,
            analysis={
                "overall_score": overall,
                "factors": factors,
                "recommendations": self._recommendations(factors, overall),
                "potential_issues": self._issues(factors),
            },
        )

    def _location(self, first: Reservation, second: Reservation) -> dict[str, Any]:
        weight = self._weights["location"]
        a = _normalize_location(first.location)
        b = _normalize_location(second.location)
        if a == b:
            return _factor(100, weight, "Exact location match")
        if _same_group(a, b, _REGIONS):
            return _factor(80, weight, "Same region or metropolitan area")
        same_country = (
            first.country is not None
            and second.country is not None
            and first.country.lower() == second.country.lower()
        )
        if same_country or _same_group(a, b, _COUNTRIES):
            return _factor(60, weight, "Same country, different regions")
        if _same_group(a, b, _CONTINENTS):
            return _factor(40, weight, "Same continent")
        return _factor(20, weight, "Different continents")

    def _dates(self, first: Reservation, second: Reservation) -> dict[str, Any]:
        weight = self._weights["date"]
        if first.check_in < second.check_out and second.check_in < first.check_out:
            return _factor(10, weight, "Date ranges overlap")

        a, b = sorted((first.nights, second.nights))
        diff = abs(a - b)
        if diff == 0:
            score, details = 100, f"Same duration ({a} nights)"
        elif diff <= 1:
            score, details = 95, f"Nearly identical durations ({a} vs {b} nights)"
        elif diff <= 3:
            score, details = 80, f"Similar durations ({a} vs {b} nights)"
        elif diff <= 7:
            score, details = 60, f"Moderately different durations ({a} vs {b} nights)"
        else:
            score, details = 30, f"Very different durations ({a} vs {b} nights)"

        season_gap = abs(_season(first.check_in.month) - _season(second.check_in.month))
        if season_gap == 0:
            score, details = score + 5, details + " +5 same season"
        elif season_gap in (1, 3):
            score, details = score + 2, details + " +2 adjacent season"
        return _factor(score, weight, details)

    def _value(self, first: Decimal, second: Decimal) -> dict[str, Any]:
        weight = self._weights["value"]
        if not first or not second:
            return _factor(50, weight, "Missing price information")

        pct = float(abs(first - second) / ((first + second) / 2) * 100)
        if pct <= 5:
            score = 100
        elif pct <= 15:
            score = 85
        elif pct <= 30:
            score = 70
        elif pct <= 50:
            score = 50
        else:
            score = 25
        low, high = sorted((first, second))
        return _factor(score, weight, f"{pct:.1f}% value difference ({low} vs {high})")

    def _accommodation(self, first: str, second: str) -> dict[str, Any]:
        weight = self._weights["accommodation"]
        a, b = sorted(
            (_normalize_accommodation(first), _normalize_accommodation(second))
        )
        pair = {a, b}
        if a == b:
            score, details = 100, f"Same type: {a}"
        elif any(pair <= group for group in _SIMILAR_TYPES):
            score, details = 75, f"Similar types: {a} / {b}"
        elif pair in _COMPATIBLE_TYPES:
            score, details = 50, f"Compatible types: {a} / {b}"
        else:
            score, details = 25, f"Different types: {a} / {b}"

        level_gap = abs(_LUXURY_LEVELS.get(a, 2) - _LUXURY_LEVELS.get(b, 2))
        adjustment = {0: 5, 1: 0, 2: -5}.get(level_gap, -10)
        return _factor(score + adjustment, weight, details)

    def _guests(self, first: int, second: int) -> dict[str, Any]:
        weight = self._weights["guests"]
        a, b = first or 1, second or 1
        low, high = min(a, b), max(a, b)
        diff = high - low
        if diff == 0:
            score = 100
        elif diff == 1:
            score = 85
        elif diff <= 2:
            score = 70
        elif diff <= max(2, high * 0.25):
            score = 50
        else:
            score = 25

        details = f"{low} vs {high} guests"
        utilization = low / high
        if utilization >= 0.8:
            score += 5
        elif utilization < 0.5:
            score -= 10
            details += " (capacity mismatch)"
        return _factor(score, weight, details)

    @staticmethod
    def _recommendations(factors: dict[str, dict[str, Any]], overall: int) -> list[str]:
        notes = {
            "location": (
                "Close locations keep travel simple",
                "Consider travel costs and logistics for both parties",
            ),
            "date": (
                "Similar stay durations",
                "Review date flexibility before proceeding",
            ),
            "value": (
                "Well matched booking values",
                "Discuss additional payment to balance values",
            ),
            "accommodation": (
                "Compatible accommodation types",
                "Confirm both parties accept the accommodation difference",
            ),
            "guests": (
                "Guest counts suit both parties",
                "Verify capacity for the different guest counts",
            ),
        }
        recommendations: list[str] = []
        for name, (good, weak) in notes.items():
            factor_score = factors[name]["score"]
            if factor_score >= 80:
                recommendations.append(good)
            elif factor_score < 60:
                recommendations.append(weak)

        if overall >= 80:
            recommendations.append("Excellent match overall")
        elif overall >= 65:
            recommendations.append("Good match overall")
        elif overall >= 40:
            recommendations.append("Moderate match; discuss details first")
        return recommendations

    @staticmethod
    def _issues(factors: dict[str, dict[str, Any]]) -> list[str]:
        issues = [
            f"Low {name} compatibility"
            for name, factor in factors.items()
            if factor["score"] < 40
        ]
        if sum(1 for factor in factors.values() if factor["score"] < 50) >= 3:
            issues.append("Multiple compatibility concerns")
        return issues


class CompatibilityService:
    """Scores listing pairs, serving from the cache when it can.

    The cache is an optimization only: any failure reading or writing it
    is logged and the score is computed directly.
    """

    def __init__(
        self,
        session: AsyncSession,
        scorer: CompatibilityScorer | None = None,
        events: MatchingEventSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize CompatibilityService.

        Args:
            session: Async database session.
            scorer: Scoring function. Defaults to WeightedCompatibilityScorer.
            events: Sink for structured engine events.
            settings: Engine settings. Defaults to the global settings.
        """
        self._session = session
        self._scorer = scorer or WeightedCompatibilityScorer()
        self._events = events or LoggingEventSink()
        self._settings = settings or get_settings()
        self._cache = CompatibilityCacheRepository(session)
        self._listings = ListingRepository(session)
        self._reservations = ReservationRepository(session)

    async def score(
        self, source_id: int, target_id: int, now: datetime | None = None
    ) -> CompatibilityResult:
        """Score two listings.

        Args:
            source_id: One listing.
            target_id: The other listing.
            now: Reference time. Defaults to current UTC time.

        Returns:
            CompatibilityResult, identical whether or not it was cached.

        Raises:
            NotFoundError: If either listing or its reservation is missing.
        """
        stamp = now or utc_now()
        cached = await self._read_cache(source_id, target_id, stamp)
        if cached is not None:
            self._events.emit(
                "compatibility_cache_hit", source_id=source_id, target_id=target_id
            )
            return cached

        self._events.emit(
            "compatibility_cache_miss", source_id=source_id, target_id=target_id
        )
        first = await self._reservation_for(source_id)
        second = await self._reservation_for(target_id)
        result = self._scorer.score(first, second)
        await self._write_cache(source_id, target_id, result, stamp)
        return result

    async def invalidate(self, first_id: int, second_id: int) -> None:
        """Drop the cached score for a pair, if any."""
        try:
            async with self._cache_write(
                "compatibility_cache_invalidate",
                first_id=first_id,
                second_id=second_id,
            ):
                await self._cache.delete_pair(first_id, second_id)
        except (SQLAlchemyError, UnderlyingStoreError) as e:
            logger.warning(
                "Could not invalidate compatibility cache for %s/%s: %s",
                first_id,
                second_id,
                e,
            )

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete expired cache rows.

        Returns:
            Number of rows deleted.
        """
        removed = await self._cache.purge_expired(now)
        logger.info("Purged %d expired compatibility cache entries", removed)
        return removed

    async def _read_cache(
        self, source_id: int, target_id: int, now: datetime
    ) -> CompatibilityResult | None:
        try:
            entry = await self._cache.get_fresh(source_id, target_id, now)
        except SQLAlchemyError as e:
            logger.warning("Compatibility cache read failed: %s", e)
            return None
        if entry is None:
            return None
        return CompatibilityResult(score=entry.score, analysis=entry.analysis)

    async def _write_cache(
        self,
        source_id: int,
        target_id: int,
        result: CompatibilityResult,
        now: datetime,
    ) -> None:
        ttl = self._settings.compatibility_cache_ttl_seconds
        expires_at = now + timedelta(seconds=ttl)
        try:
            async with self._cache_write(
                "compatibility_cache_write",
                source_id=source_id,
                target_id=target_id,
            ):
                await self._cache.store(
                    source_id, target_id, result.score, result.analysis, expires_at
                )
        except (SQLAlchemyError, UnderlyingStoreError) as e:
            logger.warning(
                "Compatibility cache write failed for %s/%s: %s",
                source_id,
                target_id,
                e,
            )

    @asynccontextmanager
    async def _cache_write(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """Scope a cache mutation so it persists without disturbing callers.

        Inside a caller's unit of work the write runs in a savepoint and
        commits with the caller; otherwise it commits on its own.
        """
        if in_unit_of_work(self._session):
            async with self._session.begin_nested():
                yield
        else:
            async with unit_of_work(self._session, operation, **context):
                yield

    async def _reservation_for(self, listing_id: int) -> Reservation:
        listing = await self._listings.get_by_id(listing_id)
        if listing is None:
            raise NotFoundError("listing", listing_id)
        reservation = await self._reservations.get_by_id(listing.reservation_id)
        if reservation is None:
            raise NotFoundError("reservation", listing.reservation_id)
        return reservation

"""
Driver Matching Engine

Scores and ranks candidate drivers for a ride. Pure: the engine keeps no
driver state between calls, never mutates its inputs, and returns a new
ranked list each time.

Scoring (additive points, unclamped):
    inactive                      -> excluded entirely
    active baseline               +20
    available / busy              +30 / +5
    rating                        min(20, rating / 5 * 20)
    experience                    min(15, ln(total_rides + 1) * 5)
    upcoming rides / none         -min(15, count * 5) / +5
    schedule conflict             -30
    distance to pickup (km)       <5: +20, <10: +15, <20: +10, <50: +5, else 0

Ties are broken by driver id so the ranking is deterministic.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional, Sequence

from .fare_models import RideRequest, as_utc
from .geo import DriverLocation, haversine_km, km_to_miles

ACTIVE_BASELINE = 20.0
AVAILABLE_POINTS = 30.0
BUSY_POINTS = 5.0
MAX_RATING_POINTS = 20.0
MAX_EXPERIENCE_POINTS = 15.0
EXPERIENCE_LOG_WEIGHT = 5.0
POINTS_PER_UPCOMING_RIDE = 5.0
MAX_WORKLOAD_PENALTY = 15.0
NO_PENDING_RIDES_POINTS = 5.0
CONFLICT_PENALTY = 30.0

EXCELLENT_RATING = 4.5
GOOD_RATING = 4.0
EXPERIENCED_RIDES = 50

# (upper bound in km, bonus, reason prefix); half-open, checked in order
DISTANCE_BUCKETS: tuple[tuple[float, float, Optional[str]], ...] = (
    (5.0, 20.0, "Very close"),
    (10.0, 15.0, "Nearby"),
    (20.0, 10.0, "Within range"),
    (50.0, 5.0, None),
)


# ============================================================================
# TYPES
# ============================================================================

@dataclass(frozen=True)
class DriverCandidate:
    """One driver as seen in the driver pool snapshot."""
    id: str
    is_active: bool
    is_available: bool
    rating: float = 0.0
    total_rides: int = 0
    upcoming_bookings_count: int = 0
    has_conflict: bool = False
    current_location: Optional[DriverLocation] = None
    last_location_at: Optional[datetime] = None

    @property
    def location_timestamp(self) -> Optional[datetime]:
        if self.last_location_at is not None:
            return self.last_location_at
        if self.current_location is not None:
            return self.current_location.timestamp
        return None


@dataclass(frozen=True)
class RankedDriver:
    """A scored candidate. Produced once per ranking call."""
    candidate: DriverCandidate
    match_score: float
    distance_km: Optional[float] = None
    distance_miles: Optional[float] = None
    match_reasons: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.candidate.id

    def to_dict(self) -> dict:
        return {
            "driver_id": self.id,
            "match_score": round(self.match_score, 2),
            "distance_km": round(self.distance_km, 2) if self.distance_km is not None else None,
            "distance_miles": round(self.distance_miles, 2) if self.distance_miles is not None else None,
            "match_reasons": list(self.match_reasons),
            "warnings": list(self.warnings),
            "match_tier": classify_match(self.match_score).value,
        }


class MatchTier(str, Enum):
    BEST = "Best Match"
    GOOD = "Good Match"
    FAIR = "Fair Match"
    LOW = "Low Match"


@dataclass(frozen=True)
class MatchSummary:
    badge: MatchTier
    description: str


# ============================================================================
# SCORING
# ============================================================================

def _rating_value(rating) -> float:
    try:
        value = float(rating)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return value


def _usable_location(
    candidate: DriverCandidate,
    now: Optional[datetime],
    max_location_age: Optional[timedelta],
) -> Optional[DriverLocation]:
    location = candidate.current_location
    if location is None:
        return None
    if now is not None and max_location_age is not None:
        stamp = candidate.location_timestamp
        if stamp is not None and as_utc(now) - as_utc(stamp) > max_location_age:
            return None
    return location


def score_driver(
    candidate: DriverCandidate,
    request: Optional[RideRequest] = None,
    now: Optional[datetime] = None,
    max_location_age: Optional[timedelta] = None,
) -> Optional[RankedDriver]:
    """
    Score one candidate.

    Returns:
        RankedDriver, or None for inactive drivers (they are never ranked)
    """
    if not candidate.is_active:
        return None

    score = ACTIVE_BASELINE
    reasons: list[str] = []
    warnings: list[str] = []

    if candidate.is_available:
        score += AVAILABLE_POINTS
        reasons.append("Currently available")
    else:
        score += BUSY_POINTS
        warnings.append("Driver marked as busy")

    rating = _rating_value(candidate.rating)
    score += min(MAX_RATING_POINTS, (rating / 5) * MAX_RATING_POINTS)
    if rating >= EXCELLENT_RATING:
        reasons.append(f"Excellent rating ({rating:g}/5)")
    elif rating >= GOOD_RATING:
        reasons.append(f"Good rating ({rating:g}/5)")

    rides = max(candidate.total_rides or 0, 0)
    score += min(MAX_EXPERIENCE_POINTS, math.log(rides + 1) * EXPERIENCE_LOG_WEIGHT)
    if rides >= EXPERIENCED_RIDES:
        reasons.append(f"Experienced ({rides} rides)")

    upcoming = candidate.upcoming_bookings_count or 0
    if upcoming > 0:
        score -= min(MAX_WORKLOAD_PENALTY, upcoming * POINTS_PER_UPCOMING_RIDE)
        warnings.append(f"{upcoming} upcoming ride{'s' if upcoming > 1 else ''}")
    else:
        score += NO_PENDING_RIDES_POINTS
        reasons.append("No pending rides")

    if candidate.has_conflict:
        score -= CONFLICT_PENALTY
        warnings.append("Schedule conflict detected")

    distance_km: Optional[float] = None
    distance_miles: Optional[float] = None
    pickup = request.pickup if request is not None else None
    location = _usable_location(candidate, now, max_location_age) if pickup is not None else None

    if pickup is not None and location is not None:
        distance_km = haversine_km(location.lat, location.lng, pickup.lat, pickup.lng)
        distance_miles = km_to_miles(distance_km)

        for upper_km, bonus, label in DISTANCE_BUCKETS:
            if distance_km < upper_km:
                score += bonus
                if label:
                    reasons.append(f"{label} ({distance_miles:.1f} mi)")
                break
        else:
            warnings.append(f"Far away ({distance_miles:.1f} mi)")

    return RankedDriver(
        candidate=candidate,
        match_score=score,
        distance_km=distance_km,
        distance_miles=distance_miles,
        match_reasons=tuple(reasons),
        warnings=tuple(warnings),
    )


def rank_drivers(
    candidates: Iterable[DriverCandidate],
    request: Optional[RideRequest] = None,
    now: Optional[datetime] = None,
    max_location_age: Optional[timedelta] = None,
) -> list[RankedDriver]:
    """
    Rank drivers best-first.

    Args:
        candidates: Snapshot of the driver pool
        request: Ride to match against; without one, distance is not scored
        now, max_location_age: When both are given, GPS pings older than
            max_location_age are ignored for distance scoring

    Returns:
        New list sorted by match_score descending, ties by driver id.
        Inactive drivers are not in it.
    """
    ranked = []
    for candidate in candidates:
        result = score_driver(candidate, request, now, max_location_age)
        if result is not None:
            ranked.append(result)
    return sorted(ranked, key=lambda r: (-r.match_score, r.id))


def best_driver(
    candidates: Iterable[DriverCandidate],
    request: Optional[RideRequest] = None,
    now: Optional[datetime] = None,
    max_location_age: Optional[timedelta] = None,
) -> Optional[RankedDriver]:
    ranked = rank_drivers(candidates, request, now, max_location_age)
    return ranked[0] if ranked else None


# ============================================================================
# PRESENTATION
# ============================================================================

def classify_match(score: float) -> MatchTier:
    if score >= 80:
        return MatchTier.BEST
    if score >= 60:
        return MatchTier.GOOD
    if score >= 40:
        return MatchTier.FAIR
    return MatchTier.LOW


def describe_match(driver: RankedDriver) -> MatchSummary:
    """Badge plus a one-line description: reasons, or warnings for low matches."""
    tier = classify_match(driver.match_score)
    lines: Sequence[str] = driver.warnings if tier == MatchTier.LOW else driver.match_reasons
    return MatchSummary(badge=tier, description=" • ".join(lines))

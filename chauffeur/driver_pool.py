"""
Driver Pool Snapshot

Turns the driver-state collaborator's data into DriverCandidate values for
the matching engine. The pool is read-only here: availability and GPS
updates are owned by the driver apps, this module only reads a snapshot.

Functions:
    parse_snapshot - Validate raw snapshot rows (camelCase JSON) into candidates
    build_candidates - Derive upcoming-ride counts and schedule conflicts
                       from the booking list, the way the dispatch board does
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from pydantic import Field, ValidationError, field_validator

from .driver_matching import DriverCandidate
from .fare_models import as_utc
from .geo import parse_location
from .pricing_schemas import CamelModel

logger = logging.getLogger(__name__)

DEFAULT_CONFLICT_WINDOW = timedelta(hours=2)
UPCOMING_STATUSES = frozenset({"pending", "confirmed", "in_progress"})


class DriverSnapshotPayload(CamelModel):
    """
    One driver row from the pool snapshot.

    currentLocation may be a JSON string or object ``{lat, lng, timestamp}``;
    anything unparseable is dropped to None rather than rejecting the row.
    """

    id: str
    is_active: bool = True
    is_available: bool = False
    rating: float = 0.0
    total_rides: int = Field(default=0, ge=0)
    upcoming_bookings_count: int = Field(default=0, ge=0)
    has_conflict: bool = False
    current_location: Any = None
    last_location_timestamp: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("rating", mode="before")
    @classmethod
    def parse_rating(cls, v: Any) -> float:
        """Ratings arrive as strings like "4.80"; junk counts as 0."""
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        if value != value:  # NaN
            return 0.0
        return min(max(value, 0.0), 5.0)

    @field_validator("current_location", mode="before")
    @classmethod
    def parse_current_location(cls, v: Any) -> Any:
        return parse_location(v)

    def to_candidate(self) -> DriverCandidate:
        return DriverCandidate(
            id=self.id,
            is_active=self.is_active,
            is_available=self.is_available,
            rating=self.rating,
            total_rides=self.total_rides,
            upcoming_bookings_count=self.upcoming_bookings_count,
            has_conflict=self.has_conflict,
            current_location=self.current_location,
            last_location_at=self.last_location_timestamp,
        )


def parse_snapshot(rows: Iterable[dict]) -> list[DriverCandidate]:
    """
    Validate raw snapshot rows into candidates.

    Rows that fail validation (no id, negative counts) are skipped with a
    warning so one bad driver record does not block dispatch.
    """
    candidates = []
    for row in rows:
        try:
            candidates.append(DriverSnapshotPayload.model_validate(row).to_candidate())
        except ValidationError as e:
            row_id = row.get("id") if isinstance(row, dict) else None
            logger.warning(f"Skipping malformed driver snapshot row {row_id!r}: {e.error_count()} errors")
    return candidates


# ============================================================================
# SNAPSHOT ENRICHMENT
# ============================================================================

@dataclass(frozen=True)
class BookingSlot:
    """A booking already on a driver's schedule."""
    booking_id: str
    driver_id: Optional[str]
    scheduled_at: datetime
    status: str


def build_candidates(
    drivers: Iterable[DriverCandidate],
    bookings: Iterable[BookingSlot],
    now: datetime,
    requested_time: Optional[datetime] = None,
    conflict_window: timedelta = DEFAULT_CONFLICT_WINDOW,
    exclude_booking_id: Optional[str] = None,
) -> list[DriverCandidate]:
    """
    Fill in upcoming_bookings_count and has_conflict from the booking list.

    A booking counts as upcoming when it is pending, confirmed or in progress
    and scheduled at or after now. It conflicts when it starts within
    conflict_window of requested_time (strictly less than the window).

    Args:
        drivers: Candidates from the snapshot (their own counts are replaced)
        bookings: All bookings that may be on a driver's schedule
        now: Current time
        requested_time: Pickup time of the ride being dispatched
        conflict_window: Minimum spacing between two rides of one driver
        exclude_booking_id: The ride being dispatched, so a reassignment does
            not conflict with itself

    Returns:
        New list of candidates, same order as drivers
    """
    now = as_utc(now)
    upcoming: dict[str, list[BookingSlot]] = {}
    for booking in bookings:
        if booking.driver_id is None or booking.booking_id == exclude_booking_id:
            continue
        if booking.status not in UPCOMING_STATUSES:
            continue
        if as_utc(booking.scheduled_at) < now:
            continue
        upcoming.setdefault(booking.driver_id, []).append(booking)

    requested = as_utc(requested_time) if requested_time is not None else None

    enriched = []
    for driver in drivers:
        slots = upcoming.get(driver.id, [])
        has_conflict = False
        if requested is not None:
            has_conflict = any(
                abs(as_utc(slot.scheduled_at) - requested) < conflict_window for slot in slots
            )
        enriched.append(
            replace(driver, upcoming_bookings_count=len(slots), has_conflict=has_conflict)
        )
    return enriched

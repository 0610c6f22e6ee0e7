"""
Fare Value Types

Immutable value objects shared by the pricing rule store and the fare engine.
These types carry no persistence concerns; the ORM rows in
``dispatch_models`` convert into them.

Types:
    - PricingRule: one rule per (vehicle class, service type) and effective range
    - RideRequest: what the passenger asked for
    - FareBreakdown: ordered line items plus total, created fresh per computation

All money values are Decimal. Never build them from binary floats directly;
use ``to_decimal`` which goes through ``str`` the same way the booking
snapshot code does.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


# ============================================================================
# ENUMS
# ============================================================================

class VehicleClass(str, Enum):
    """Vehicle classes that carry their own pricing rules."""
    BUSINESS_SEDAN = "business_sedan"
    BUSINESS_SUV = "business_suv"
    FIRST_CLASS_SEDAN = "first_class_sedan"
    FIRST_CLASS_SUV = "first_class_suv"
    BUSINESS_VAN = "business_van"


class ServiceType(str, Enum):
    """Point-to-point transfer or by-the-hour charter."""
    TRANSFER = "transfer"
    HOURLY = "hourly"


class LineItemLabel(str, Enum):
    """Fare line item labels, in presentation order."""
    BASE = "base"
    DISTANCE = "distance"
    TIME = "time"
    AIRPORT = "airport"
    MEET_AND_GREET = "meet_and_greet"
    SURGE = "surge"
    GRATUITY = "gratuity"
    OVERTIME = "overtime"


# ============================================================================
# MONEY HELPERS
# ============================================================================

def to_decimal(value) -> Decimal:
    """Convert int/str/float/Decimal to Decimal without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_hhmm(value: str) -> int:
    """
    Parse "HH:MM" into minutes since midnight.

    "24:00" is accepted as the end of the day (1440).

    Raises:
        ValueError: if the string is not a valid clock time
    """
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    hours, minutes = int(parts[0]), int(parts[1])
    if hours == 24 and minutes == 0:
        return 24 * 60
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return hours * 60 + minutes


# ============================================================================
# PRICING RULE
# ============================================================================

@dataclass(frozen=True)
class AirportFee:
    code: str
    fee: Decimal
    waiver_minutes: Optional[int] = None


@dataclass(frozen=True)
class MeetAndGreet:
    enabled: bool = False
    charge: Decimal = ZERO


@dataclass(frozen=True)
class SurgeWindow:
    """
    Recurring weekly surge interval.

    day_of_week follows the booking system convention: 0 = Sunday ... 6 = Saturday.
    The interval is half-open: [start_time, end_time).
    """
    day_of_week: int
    start_time: str
    end_time: str
    multiplier: Decimal

    @property
    def start_minute(self) -> int:
        return parse_hhmm(self.start_time)

    @property
    def end_minute(self) -> int:
        return parse_hhmm(self.end_time)

    def contains(self, day_of_week: int, minute_of_day: int) -> bool:
        return (
            self.day_of_week == day_of_week
            and self.start_minute <= minute_of_day < self.end_minute
        )


@dataclass(frozen=True)
class DistanceTier:
    """A priced slice of the trip, e.g. "first 20 miles at $0"."""
    rate_per_mile: Decimal
    miles: Optional[Decimal] = None
    is_remaining: bool = False


@dataclass(frozen=True)
class PricingRule:
    """
    Pricing configuration for one (vehicle class, service type) pair.

    Transfer rules need base_rate plus per_mile_rate or distance_tiers.
    Hourly rules need hourly_rate and minimum_hours.
    A missing effective bound is open-ended.
    """
    vehicle_class: VehicleClass
    service_type: ServiceType
    id: Optional[str] = None
    base_rate: Optional[Decimal] = None
    per_mile_rate: Optional[Decimal] = None
    hourly_rate: Optional[Decimal] = None
    minimum_hours: Optional[int] = None
    minimum_fare: Optional[Decimal] = None
    gratuity_percent: Optional[Decimal] = None
    overtime_rate: Optional[Decimal] = None
    airport_fees: tuple[AirportFee, ...] = ()
    meet_and_greet: MeetAndGreet = field(default_factory=MeetAndGreet)
    surge_windows: tuple[SurgeWindow, ...] = ()
    distance_tiers: tuple[DistanceTier, ...] = ()
    effective_start: Optional[datetime] = None
    effective_end: Optional[datetime] = None
    is_active: bool = True

    def covers(self, at_time: datetime) -> bool:
        """True if at_time falls inside [effective_start, effective_end)."""
        at_time = as_utc(at_time)
        if self.effective_start is not None and at_time < as_utc(self.effective_start):
            return False
        if self.effective_end is not None and at_time >= as_utc(self.effective_end):
            return False
        return True

    def find_airport_fee(self, code: Optional[str]) -> Optional[AirportFee]:
        if not code:
            return None
        wanted = code.strip().upper()
        for entry in self.airport_fees:
            if entry.code.strip().upper() == wanted:
                return entry
        return None


# ============================================================================
# RIDE REQUEST
# ============================================================================

@dataclass(frozen=True)
class Coordinates:
    """Decimal-degree latitude/longitude."""
    lat: float
    lng: float


@dataclass(frozen=True)
class RideRequest:
    """
    A priced or dispatchable ride.

    scheduled_at must be timezone-aware; surge windows are matched against
    its local wall-clock time.
    """
    service_type: ServiceType
    vehicle_class: VehicleClass
    scheduled_at: datetime
    id: Optional[str] = None
    pickup: Optional[Coordinates] = None
    destination: Optional[Coordinates] = None
    estimated_distance_miles: Optional[Decimal] = None
    requested_hours: Optional[Decimal] = None
    pickup_airport_code: Optional[str] = None
    dropoff_airport_code: Optional[str] = None
    airport_wait_minutes: Optional[int] = None
    meet_and_greet_requested: bool = False


# ============================================================================
# FARE BREAKDOWN
# ============================================================================

@dataclass(frozen=True)
class FareLineItem:
    label: LineItemLabel
    amount: Decimal

    def to_dict(self) -> dict:
        return {"label": self.label.value, "amount": f"{self.amount:.2f}"}


@dataclass(frozen=True)
class FareBreakdown:
    """
    Result of a fare computation.

    total always equals the sum of line_items. unpriced_miles is non-zero
    only when the distance ran past every configured tier with no
    "remaining" tier to absorb it; the fare is still returned, flagged
    in warnings for operator review.
    """
    service_type: ServiceType
    vehicle_class: VehicleClass
    line_items: tuple[FareLineItem, ...]
    total: Decimal
    rule_id: Optional[str] = None
    surge_multiplier: Decimal = Decimal("1")
    billed_hours: Optional[Decimal] = None
    unpriced_miles: Decimal = ZERO
    warnings: tuple[str, ...] = ()

    def amount_for(self, label: LineItemLabel) -> Decimal:
        """Amount of a line item, ZERO if absent."""
        for item in self.line_items:
            if item.label == label:
                return item.amount
        return ZERO

    @property
    def total_before_gratuity(self) -> Decimal:
        return self.total - self.amount_for(LineItemLabel.GRATUITY)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization (two-decimal strings)."""
        return {
            "service_type": self.service_type.value,
            "vehicle_class": self.vehicle_class.value,
            "rule_id": self.rule_id,
            "line_items": [item.to_dict() for item in self.line_items],
            "total": f"{self.total:.2f}",
            "surge_multiplier": str(self.surge_multiplier),
            "billed_hours": str(self.billed_hours) if self.billed_hours is not None else None,
            "unpriced_miles": str(self.unpriced_miles),
            "warnings": list(self.warnings),
        }

"""
Pricing Request/Config Schemas

Pydantic models for the data that crosses into the fare engine from the
booking service: admin-edited pricing rules and passenger ride requests.
Both accept snake_case or camelCase keys.

Validation here mirrors the admin form rules (HH:MM surge times, 1x-5x
multipliers, remaining tier last, per-service required fields). The fare
engine re-checks the structural parts itself, so rules that bypass these
schemas still fail with InvalidPricingRule.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .fare_models import (
    AirportFee,
    Coordinates,
    DistanceTier,
    MeetAndGreet,
    PricingRule,
    RideRequest,
    ServiceType,
    SurgeWindow,
    VehicleClass,
    parse_hhmm,
)
from .pricing_rules import MAX_SURGE_MULTIPLIER

HHMM_PATTERN = r"^(([0-1]?[0-9]|2[0-3]):[0-5][0-9]|24:00)$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# PRICING RULE PAYLOADS
# ============================================================================

class AirportFeePayload(CamelModel):
    airport_code: str = Field(..., min_length=3, max_length=10)
    fee: Decimal = Field(..., ge=0)
    waiver_minutes: Optional[int] = Field(default=None, ge=0)


class MeetAndGreetPayload(CamelModel):
    enabled: bool = False
    charge: Decimal = Field(default=Decimal("0"), ge=0)


class SurgeWindowPayload(CamelModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: str = Field(..., pattern=HHMM_PATTERN)
    end_time: str = Field(..., pattern=HHMM_PATTERN)
    multiplier: Decimal = Field(..., ge=1, le=MAX_SURGE_MULTIPLIER)

    @model_validator(mode="after")
    def check_order(self) -> "SurgeWindowPayload":
        start = parse_hhmm(self.start_time)
        end = parse_hhmm(self.end_time)
        if start >= end:
            raise ValueError("start_time must be before end_time")
        return self


class DistanceTierPayload(CamelModel):
    miles: Optional[Decimal] = Field(default=None, ge=0)
    rate_per_mile: Decimal = Field(..., ge=0)
    is_remaining: bool = False

    @model_validator(mode="after")
    def check_miles(self) -> "DistanceTierPayload":
        if not self.is_remaining and self.miles is None:
            raise ValueError("miles is required unless the tier covers the remaining distance")
        return self


class PricingRulePayload(CamelModel):
    """Admin-submitted pricing rule."""

    id: Optional[str] = None
    vehicle_class: VehicleClass
    service_type: ServiceType

    base_rate: Optional[Decimal] = Field(default=None, ge=0)
    per_mile_rate: Optional[Decimal] = Field(default=None, ge=0)
    hourly_rate: Optional[Decimal] = Field(default=None, ge=0)
    minimum_hours: Optional[int] = Field(default=None, ge=0)
    minimum_fare: Optional[Decimal] = Field(default=None, ge=0)
    gratuity_percent: Optional[Decimal] = Field(default=Decimal("20.00"), ge=0, le=100)
    overtime_rate: Optional[Decimal] = Field(default=None, ge=0)

    airport_fees: list[AirportFeePayload] = Field(default_factory=list)
    meet_and_greet: MeetAndGreetPayload = Field(default_factory=MeetAndGreetPayload)
    surge_windows: list[SurgeWindowPayload] = Field(default_factory=list)
    distance_tiers: list[DistanceTierPayload] = Field(default_factory=list)

    effective_start: Optional[datetime] = None
    effective_end: Optional[datetime] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_service_requirements(self) -> "PricingRulePayload":
        if self.service_type == ServiceType.TRANSFER:
            if self.base_rate is None or (self.per_mile_rate is None and not self.distance_tiers):
                raise ValueError(
                    "Transfer service requires baseRate and either perMileRate or distance tiers"
                )
        if self.service_type == ServiceType.HOURLY:
            if self.hourly_rate is None or self.minimum_hours is None:
                raise ValueError("Hourly service type requires hourlyRate and minimumHours")
        return self

    @model_validator(mode="after")
    def check_remaining_tier(self) -> "PricingRulePayload":
        remaining = [i for i, tier in enumerate(self.distance_tiers) if tier.is_remaining]
        if len(remaining) > 1 or (remaining and remaining[0] != len(self.distance_tiers) - 1):
            raise ValueError("Remaining tier must be the last tier")
        return self

    @model_validator(mode="after")
    def check_effective_range(self) -> "PricingRulePayload":
        if self.effective_start and self.effective_end:
            start = _aware(self.effective_start)
            end = _aware(self.effective_end)
            if start >= end:
                raise ValueError("effectiveStart must be before effectiveEnd")
        return self

    def to_rule(self) -> PricingRule:
        return PricingRule(
            id=self.id,
            vehicle_class=self.vehicle_class,
            service_type=self.service_type,
            base_rate=self.base_rate,
            per_mile_rate=self.per_mile_rate,
            hourly_rate=self.hourly_rate,
            minimum_hours=self.minimum_hours,
            minimum_fare=self.minimum_fare,
            gratuity_percent=self.gratuity_percent,
            overtime_rate=self.overtime_rate,
            airport_fees=tuple(
                AirportFee(code=f.airport_code, fee=f.fee, waiver_minutes=f.waiver_minutes)
                for f in self.airport_fees
            ),
            meet_and_greet=MeetAndGreet(
                enabled=self.meet_and_greet.enabled,
                charge=self.meet_and_greet.charge,
            ),
            surge_windows=tuple(
                SurgeWindow(
                    day_of_week=w.day_of_week,
                    start_time=w.start_time,
                    end_time=w.end_time,
                    multiplier=w.multiplier,
                )
                for w in self.surge_windows
            ),
            distance_tiers=tuple(
                DistanceTier(miles=t.miles, rate_per_mile=t.rate_per_mile, is_remaining=t.is_remaining)
                for t in self.distance_tiers
            ),
            effective_start=self.effective_start,
            effective_end=self.effective_end,
            is_active=self.is_active,
        )


# ============================================================================
# RIDE REQUEST PAYLOAD
# ============================================================================

class CoordinatesPayload(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class RideRequestPayload(CamelModel):
    """Ride request as submitted by the booking form."""

    id: Optional[str] = None
    service_type: ServiceType
    vehicle_class: VehicleClass
    scheduled_date_time: datetime = Field(..., description="Pickup date and time (ISO 8601)")
    pickup: Optional[CoordinatesPayload] = None
    destination: Optional[CoordinatesPayload] = None
    estimated_distance_miles: Optional[Decimal] = Field(default=None, ge=0)
    requested_hours: Optional[Decimal] = Field(default=None, gt=0)
    pickup_airport_code: Optional[str] = Field(default=None, max_length=10)
    dropoff_airport_code: Optional[str] = Field(default=None, max_length=10)
    airport_wait_minutes: Optional[int] = Field(default=None, ge=0)
    meet_and_greet_requested: bool = False

    @field_validator("scheduled_date_time")
    @classmethod
    def validate_scheduled_time(cls, v: datetime) -> datetime:
        """Ensure the scheduled time has timezone info."""
        return _aware(v)

    @model_validator(mode="after")
    def check_service_inputs(self) -> "RideRequestPayload":
        if self.service_type == ServiceType.TRANSFER and self.estimated_distance_miles is None:
            raise ValueError("estimatedDistanceMiles is required for transfer service")
        if self.service_type == ServiceType.HOURLY and self.requested_hours is None:
            raise ValueError("requestedHours is required for hourly service")
        return self

    def to_request(self) -> RideRequest:
        return RideRequest(
            id=self.id,
            service_type=self.service_type,
            vehicle_class=self.vehicle_class,
            scheduled_at=self.scheduled_date_time,
            pickup=Coordinates(self.pickup.lat, self.pickup.lng) if self.pickup else None,
            destination=(
                Coordinates(self.destination.lat, self.destination.lng) if self.destination else None
            ),
            estimated_distance_miles=self.estimated_distance_miles,
            requested_hours=self.requested_hours,
            pickup_airport_code=self.pickup_airport_code,
            dropoff_airport_code=self.dropoff_airport_code,
            airport_wait_minutes=self.airport_wait_minutes,
            meet_and_greet_requested=self.meet_and_greet_requested,
        )


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

"""
Dispatch Persistence Models

SQLAlchemy models backing the pricing rule store and the assignment
coordinator. Domain code never touches these rows directly; stores convert
them to the frozen values in fare_models / assignment.

Tables:
    - PricingRuleRecord: admin-configured pricing rules (JSON for nested parts)
    - RideAssignmentHead: one row per ride, the versioned "current assignment" pointer
    - RideAssignmentRecord: every assignment ever made, superseded ones included

Concurrency:
    RideAssignmentHead.version is the compare-and-set token. Writers update
    the head with ``WHERE version = :expected``; zero rows updated means the
    writer lost the race.
"""

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .assignment import Assignment
from .core.db import Base
from .errors import InvalidPricingRule
from .fare_models import (
    AirportFee,
    DistanceTier,
    MeetAndGreet,
    PricingRule,
    ServiceType,
    SurgeWindow,
    VehicleClass,
    as_utc,
    to_decimal,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


def _opt_decimal(value) -> Optional[Decimal]:
    return None if value is None else to_decimal(value)


# ============================================================================
# PRICING RULES
# ============================================================================

class PricingRuleRecord(Base):
    """
    Pricing rule row.

    Several rows may exist for one (vehicle_class, service_type) as long as
    their effective ranges do not overlap; overlaps surface as AmbiguousRule
    at lookup time.
    """
    __tablename__ = "pricing_rules"
    __table_args__ = (
        Index("ix_pricing_rules_vehicle_service", "vehicle_class", "service_type"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    vehicle_class: Mapped[VehicleClass] = mapped_column(
        SAEnum(VehicleClass, name="vehicle_class", native_enum=False, values_callable=_enum_values),
        nullable=False,
    )
    service_type: Mapped[ServiceType] = mapped_column(
        SAEnum(ServiceType, name="service_type", native_enum=False, values_callable=_enum_values),
        nullable=False,
    )

    # Transfer pricing
    base_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    per_mile_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Hourly pricing
    hourly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    minimum_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    overtime_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Common
    minimum_fare: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    gratuity_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True, default=Decimal("20.00")
    )

    # Format: [{"airportCode": "DFW", "fee": 10, "waiverMinutes": 30}]
    airport_fees: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # Format: {"enabled": true, "charge": 25}
    meet_and_greet: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=lambda: {"enabled": False, "charge": 0}
    )
    # Format: [{"dayOfWeek": 5, "startTime": "17:00", "endTime": "20:00", "multiplier": 1.5}]
    surge_windows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # Format: [{"miles": 20, "ratePerMile": 0}, {"isRemaining": true, "ratePerMile": 3}]
    distance_tiers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    effective_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    effective_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def to_rule(self) -> PricingRule:
        """
        Convert to the engine's PricingRule.

        Raises:
            InvalidPricingRule: if the JSON columns are malformed
        """
        try:
            meet = self.meet_and_greet or {}
            return PricingRule(
                id=self.id,
                vehicle_class=VehicleClass(self.vehicle_class),
                service_type=ServiceType(self.service_type),
                base_rate=_opt_decimal(self.base_rate),
                per_mile_rate=_opt_decimal(self.per_mile_rate),
                hourly_rate=_opt_decimal(self.hourly_rate),
                minimum_hours=self.minimum_hours,
                minimum_fare=_opt_decimal(self.minimum_fare),
                gratuity_percent=_opt_decimal(self.gratuity_percent),
                overtime_rate=_opt_decimal(self.overtime_rate),
                airport_fees=tuple(
                    AirportFee(
                        code=str(entry["airportCode"]),
                        fee=to_decimal(entry["fee"]),
                        waiver_minutes=entry.get("waiverMinutes"),
                    )
                    for entry in self.airport_fees or []
                ),
                meet_and_greet=MeetAndGreet(
                    enabled=bool(meet.get("enabled", False)),
                    charge=to_decimal(meet.get("charge", 0)),
                ),
                surge_windows=tuple(
                    SurgeWindow(
                        day_of_week=int(entry["dayOfWeek"]),
                        start_time=str(entry["startTime"]),
                        end_time=str(entry["endTime"]),
                        multiplier=to_decimal(entry["multiplier"]),
                    )
                    for entry in self.surge_windows or []
                ),
                distance_tiers=tuple(
                    DistanceTier(
                        miles=_opt_decimal(entry.get("miles")),
                        rate_per_mile=to_decimal(entry["ratePerMile"]),
                        is_remaining=bool(entry.get("isRemaining", False)),
                    )
                    for entry in self.distance_tiers or []
                ),
                effective_start=self.effective_start,
                effective_end=self.effective_end,
                is_active=self.is_active,
            )
        except (KeyError, TypeError, ValueError, InvalidOperation, AttributeError) as e:
            raise InvalidPricingRule(
                f"Stored pricing rule {self.id} is malformed: {e}",
                details={"rule_id": self.id},
            ) from e

    @classmethod
    def from_rule(cls, rule: PricingRule) -> "PricingRuleRecord":
        record = cls(
            vehicle_class=rule.vehicle_class,
            service_type=rule.service_type,
            base_rate=rule.base_rate,
            per_mile_rate=rule.per_mile_rate,
            hourly_rate=rule.hourly_rate,
            minimum_hours=rule.minimum_hours,
            overtime_rate=rule.overtime_rate,
            minimum_fare=rule.minimum_fare,
            gratuity_percent=rule.gratuity_percent,
            airport_fees=[
                {"airportCode": f.code, "fee": str(f.fee), "waiverMinutes": f.waiver_minutes}
                for f in rule.airport_fees
            ],
            meet_and_greet={
                "enabled": rule.meet_and_greet.enabled,
                "charge": str(rule.meet_and_greet.charge),
            },
            surge_windows=[
                {
                    "dayOfWeek": w.day_of_week,
                    "startTime": w.start_time,
                    "endTime": w.end_time,
                    "multiplier": str(w.multiplier),
                }
                for w in rule.surge_windows
            ],
            distance_tiers=[
                {
                    "miles": str(t.miles) if t.miles is not None else None,
                    "ratePerMile": str(t.rate_per_mile),
                    "isRemaining": t.is_remaining,
                }
                for t in rule.distance_tiers
            ],
            effective_start=rule.effective_start,
            effective_end=rule.effective_end,
            is_active=rule.is_active,
        )
        if rule.id:
            record.id = rule.id
        return record


# ============================================================================
# ASSIGNMENTS
# ============================================================================

class RideAssignmentHead(Base):
    """Versioned pointer to a ride's active assignment."""
    __tablename__ = "ride_assignment_heads"

    ride_request_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_assignment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    current_driver_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class RideAssignmentRecord(Base):
    """One assignment, active or superseded. Rows are never updated except superseded_at."""
    __tablename__ = "ride_assignments"
    __table_args__ = (
        UniqueConstraint("ride_request_id", "version", name="uq_ride_assignment_version"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    ride_request_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    driver_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    supersedes_driver_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    driver_payment: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    superseded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_assignment(self) -> Assignment:
        return Assignment(
            ride_request_id=self.ride_request_id,
            driver_id=self.driver_id,
            assigned_at=as_utc(self.assigned_at),
            version=self.version,
            supersedes_driver_id=self.supersedes_driver_id,
            driver_payment=_opt_decimal(self.driver_payment),
        )

"""
Dispatch Service

Wires the pricing rule store, the matching engine and the assignment
coordinator together with the configured service settings.

Usage:
    service = DispatchService(rule_store, assignment_store)
    fare = await service.quote(request)
    candidates = service.candidates_for_ride(drivers, bookings, now, request.scheduled_at)
    ranked = service.rank_for_ride(candidates, request)
    result = await service.assign(ride_id, ranked[0].id, fare_total=fare.total)
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Protocol
from zoneinfo import ZoneInfo

from .assignment import (
    AssignmentCoordinator,
    AssignmentResult,
    AssignmentStore,
)
from .core.config import Settings, get_settings
from .driver_matching import DriverCandidate, RankedDriver, rank_drivers
from .driver_pool import BookingSlot, build_candidates
from .fare_engine import (
    DiscountedFare,
    PassengerDiscount,
    apply_discount,
    calculate_driver_payment,
    compute_fare,
)
from .fare_models import FareBreakdown, PricingRule, RideRequest, ServiceType, VehicleClass

logger = logging.getLogger(__name__)


class PricingRuleStore(Protocol):
    async def get_active_rule(
        self,
        vehicle_class: VehicleClass,
        service_type: ServiceType,
        at_time: datetime,
    ) -> PricingRule: ...


class DispatchService:
    """Quote, rank and assign for one booking service deployment."""

    def __init__(
        self,
        rule_store: PricingRuleStore,
        assignment_store: AssignmentStore,
        settings: Optional[Settings] = None,
    ):
        self.rule_store = rule_store
        self.settings = settings or get_settings()
        self.coordinator = AssignmentCoordinator(assignment_store)
        self.timezone = ZoneInfo(self.settings.service_timezone)

    async def quote(self, request: RideRequest) -> FareBreakdown:
        """
        Price a ride with the rule active at its scheduled time.

        Raises:
            NoApplicableRule, AmbiguousRule, InvalidPricingRule, InvalidRideRequest
        """
        rule = await self.rule_store.get_active_rule(
            request.vehicle_class, request.service_type, request.scheduled_at
        )
        fare = compute_fare(request, rule, tz=self.timezone)
        logger.info(
            f"Quoted {request.vehicle_class.value}/{request.service_type.value} ride "
            f"{request.id or '(new)'} at {fare.total} under rule {rule.id}"
        )
        return fare

    async def quote_with_discount(
        self,
        request: RideRequest,
        discount: Optional[PassengerDiscount],
    ) -> DiscountedFare:
        return apply_discount(await self.quote(request), discount)

    def candidates_for_ride(
        self,
        drivers: Iterable[DriverCandidate],
        bookings: Iterable[BookingSlot],
        now: datetime,
        requested_time: Optional[datetime] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> list[DriverCandidate]:
        """build_candidates with the configured schedule conflict window."""
        return build_candidates(
            drivers,
            bookings,
            now,
            requested_time=requested_time,
            conflict_window=self.settings.conflict_window,
            exclude_booking_id=exclude_booking_id,
        )

    def rank_for_ride(
        self,
        candidates: Iterable[DriverCandidate],
        request: Optional[RideRequest] = None,
        now: Optional[datetime] = None,
    ) -> list[RankedDriver]:
        max_age = self.settings.location_max_age if now is not None else None
        return rank_drivers(candidates, request, now=now, max_location_age=max_age)

    def driver_payment(self, fare_total: Optional[Decimal]) -> Optional[Decimal]:
        if fare_total is None:
            return None
        return calculate_driver_payment(fare_total, self.settings.driver_commission_percent)

    async def assign(
        self,
        ride_request_id: str,
        driver_id: str,
        expected_version: Optional[int] = None,
        fare_total: Optional[Decimal] = None,
    ) -> AssignmentResult:
        return await self.coordinator.assign(
            ride_request_id,
            driver_id,
            expected_version=expected_version,
            driver_payment=self.driver_payment(fare_total),
        )

    async def assign_best(
        self,
        ride_request_id: str,
        candidates: Iterable[DriverCandidate],
        request: Optional[RideRequest] = None,
        now: Optional[datetime] = None,
        fare_total: Optional[Decimal] = None,
    ) -> Optional[AssignmentResult]:
        """
        Assign the top-ranked available driver.

        Returns None when no active driver is in the snapshot. Conflicts are
        retried (re-reading each time) only while the ride is still unassigned.
        """
        ranked = self.rank_for_ride(candidates, request, now)
        if not ranked:
            logger.warning(f"No active drivers to assign for ride {ride_request_id}")
            return None

        top = ranked[0]
        return await self.coordinator.assign_with_retry(
            ride_request_id,
            top.id,
            max_attempts=self.settings.assignment_max_attempts,
            driver_payment=self.driver_payment(fare_total),
        )

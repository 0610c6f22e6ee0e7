"""
Tests for dispatch_service, core.config and core.responses.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from dataclasses import replace

from chauffeur.assignment import Assignment, AssignmentConflict, InMemoryAssignmentStore
from chauffeur.core.config import Settings
from chauffeur.core.responses import (
    ApiResponse,
    ErrorCodes,
    assignment_response,
    pricing_error_response,
)
from chauffeur.dispatch_service import DispatchService
from chauffeur.driver_matching import DriverCandidate
from chauffeur.driver_pool import BookingSlot
from chauffeur.errors import AmbiguousRule, InvalidPricingRule, InvalidRideRequest, NoApplicableRule
from chauffeur.fare_engine import DiscountType, PassengerDiscount
from chauffeur.fare_models import Coordinates, LineItemLabel, SurgeWindow, VehicleClass
from chauffeur.geo import DriverLocation
from chauffeur.pricing_rules import InMemoryPricingRuleStore

NOW = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
DALLAS = Coordinates(32.7767, -96.7970)


@pytest.fixture
def settings():
    return Settings(
        service_timezone="America/Chicago",
        location_max_age_minutes=30,
        driver_commission_percent=Decimal("30"),
        assignment_max_attempts=3,
    )


@pytest.fixture
def service(settings, tiered_transfer_rule, hourly_rule):
    return DispatchService(
        InMemoryPricingRuleStore([tiered_transfer_rule, hourly_rule]),
        InMemoryAssignmentStore(),
        settings=settings,
    )


# ============================================================================
# SETTINGS TESTS
# ============================================================================

class TestSettings:
    """Tests for Settings."""

    def test_derived_durations(self, settings):
        assert settings.conflict_window == timedelta(hours=2)
        assert settings.location_max_age == timedelta(minutes=30)

    def test_staleness_check_can_be_disabled(self):
        assert Settings(location_max_age_minutes=0).location_max_age is None

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DRIVER_COMMISSION_PERCENT", "25")
        monkeypatch.setenv("SERVICE_TIMEZONE", "America/Phoenix")
        settings = Settings()
        assert settings.driver_commission_percent == Decimal("25")
        assert settings.service_timezone == "America/Phoenix"


# ============================================================================
# QUOTE TESTS
# ============================================================================

class TestQuote:
    """Tests for DispatchService.quote."""

    @pytest.mark.asyncio
    async def test_quote_uses_active_rule(self, service, transfer_request):
        fare = await service.quote(transfer_request)
        assert fare.total_before_gratuity == Decimal("65.00")
        assert fare.rule_id == "rule-sedan-transfer"

    @pytest.mark.asyncio
    async def test_surge_in_service_timezone(self, settings, tiered_transfer_rule, transfer_request):
        """Friday 17:30 in Chicago is 23:30 UTC."""
        window = SurgeWindow(day_of_week=5, start_time="17:00", end_time="20:00", multiplier=Decimal("1.5"))
        service = DispatchService(
            InMemoryPricingRuleStore([replace(tiered_transfer_rule, surge_windows=(window,))]),
            InMemoryAssignmentStore(),
            settings=settings,
        )
        request = replace(transfer_request, scheduled_at=datetime(2025, 1, 17, 23, 30, tzinfo=timezone.utc))

        fare = await service.quote(request)
        assert fare.surge_multiplier == Decimal("1.5")
        assert fare.amount_for(LineItemLabel.SURGE) == Decimal("32.50")

    @pytest.mark.asyncio
    async def test_quote_without_rule(self, service, transfer_request):
        with pytest.raises(NoApplicableRule):
            await service.quote(replace(transfer_request, vehicle_class=VehicleClass.BUSINESS_VAN))

    @pytest.mark.asyncio
    async def test_quote_with_discount(self, service, transfer_request):
        discounted = await service.quote_with_discount(
            transfer_request, PassengerDiscount(DiscountType.FIXED, Decimal("8"))
        )
        assert discounted.final_total == Decimal("70.00")


# ============================================================================
# DISPATCH TESTS
# ============================================================================

class TestDispatch:
    """Tests for ranking and assigning through the service."""

    def candidates(self):
        return [
            DriverCandidate(
                id="near",
                is_active=True,
                is_available=True,
                rating=4.5,
                total_rides=60,
                current_location=DriverLocation(DALLAS.lat + 0.01, DALLAS.lng, NOW - timedelta(minutes=5)),
            ),
            DriverCandidate(
                id="stale",
                is_active=True,
                is_available=True,
                rating=4.5,
                total_rides=60,
                current_location=DriverLocation(DALLAS.lat, DALLAS.lng, NOW - timedelta(hours=3)),
            ),
            DriverCandidate(id="off", is_active=False, is_available=True, rating=5.0, total_rides=500),
        ]

    def test_candidates_use_configured_conflict_window(self, tiered_transfer_rule):
        pickup = NOW + timedelta(hours=6)
        drivers = [DriverCandidate(id="d1", is_active=True, is_available=True)]
        bookings = [BookingSlot("b1", "d1", pickup + timedelta(minutes=90), "confirmed")]

        def service_with(minutes):
            return DispatchService(
                InMemoryPricingRuleStore([tiered_transfer_rule]),
                InMemoryAssignmentStore(),
                settings=Settings(conflict_window_minutes=minutes),
            )

        [default] = service_with(120).candidates_for_ride(drivers, bookings, NOW, pickup)
        [narrow] = service_with(60).candidates_for_ride(drivers, bookings, NOW, pickup)

        assert default.has_conflict
        assert not narrow.has_conflict
        assert narrow.upcoming_bookings_count == 1

    def test_rank_applies_location_max_age(self, service, transfer_request):
        request = replace(transfer_request, pickup=DALLAS)
        ranked = service.rank_for_ride(self.candidates(), request, now=NOW)

        assert [r.id for r in ranked] == ["near", "stale"]
        assert ranked[1].distance_km is None

    @pytest.mark.asyncio
    async def test_assign_records_driver_payment(self, service):
        result = await service.assign("ride123", "near", fare_total=Decimal("78.00"))
        assert isinstance(result, Assignment)
        assert result.driver_payment == Decimal("54.60")

    @pytest.mark.asyncio
    async def test_assign_best(self, service, transfer_request):
        request = replace(transfer_request, pickup=DALLAS)
        result = await service.assign_best("ride123", self.candidates(), request, now=NOW)

        assert isinstance(result, Assignment)
        assert result.driver_id == "near"

    @pytest.mark.asyncio
    async def test_assign_best_no_drivers(self, service):
        assert await service.assign_best("ride123", []) is None

    @pytest.mark.asyncio
    async def test_simultaneous_service_assigns(self, service):
        results = await asyncio.gather(
            service.assign("ride123", "near"),
            service.assign("ride123", "stale"),
        )
        assert sorted(type(r).__name__ for r in results) == ["Assignment", "AssignmentConflict"]

    @pytest.mark.asyncio
    async def test_second_dispatcher_conflicts(self, service):
        await service.assign("ride123", "near", expected_version=0)
        result = await service.assign("ride123", "stale", expected_version=0)
        assert isinstance(result, AssignmentConflict)


# ============================================================================
# RESPONSE ENVELOPE TESTS
# ============================================================================

class TestResponses:
    """Tests for the response helpers."""

    def test_pricing_error_envelope(self):
        response = pricing_error_response(AmbiguousRule("Two rules", rule_ids=["a", "b"]))
        assert response == {
            "error": {
                "code": ErrorCodes.AMBIGUOUS_RULE,
                "message": "Two rules",
                "details": {"rule_ids": ["a", "b"]},
            },
            "status": "error",
        }

    def test_error_without_details(self):
        response = pricing_error_response(NoApplicableRule("Nothing active"))
        assert "details" not in response["error"]

    @pytest.mark.asyncio
    async def test_assignment_envelopes(self, service):
        won = await service.assign("ride123", "near", expected_version=0)
        lost = await service.assign("ride123", "stale", expected_version=0)

        assert assignment_response(won) == {"data": won.to_dict(), "status": "success"}
        conflict = assignment_response(lost)
        assert conflict["error"]["code"] == ErrorCodes.ASSIGNMENT_CONFLICT
        assert conflict["error"]["details"]["currentDriverId"] == "near"

    def test_error_codes_match_emitted_errors(self):
        """Every code is one a PricingError or an assignment conflict carries."""
        codes = {value for name, value in vars(ErrorCodes).items() if name.isupper()}
        emitted = {cls.code for cls in (InvalidPricingRule, InvalidRideRequest, NoApplicableRule, AmbiguousRule)}
        assert codes == emitted | {ErrorCodes.ASSIGNMENT_CONFLICT}

    def test_api_response_model(self):
        response = ApiResponse.error(ErrorCodes.INVALID_RIDE_REQUEST, "Missing distance")
        assert response.status == "error"
        assert response.error.code == "INVALID_RIDE_REQUEST"

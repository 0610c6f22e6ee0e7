"""
Pytest configuration and shared fixtures.

Fare and matching tests are pure and need nothing but the rule/request
fixtures below. Store tests run against a throwaway SQLite database
(aiosqlite) created per test under tmp_path.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chauffeur.core.db import init_models
from chauffeur.fare_models import (
    AirportFee,
    DistanceTier,
    MeetAndGreet,
    PricingRule,
    RideRequest,
    ServiceType,
    VehicleClass,
)

# Wednesday, 10:00 UTC: outside every surge window used in the tests
QUIET_TIME = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def tiered_transfer_rule() -> PricingRule:
    """business_sedan transfer: $10 base, 20 mi free, next 10 @ $4, remaining @ $3."""
    return PricingRule(
        id="rule-sedan-transfer",
        vehicle_class=VehicleClass.BUSINESS_SEDAN,
        service_type=ServiceType.TRANSFER,
        base_rate=Decimal("10"),
        distance_tiers=(
            DistanceTier(miles=Decimal("20"), rate_per_mile=Decimal("0")),
            DistanceTier(miles=Decimal("10"), rate_per_mile=Decimal("4")),
            DistanceTier(rate_per_mile=Decimal("3"), is_remaining=True),
        ),
        gratuity_percent=Decimal("20"),
    )


@pytest.fixture
def hourly_rule() -> PricingRule:
    """business_suv hourly: $80/h, 3h minimum, $100 per overtime hour."""
    return PricingRule(
        id="rule-suv-hourly",
        vehicle_class=VehicleClass.BUSINESS_SUV,
        service_type=ServiceType.HOURLY,
        hourly_rate=Decimal("80"),
        minimum_hours=3,
        overtime_rate=Decimal("100"),
        gratuity_percent=Decimal("20"),
        airport_fees=(AirportFee(code="DFW", fee=Decimal("10")),),
        meet_and_greet=MeetAndGreet(enabled=True, charge=Decimal("25")),
    )


@pytest.fixture
def transfer_request() -> RideRequest:
    return RideRequest(
        id="ride-1",
        service_type=ServiceType.TRANSFER,
        vehicle_class=VehicleClass.BUSINESS_SEDAN,
        scheduled_at=QUIET_TIME,
        estimated_distance_miles=Decimal("35"),
    )


@pytest.fixture
def hourly_request() -> RideRequest:
    return RideRequest(
        id="ride-2",
        service_type=ServiceType.HOURLY,
        vehicle_class=VehicleClass.BUSINESS_SUV,
        scheduled_at=QUIET_TIME,
        requested_hours=Decimal("2"),
    )


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path):
    """File-backed SQLite engine with all dispatch tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(sqlite_engine, expire_on_commit=False, class_=AsyncSession)

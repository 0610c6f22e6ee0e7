"""
Database-backed pricing rule lookup.

Usage:
    store = SqlPricingRuleStore(session)
    rule = await store.get_active_rule(VehicleClass.BUSINESS_SEDAN, ServiceType.TRANSFER, when)
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .dispatch_models import PricingRuleRecord
from .fare_models import PricingRule, ServiceType, VehicleClass
from .pricing_rules import find_overlapping_rules, select_active_rule

logger = logging.getLogger(__name__)


class SqlPricingRuleStore:
    """Read-only view of the pricing_rules table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_rules(
        self,
        vehicle_class: VehicleClass | None = None,
        service_type: ServiceType | None = None,
        active_only: bool = True,
    ) -> list[PricingRule]:
        query = select(PricingRuleRecord)
        if vehicle_class is not None:
            query = query.where(PricingRuleRecord.vehicle_class == vehicle_class)
        if service_type is not None:
            query = query.where(PricingRuleRecord.service_type == service_type)
        if active_only:
            query = query.where(PricingRuleRecord.is_active == True)

        result = await self.session.execute(query.order_by(PricingRuleRecord.id))
        return [record.to_rule() for record in result.scalars().all()]

    async def get_active_rule(
        self,
        vehicle_class: VehicleClass,
        service_type: ServiceType,
        at_time: datetime,
    ) -> PricingRule:
        """
        The single active rule covering at_time.

        Raises:
            NoApplicableRule, AmbiguousRule
        """
        rules = await self.list_rules(vehicle_class, service_type)
        return select_active_rule(rules, vehicle_class, service_type, at_time)

    async def find_overlaps(self) -> list[tuple[PricingRule, PricingRule]]:
        overlaps = find_overlapping_rules(await self.list_rules())
        for a, b in overlaps:
            logger.warning(
                f"Pricing rules {a.id} and {b.id} overlap for {a.vehicle_class.value}/{a.service_type.value}"
            )
        return overlaps

"""
Pricing Rule Store

Rule validation and active-rule selection.

Functions:
    validate_pricing_rule - Structural checks, raises InvalidPricingRule
    select_active_rule - Pick the single active rule covering a point in time
    find_overlapping_rules - Report effective ranges that collide

The fare engine never guesses between rules: two active rules whose
effective ranges both cover the requested time is a configuration error
(AmbiguousRule), not a first-match-wins lookup.
"""

import logging
from datetime import datetime
from decimal import Decimal
from itertools import combinations
from typing import Iterable, Sequence

from .errors import AmbiguousRule, InvalidPricingRule, NoApplicableRule
from .fare_models import PricingRule, ServiceType, VehicleClass, as_utc

logger = logging.getLogger(__name__)

MAX_SURGE_MULTIPLIER = Decimal("5")


# ============================================================================
# VALIDATION
# ============================================================================

def validate_distance_tiers(rule: PricingRule) -> None:
    """At most one "remaining" tier, and it must be the last one."""
    tiers = rule.distance_tiers
    remaining = [i for i, tier in enumerate(tiers) if tier.is_remaining]
    if len(remaining) > 1:
        raise InvalidPricingRule(
            "Only one remaining-distance tier is allowed",
            details={"rule_id": rule.id, "tier_indexes": remaining},
        )
    if remaining and remaining[0] != len(tiers) - 1:
        raise InvalidPricingRule(
            "Remaining tier must be the last tier",
            details={"rule_id": rule.id, "tier_index": remaining[0]},
        )
    for index, tier in enumerate(tiers):
        if tier.rate_per_mile is None or tier.rate_per_mile < 0:
            raise InvalidPricingRule(
                "Distance tier rate must be zero or positive",
                details={"rule_id": rule.id, "tier_index": index},
            )
        if not tier.is_remaining and (tier.miles is None or tier.miles < 0):
            raise InvalidPricingRule(
                "Distance tier needs a non-negative mileage",
                details={"rule_id": rule.id, "tier_index": index},
            )


def validate_surge_windows(rule: PricingRule) -> None:
    for index, window in enumerate(rule.surge_windows):
        details = {"rule_id": rule.id, "surge_index": index}
        if not 0 <= window.day_of_week <= 6:
            raise InvalidPricingRule("Surge day_of_week must be 0-6", details=details)
        if window.multiplier is None or window.multiplier < 1:
            raise InvalidPricingRule("Surge multiplier must be at least 1", details=details)
        try:
            start, end = window.start_minute, window.end_minute
        except ValueError as e:
            raise InvalidPricingRule(str(e), details=details) from e
        if start >= end:
            raise InvalidPricingRule("Surge start_time must be before end_time", details=details)


MONEY_FIELDS = (
    "base_rate",
    "per_mile_rate",
    "hourly_rate",
    "minimum_hours",
    "minimum_fare",
    "gratuity_percent",
    "overtime_rate",
)


def validate_amounts(rule: PricingRule) -> None:
    """No rate, fee or charge on a rule may be negative."""
    for name in MONEY_FIELDS:
        value = getattr(rule, name)
        if value is not None and value < 0:
            raise InvalidPricingRule(
                f"{name} must be zero or positive",
                details={"rule_id": rule.id, "field": name},
            )
    for index, entry in enumerate(rule.airport_fees):
        if entry.fee is None or entry.fee < 0:
            raise InvalidPricingRule(
                f"Airport fee for {entry.code} must be zero or positive",
                details={"rule_id": rule.id, "airport_index": index},
            )
        if entry.waiver_minutes is not None and entry.waiver_minutes < 0:
            raise InvalidPricingRule(
                f"Airport waiver for {entry.code} must be zero or positive",
                details={"rule_id": rule.id, "airport_index": index},
            )
    if rule.meet_and_greet.charge is None or rule.meet_and_greet.charge < 0:
        raise InvalidPricingRule(
            "Meet and greet charge must be zero or positive",
            details={"rule_id": rule.id, "field": "meet_and_greet"},
        )


def validate_pricing_rule(rule: PricingRule) -> None:
    """
    Check the fields a rule needs for its service type.

    Transfer: base_rate AND (per_mile_rate OR distance_tiers).
    Hourly: hourly_rate AND minimum_hours.
    Every amount present must be zero or positive.

    Raises:
        InvalidPricingRule: with a message naming the missing piece
    """
    details = {
        "rule_id": rule.id,
        "vehicle_class": rule.vehicle_class.value,
        "service_type": rule.service_type.value,
    }
    if rule.service_type == ServiceType.TRANSFER:
        if rule.base_rate is None:
            raise InvalidPricingRule("Transfer rule requires base_rate", details=details)
        if rule.per_mile_rate is None and not rule.distance_tiers:
            raise InvalidPricingRule(
                "Transfer rule requires either per_mile_rate or distance tiers",
                details=details,
            )
    elif rule.service_type == ServiceType.HOURLY:
        if rule.hourly_rate is None or rule.minimum_hours is None:
            raise InvalidPricingRule(
                "Hourly rule requires hourly_rate and minimum_hours",
                details=details,
            )

    validate_amounts(rule)
    validate_distance_tiers(rule)
    validate_surge_windows(rule)


# ============================================================================
# SELECTION
# ============================================================================

def select_active_rule(
    rules: Iterable[PricingRule],
    vehicle_class: VehicleClass,
    service_type: ServiceType,
    at_time: datetime,
) -> PricingRule:
    """
    Return the one active rule covering at_time.

    Raises:
        NoApplicableRule: no active rule covers the time
        AmbiguousRule: more than one does
    """
    matches = [
        rule for rule in rules
        if rule.is_active
        and rule.vehicle_class == vehicle_class
        and rule.service_type == service_type
        and rule.covers(at_time)
    ]

    if not matches:
        logger.error(
            f"No active pricing rule for {vehicle_class.value}/{service_type.value} at {at_time.isoformat()}"
        )
        raise NoApplicableRule(
            "No active pricing rule found for this vehicle and service type",
            details={
                "vehicle_class": vehicle_class.value,
                "service_type": service_type.value,
                "at_time": at_time.isoformat(),
            },
        )

    if len(matches) > 1:
        rule_ids = [str(rule.id) for rule in matches]
        logger.error(
            f"Ambiguous pricing rules for {vehicle_class.value}/{service_type.value} "
            f"at {at_time.isoformat()}: {rule_ids}"
        )
        raise AmbiguousRule(
            "More than one active pricing rule covers the requested time",
            rule_ids=rule_ids,
        )

    return matches[0]


def _ranges_overlap(a: PricingRule, b: PricingRule) -> bool:
    # Open bounds extend to -inf / +inf
    a_start = as_utc(a.effective_start) if a.effective_start else None
    b_start = as_utc(b.effective_start) if b.effective_start else None
    a_end = as_utc(a.effective_end) if a.effective_end else None
    b_end = as_utc(b.effective_end) if b.effective_end else None

    if a_end is not None and b_start is not None and a_end <= b_start:
        return False
    if b_end is not None and a_start is not None and b_end <= a_start:
        return False
    return True


def find_overlapping_rules(rules: Sequence[PricingRule]) -> list[tuple[PricingRule, PricingRule]]:
    """
    Pairs of active rules for the same (vehicle class, service type) whose
    effective ranges intersect. Meant for operator review of rule tables.
    """
    active = [rule for rule in rules if rule.is_active]
    overlaps = []
    for a, b in combinations(active, 2):
        if a.vehicle_class != b.vehicle_class or a.service_type != b.service_type:
            continue
        if _ranges_overlap(a, b):
            overlaps.append((a, b))
    return overlaps


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class InMemoryPricingRuleStore:
    """
    Read-only rule lookup over a fixed list of rules.

    Rules are validated on load so a broken rule fails loudly at startup
    rather than at quote time.
    """

    def __init__(self, rules: Iterable[PricingRule] = (), validate: bool = True):
        self._rules: tuple[PricingRule, ...] = tuple(rules)
        if validate:
            for rule in self._rules:
                validate_pricing_rule(rule)

    @property
    def rules(self) -> tuple[PricingRule, ...]:
        return self._rules

    async def get_active_rule(
        self,
        vehicle_class: VehicleClass,
        service_type: ServiceType,
        at_time: datetime,
    ) -> PricingRule:
        return select_active_rule(self._rules, vehicle_class, service_type, at_time)

    def find_overlaps(self) -> list[tuple[PricingRule, PricingRule]]:
        return find_overlapping_rules(self._rules)


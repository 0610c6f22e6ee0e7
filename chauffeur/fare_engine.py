"""
Fare Computation Engine

Pure functions for computing chauffeured-ride fares.
All functions are stateless: the same (request, rule) pair always yields
the same FareBreakdown, down to the cent.

Transfer formula:
    base + distance (+ airport) (+ meet & greet)      = subtotal
    subtotal * (surge multiplier - 1)                  = surge
    max(minimum_fare, subtotal + surge)                -> raise base if short
    gratuity_percent of the floored amount             = gratuity

Hourly formula:
    max(requested_hours, minimum_hours) * hourly_rate  = time
    then the same fees, surge, minimum fare and gratuity as a transfer.

Distance tiers are bracketed, like tax brackets:
    tiers = [first 20 mi @ $0, next 10 mi @ $4, remaining @ $3]
    35 miles -> 20*0 + 10*4 + 5*3 = $55.00

Every line item is rounded to cents (half up) on its own and the total is
the exact sum of the rounded items.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, tzinfo
from decimal import Decimal, ROUND_CEILING
from enum import Enum
from typing import Optional

from .errors import InvalidPricingRule, InvalidRideRequest
from .fare_models import (
    ZERO,
    FareBreakdown,
    FareLineItem,
    LineItemLabel,
    PricingRule,
    RideRequest,
    ServiceType,
    quantize_money,
    to_decimal,
)
from .pricing_rules import validate_pricing_rule

logger = logging.getLogger(__name__)

ONE = Decimal("1")
HUNDRED = Decimal("100")
SECONDS_PER_HOUR = Decimal("3600")


# ============================================================================
# BUILDING BLOCKS
# ============================================================================

def price_distance_tiers(distance_miles: Decimal, rule: PricingRule) -> tuple[Decimal, Decimal]:
    """
    Price a distance against the rule's tiers, in list order.

    Each regular tier consumes up to ``tier.miles`` of what is still
    unconsumed; a remaining tier takes everything left.

    Returns:
        (distance fare before rounding, miles left unpriced)
    """
    remaining = distance_miles
    cost = ZERO

    for tier in rule.distance_tiers:
        if remaining <= 0:
            break
        if tier.is_remaining:
            cost += remaining * to_decimal(tier.rate_per_mile)
            remaining = ZERO
            break
        used = min(remaining, to_decimal(tier.miles))
        cost += used * to_decimal(tier.rate_per_mile)
        remaining -= used

    return cost, max(remaining, ZERO)


def surge_multiplier_at(rule: PricingRule, scheduled_at: datetime, tz: Optional[tzinfo] = None) -> Decimal:
    """
    Largest multiplier among surge windows containing scheduled_at.

    Overlapping windows never add up: the most aggressive one wins.
    Day and time are taken from the local wall clock (converted to tz
    when given, otherwise the datetime's own offset).

    Returns:
        Decimal("1") when no window applies
    """
    local = scheduled_at.astimezone(tz) if tz is not None and scheduled_at.tzinfo else scheduled_at
    # isoweekday: Monday=1 .. Sunday=7  ->  Sunday=0 .. Saturday=6
    day_of_week = local.isoweekday() % 7
    minute_of_day = local.hour * 60 + local.minute

    multiplier = ONE
    for window in rule.surge_windows:
        if window.contains(day_of_week, minute_of_day) and to_decimal(window.multiplier) > multiplier:
            multiplier = to_decimal(window.multiplier)
    return multiplier


def airport_fee_for(request: RideRequest, rule: PricingRule) -> Optional[Decimal]:
    """
    Airport fee for the ride, charged at most once.

    The pickup airport is checked first, then the drop-off. A waiver of
    None or 0 minutes means the fee always applies; otherwise it applies
    only when the known wait exceeds the waiver.
    """
    entry = rule.find_airport_fee(request.pickup_airport_code) or rule.find_airport_fee(
        request.dropoff_airport_code
    )
    if entry is None:
        return None

    if entry.waiver_minutes:
        wait = request.airport_wait_minutes or 0
        if wait <= entry.waiver_minutes:
            return None

    return quantize_money(to_decimal(entry.fee))


def meet_and_greet_fee_for(request: RideRequest, rule: PricingRule) -> Optional[Decimal]:
    if request.meet_and_greet_requested and rule.meet_and_greet.enabled:
        return quantize_money(to_decimal(rule.meet_and_greet.charge))
    return None


def _ensure_rule_matches(request: RideRequest, rule: PricingRule) -> None:
    if request.service_type != rule.service_type or request.vehicle_class != rule.vehicle_class:
        raise InvalidPricingRule(
            f"Pricing rule is for {rule.vehicle_class.value}/{rule.service_type.value}, "
            f"ride is {request.vehicle_class.value}/{request.service_type.value}",
            details={"rule_id": rule.id},
        )


# ============================================================================
# COMPUTE FARE
# ============================================================================

def compute_fare(request: RideRequest, rule: PricingRule, tz: Optional[tzinfo] = None) -> FareBreakdown:
    """
    Compute a fare breakdown for a ride under a pricing rule.

    Args:
        request: The ride being priced
        rule: The active rule for the ride's vehicle class and service type
        tz: Timezone for surge window matching (defaults to scheduled_at's own offset)

    Returns:
        FareBreakdown with ordered line items and total

    Raises:
        InvalidPricingRule: the rule lacks fields its service type needs
        InvalidRideRequest: the ride lacks a distance (transfer) or hours (hourly)

    Examples:
        >>> fare = compute_fare(transfer_35_miles, tiered_sedan_rule)
        >>> fare.amount_for(LineItemLabel.DISTANCE)
        Decimal('55.00')
        >>> fare.total_before_gratuity
        Decimal('65.00')
    """
    _ensure_rule_matches(request, rule)
    validate_pricing_rule(rule)

    items: list[FareLineItem] = []
    warnings: list[str] = []
    unpriced_miles = ZERO
    billed_hours: Optional[Decimal] = None

    if rule.service_type == ServiceType.TRANSFER:
        if request.estimated_distance_miles is None:
            raise InvalidRideRequest("Estimated distance is required for transfer service")
        distance = to_decimal(request.estimated_distance_miles)
        if distance < 0:
            raise InvalidRideRequest("Estimated distance cannot be negative")

        if rule.distance_tiers:
            raw_distance_fare, unpriced_miles = price_distance_tiers(distance, rule)
            if unpriced_miles > 0:
                warnings.append(
                    f"{unpriced_miles} miles beyond the last distance tier were not priced"
                )
                logger.warning(
                    f"Unpriced distance for rule {rule.id}: {unpriced_miles} of {distance} miles "
                    f"exceed configured tiers (no remaining tier)"
                )
        else:
            raw_distance_fare = distance * to_decimal(rule.per_mile_rate)

        items.append(FareLineItem(LineItemLabel.BASE, quantize_money(to_decimal(rule.base_rate))))
        items.append(FareLineItem(LineItemLabel.DISTANCE, quantize_money(raw_distance_fare)))
        floor_label = LineItemLabel.BASE
    else:
        if request.requested_hours is None:
            raise InvalidRideRequest("Requested hours are required for hourly service")
        requested = to_decimal(request.requested_hours)
        if requested < 0:
            raise InvalidRideRequest("Requested hours cannot be negative")

        billed_hours = max(requested, to_decimal(rule.minimum_hours))
        time_fare = billed_hours * to_decimal(rule.hourly_rate)
        items.append(FareLineItem(LineItemLabel.TIME, quantize_money(time_fare)))
        floor_label = LineItemLabel.TIME

    airport_fee = airport_fee_for(request, rule)
    if airport_fee is not None:
        items.append(FareLineItem(LineItemLabel.AIRPORT, airport_fee))

    meet_and_greet_fee = meet_and_greet_fee_for(request, rule)
    if meet_and_greet_fee is not None:
        items.append(FareLineItem(LineItemLabel.MEET_AND_GREET, meet_and_greet_fee))

    subtotal = sum((item.amount for item in items), ZERO)

    multiplier = surge_multiplier_at(rule, request.scheduled_at, tz)
    if multiplier > ONE:
        surge = quantize_money(subtotal * (multiplier - ONE))
        items.append(FareLineItem(LineItemLabel.SURGE, surge))

    items = _apply_minimum_fare(items, rule, floor_label)
    pre_gratuity = sum((item.amount for item in items), ZERO)

    if rule.gratuity_percent:
        gratuity = quantize_money(pre_gratuity * to_decimal(rule.gratuity_percent) / HUNDRED)
        items.append(FareLineItem(LineItemLabel.GRATUITY, gratuity))

    return FareBreakdown(
        service_type=rule.service_type,
        vehicle_class=rule.vehicle_class,
        line_items=tuple(items),
        total=sum((item.amount for item in items), ZERO),
        rule_id=rule.id,
        surge_multiplier=multiplier,
        billed_hours=billed_hours,
        unpriced_miles=unpriced_miles,
        warnings=tuple(warnings),
    )


def _apply_minimum_fare(
    items: list[FareLineItem],
    rule: PricingRule,
    floor_label: LineItemLabel,
) -> list[FareLineItem]:
    """Raise the floor line item so the pre-gratuity total reaches minimum_fare."""
    if rule.minimum_fare is None:
        return items

    minimum = quantize_money(to_decimal(rule.minimum_fare))
    current = sum((item.amount for item in items), ZERO)
    if current >= minimum:
        return items

    shortfall = minimum - current
    return [
        FareLineItem(item.label, item.amount + shortfall) if item.label == floor_label else item
        for item in items
    ]


# ============================================================================
# POST-TRIP RECONCILIATION
# ============================================================================

def _elapsed_hours(actual_elapsed) -> Decimal:
    if isinstance(actual_elapsed, timedelta):
        return Decimal(str(actual_elapsed.total_seconds())) / SECONDS_PER_HOUR
    return to_decimal(actual_elapsed)


def reconcile_hourly(
    request: RideRequest,
    rule: PricingRule,
    actual_elapsed: timedelta | Decimal | float | int,
    tz: Optional[tzinfo] = None,
) -> FareBreakdown:
    """
    Re-price an hourly ride once its real duration is known.

    Time past the billed hours is charged at overtime_rate per started hour
    (2h10m over a 2h booking is one overtime hour). Overtime is added after
    gratuity and is not surged.

    Args:
        request: The booked ride
        rule: The rule the ride was booked under
        actual_elapsed: timedelta, or elapsed hours as a number

    Raises:
        InvalidRideRequest: the ride is not hourly
        InvalidPricingRule: overtime is owed but the rule has no overtime_rate
    """
    if request.service_type != ServiceType.HOURLY:
        raise InvalidRideRequest("Only hourly rides can be reconciled for overtime")

    booked = compute_fare(request, rule, tz)
    excess = _elapsed_hours(actual_elapsed) - booked.billed_hours
    if excess <= 0:
        return booked

    if rule.overtime_rate is None:
        raise InvalidPricingRule(
            "Hourly rule has no overtime_rate but the ride ran over",
            details={"rule_id": rule.id, "excess_hours": str(excess)},
        )

    overtime_hours = excess.to_integral_value(rounding=ROUND_CEILING)
    overtime = quantize_money(overtime_hours * to_decimal(rule.overtime_rate))
    logger.info(f"Overtime for rule {rule.id}: {overtime_hours}h -> ${overtime}")

    return replace(
        booked,
        line_items=booked.line_items + (FareLineItem(LineItemLabel.OVERTIME, overtime),),
        total=booked.total + overtime,
    )


# ============================================================================
# DISCOUNTS AND DRIVER PAYOUT
# ============================================================================

class DiscountType(str, Enum):
    """Passenger discount kinds configured on the passenger account."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True)
class PassengerDiscount:
    discount_type: DiscountType
    value: Decimal


@dataclass(frozen=True)
class DiscountedFare:
    """A fare with a passenger discount taken off its total."""
    fare: FareBreakdown
    discount_amount: Decimal
    final_total: Decimal

    def to_dict(self) -> dict:
        data = self.fare.to_dict()
        data["discount"] = f"{self.discount_amount:.2f}"
        data["final_total"] = f"{self.final_total:.2f}"
        return data


def apply_discount(fare: FareBreakdown, discount: Optional[PassengerDiscount]) -> DiscountedFare:
    """
    Take a passenger discount off the fare total.

    The discount is capped at the total so the amount due never goes
    below zero. The breakdown itself is left untouched.
    """
    if discount is None or to_decimal(discount.value) <= 0:
        return DiscountedFare(fare=fare, discount_amount=ZERO, final_total=fare.total)

    value = to_decimal(discount.value)
    if discount.discount_type == DiscountType.PERCENTAGE:
        amount = quantize_money(fare.total * value / HUNDRED)
    else:
        amount = quantize_money(value)

    amount = min(amount, fare.total)
    return DiscountedFare(fare=fare, discount_amount=amount, final_total=fare.total - amount)


def calculate_driver_payment(total: Decimal | float, commission_percent: Decimal | float = Decimal("30")) -> Decimal:
    """
    Driver payout after the platform commission.

    Examples:
        >>> calculate_driver_payment(Decimal("100.00"), 30)
        Decimal('70.00')
    """
    commission = to_decimal(commission_percent)
    if not ZERO <= commission <= HUNDRED:
        raise ValueError(f"Commission percent must be between 0 and 100, got {commission}")
    return quantize_money(to_decimal(total) * (HUNDRED - commission) / HUNDRED)

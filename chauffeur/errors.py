"""
Pricing error taxonomy.

Every error carries a stable ``code`` so the booking service can map it onto
its response envelope (see ``core.responses``). None of these are retried or
auto-corrected: they describe bad configuration or a malformed request.

Assignment races are NOT errors; see ``assignment.AssignmentConflict``.
"""

from typing import Optional, Sequence


class PricingError(Exception):
    """Base class for fare computation failures."""

    code = "PRICING_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidPricingRule(PricingError):
    """A pricing rule is missing required fields or is structurally invalid."""

    code = "INVALID_PRICING_RULE"


class InvalidRideRequest(PricingError):
    """A ride request lacks the distance or hours its service type needs."""

    code = "INVALID_RIDE_REQUEST"


class NoApplicableRule(PricingError):
    """No active rule covers the vehicle class, service type and time."""

    code = "NO_APPLICABLE_RULE"


class AmbiguousRule(PricingError):
    """More than one active rule covers the same vehicle class, service type and time."""

    code = "AMBIGUOUS_RULE"

    def __init__(self, message: str, rule_ids: Sequence[str] = ()):
        self.rule_ids = tuple(rule_ids)
        super().__init__(message, details={"rule_ids": list(self.rule_ids)})

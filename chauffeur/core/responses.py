"""
Standardized Response Module

Builds the envelope the booking service returns for fares and assignments.

RESPONSE FORMAT:
    Success:
        {
            "data": <response data>,
            "status": "success"
        }

    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }

ERROR CODES:
    - INVALID_PRICING_RULE: Rule is missing fields or structurally invalid
    - NO_APPLICABLE_RULE: No active rule covers the ride
    - AMBIGUOUS_RULE: More than one active rule covers the ride
    - INVALID_RIDE_REQUEST: Request lacks distance/hours for its service type
    - ASSIGNMENT_CONFLICT: Another dispatcher assigned the ride first
"""

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

from ..assignment import Assignment, AssignmentConflict, AssignmentResult
from ..errors import PricingError

T = TypeVar("T")


class ErrorDetail(BaseModel):
    """Structured error information."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class ApiResponse(BaseModel, Generic[T]):
    """
    Response wrapper.

    Usage:
        ApiResponse.success(fare.to_dict())
        ApiResponse.error(ErrorCodes.NO_APPLICABLE_RULE, "No rule for business_van")
    """
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None
    status: str = "success"

    @classmethod
    def success(cls, data: T) -> "ApiResponse[T]":
        return cls(data=data, status="success")

    @classmethod
    def error(
        cls,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> "ApiResponse[None]":
        return cls(
            error=ErrorDetail(code=code, message=message, details=details),
            status="error"
        )


# ============================================================================
# ERROR CODES
# ============================================================================

class ErrorCodes:
    """Error codes for fare and dispatch responses."""

    # Pricing configuration
    INVALID_PRICING_RULE = "INVALID_PRICING_RULE"
    NO_APPLICABLE_RULE = "NO_APPLICABLE_RULE"
    AMBIGUOUS_RULE = "AMBIGUOUS_RULE"

    # Request validation
    INVALID_RIDE_REQUEST = "INVALID_RIDE_REQUEST"

    # Dispatch
    ASSIGNMENT_CONFLICT = "ASSIGNMENT_CONFLICT"



# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def success_response(data: Any) -> dict:
    return {"data": data, "status": "success"}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response


def pricing_error_response(exc: PricingError) -> dict:
    """Error envelope for any PricingError, keyed by its code."""
    return error_response(exc.code, exc.message, exc.details)


def assignment_response(result: AssignmentResult) -> dict:
    """
    Envelope for an assign() outcome.

    A conflict is an error envelope carrying the winning driver so the
    dispatcher can refresh instead of retrying blindly.
    """
    if isinstance(result, AssignmentConflict):
        return error_response(
            ErrorCodes.ASSIGNMENT_CONFLICT,
            f"Ride {result.ride_request_id} was assigned by another dispatcher",
            result.to_dict(),
        )
    if isinstance(result, Assignment):
        return success_response(result.to_dict())
    raise TypeError(f"Unexpected assignment result: {result!r}")

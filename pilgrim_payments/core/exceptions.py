"""Error taxonomy for the payment API.

Codes are stable strings independent of HTTP status so clients can branch on
semantics. Each code maps to a fixed message, default description and status.
"""

from enum import Enum


class ErrorCode(str, Enum):
    AUTH_001 = "AUTH_001"
    AUTH_002 = "AUTH_002"
    VALIDATION_001 = "VALIDATION_001"
    VALIDATION_002 = "VALIDATION_002"
    VALIDATION_003 = "VALIDATION_003"
    BOOKING_003 = "BOOKING_003"
    BOOKING_004 = "BOOKING_004"
    PAYMENT_001 = "PAYMENT_001"
    PAYMENT_005 = "PAYMENT_005"
    PAYMENT_006 = "PAYMENT_006"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    SYSTEM_001 = "SYSTEM_001"


# code -> (message, default description, HTTP status)
ERROR_CATALOG: dict[ErrorCode, tuple[str, str, int]] = {
    ErrorCode.AUTH_001: (
        "Authentication required",
        "You must be logged in to process payments",
        401,
    ),
    ErrorCode.AUTH_002: (
        "Insufficient permissions",
        "You do not have permission to perform this action",
        403,
    ),
    ErrorCode.VALIDATION_001: (
        "Invalid idempotency key",
        "Idempotency key must be between 16 and 64 characters",
        400,
    ),
    ErrorCode.VALIDATION_002: (
        "Missing required fields",
        "booking_id, amount, and idempotency_key are required",
        400,
    ),
    ErrorCode.VALIDATION_003: (
        "Invalid format",
        "The data format is incorrect",
        400,
    ),
    ErrorCode.BOOKING_003: (
        "Booking not found",
        "The requested booking could not be found",
        404,
    ),
    ErrorCode.BOOKING_004: (
        "Invalid booking status",
        "Payment can only be processed for pending or accepted bookings",
        409,
    ),
    ErrorCode.PAYMENT_001: (
        "Payment failed",
        "Failed to initialize transaction",
        500,
    ),
    ErrorCode.PAYMENT_005: (
        "Payment pending",
        "A payment is already being processed for this request",
        409,
    ),
    ErrorCode.PAYMENT_006: (
        "Idempotency key reuse",
        "This idempotency key was already used for a payment with different parameters",
        422,
    ),
    ErrorCode.METHOD_NOT_ALLOWED: (
        "Method not allowed",
        "Only POST requests are allowed",
        405,
    ),
    ErrorCode.SYSTEM_001: (
        "Internal server error",
        "An unexpected error occurred. Please try again later",
        500,
    ),
}


class PaymentServiceError(Exception):
    """Base exception for the payment service."""

    pass


class ApiError(PaymentServiceError):
    """Raised for any failure that should reach the caller as a coded envelope."""

    def __init__(self, code: ErrorCode, description: str | None = None):
        message, default_description, status_code = ERROR_CATALOG[code]
        self.code = code
        self.message = message
        self.description = description or default_description
        self.status_code = status_code
        super().__init__(f"{code.value}: {self.description}")

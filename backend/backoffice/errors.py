"""
Typed errors raised by the back-office engine.

Every business-rule violation is detected before any write and surfaces as one
of these classes. Each carries a stable machine-readable ``code`` and the HTTP
status the API layer answers with, so clients can tell an exhausted coupon
apart from an out-of-stock variant or an already-approved cash session.
"""

from __future__ import annotations


class BackOfficeError(Exception):
    """Base class for all engine errors."""

    code = "BACKOFFICE_ERROR"
    status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BackOfficeError):
    """Missing or malformed required input."""

    code = "VALIDATION_ERROR"
    status = 400


class NotFoundError(BackOfficeError):
    """Referenced session/order/variant/account does not exist."""

    code = "NOT_FOUND"
    status = 404


class ConflictError(BackOfficeError):
    """State-machine or uniqueness violation."""

    code = "CONFLICT"
    status = 409


class CouponUnavailableError(ConflictError):
    """Coupon is unknown, inactive, outside its window or exhausted."""

    code = "COUPON_UNAVAILABLE"


class InsufficientStockError(BackOfficeError):
    """Stock would go negative."""

    code = "INSUFFICIENT_STOCK"
    status = 409

    def __init__(self, variant_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for variant {variant_id}",
            details={
                "variant_id": variant_id,
                "requested_quantity": requested,
                "available": available,
            },
        )
        self.variant_id = variant_id
        self.requested = requested
        self.available = available


class EmptyCartError(BackOfficeError):
    """Order commit attempted with an empty cart."""

    code = "EMPTY_CART"
    status = 422

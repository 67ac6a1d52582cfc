"""Business error taxonomy shared by the inventory, orders and payments apps.

Every error is a ``ValueError`` whose string value is a short, stable code
(e.g. ``"INSUFFICIENT_STOCK"``) so callers can keep matching on
``str(exc)``. Each class also carries the HTTP status the API layer uses
when it surfaces the error, plus optional ``extra`` fields that are merged
into the response body.
"""

from typing import Any, Dict, Optional


class DomainError(ValueError):
    """Base class for business-rule and validation failures.

    Attributes:
        code: Stable machine-readable error code, also returned by ``str()``.
        http_status: Status code used by the views when surfacing the error.
        message: Optional human-readable explanation.
        extra: Optional additional fields for the response body.
    """

    code = "DOMAIN_ERROR"
    http_status = 400

    def __init__(self, message: str = "", *, extra: Optional[Dict[str, Any]] = None):
        super().__init__(self.code)
        self.message = message
        self.extra = extra or {}

    def __str__(self) -> str:
        return self.code

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.code}
        if self.message:
            body["message"] = self.message
        body.update(self.extra)
        return body


# ---- Validation (400) ----
class ValidationFailed(DomainError):
    code = "VALIDATION_ERROR"


class EmptyOrder(DomainError):
    code = "EMPTY_ORDER"


class InvalidQuantity(DomainError):
    code = "INVALID_QUANTITY"


class InvalidAddress(DomainError):
    code = "INVALID_ADDRESS"


# ---- Access (403 / 404) ----
class Forbidden(DomainError):
    code = "FORBIDDEN"
    http_status = 403


class OrderNotFound(DomainError):
    code = "NOT_FOUND"
    http_status = 404


class ProductNotFound(DomainError):
    code = "PRODUCT_NOT_FOUND"
    http_status = 404


class PaymentLogNotFound(DomainError):
    code = "NOT_FOUND"
    http_status = 404


# ---- Business conflicts (409 / 422) ----
class ProductUnavailable(DomainError):
    code = "PRODUCT_UNAVAILABLE"
    http_status = 422


class InsufficientStock(DomainError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class InvalidOrderState(DomainError):
    code = "INVALID_ORDER_STATE"
    http_status = 409


class AlreadyPaid(InvalidOrderState):
    code = "ALREADY_PAID"


class AmountMismatch(DomainError):
    code = "AMOUNT_MISMATCH"
    http_status = 422


class IdempotencyConflict(DomainError):
    code = "IDEMPOTENCY_CONFLICT"
    http_status = 409


# ---- Infrastructure (503) ----
class OrderNumberExhausted(DomainError):
    """Raised when no free order number was found within ORDER_NUMBER_MAX_ATTEMPTS tries."""

    code = "ORDER_NUMBER_EXHAUSTED"
    http_status = 503


class UpstreamUnavailable(RuntimeError):
    """A collaborator could not be reached; surfaced as 503, never as a business error."""

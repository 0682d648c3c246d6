"""Tagged errors raised by the checkout core.

Each error carries a stable ``code``; components raise them unchanged and only
the HTTP adapter decides which transport status a code maps to.
"""

from __future__ import annotations


class CheckoutError(Exception):
    """Base class for every failure the checkout core reports to callers."""

    code = "internal"
    default_message = "internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CheckoutError):
    code = "validation"
    default_message = "invalid"


class NotFoundError(CheckoutError):
    code = "not_found"
    default_message = "not found"


class ForbiddenError(CheckoutError):
    code = "forbidden"
    default_message = "forbidden"


class CartEmptyError(CheckoutError):
    code = "cart_empty"
    default_message = "cart empty"


class OutOfStockError(CheckoutError):
    code = "out_of_stock"
    default_message = "out of stock"

    def __init__(self, product_id: int | None = None, message: str | None = None) -> None:
        self.product_id = product_id
        super().__init__(message)


class IdempotencyConflictError(CheckoutError):
    code = "idempotency_conflict"
    default_message = "idempotency conflict"


class InvalidTransitionError(CheckoutError):
    code = "invalid_transition"
    default_message = "invalid status transition"


class InternalError(CheckoutError):
    code = "internal"
    default_message = "db error"

"""
Service error taxonomy.

Services raise these; routes translate them into JSON error bodies using
`status_code`. Nothing here is retried automatically.
"""


class StorefrontError(Exception):
    """Base class for typed service failures."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        body.update(self.details)
        return body


class ValidationError(StorefrontError, ValueError):
    """400-level input problem."""

    status_code = 400


class NotFoundError(StorefrontError, LookupError):
    """404: the referenced entity does not exist."""

    status_code = 404


class ConflictError(StorefrontError, ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""

    status_code = 409


class InvalidTransitionError(ConflictError):
    """Order status change not allowed by the lifecycle."""


class InsufficientStockError(ConflictError):
    """Requested quantity exceeds what is on hand."""

    def __init__(self, product_id: int | None, product_name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}",
            details={
                "product_id": product_id,
                "requested_quantity": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class PaymentGatewayError(StorefrontError):
    """The payment gateway could not be reached or answered with an error."""

    status_code = 502

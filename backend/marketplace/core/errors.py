"""
Domain error hierarchy shared by the settlement services.

Every error carries a human readable message plus structured context that
is logged alongside it. The HTTP layer maps each class to a status code
through ``status_code``.
"""

from typing import Any


class SettlementError(Exception):
    """Base exception for settlement backend errors."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(SettlementError):
    """Raised when an order, product, variant or dropshipper does not exist."""

    status_code = 404
    error_code = "not_found"


class ForbiddenError(SettlementError):
    """Raised when the requester does not own the resource."""

    status_code = 403
    error_code = "forbidden"


class InvalidInputError(SettlementError):
    """Raised when request data fails business validation."""

    status_code = 400
    error_code = "invalid_input"


class InvalidPayloadError(SettlementError):
    """Raised when a storefront webhook payload cannot become an order."""

    status_code = 422
    error_code = "invalid_payload"


class ConflictError(SettlementError):
    """Raised when a uniqueness guarantee cannot be satisfied."""

    status_code = 409
    error_code = "conflict"

"""Error taxonomy and service result type.

Lower layers (models, database, gateway) raise ``StorefrontError``
subclasses. Services catch them at their boundary and hand a
``ServiceResult`` to the API layer, which maps the ``ErrorKind`` to an HTTP
status code.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers."""

    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    INSUFFICIENT_STOCK = "insufficient_stock"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    INTERNAL_ERROR = "internal_error"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.INSUFFICIENT_STOCK: 409,
    ErrorKind.GATEWAY_UNAVAILABLE: 503,
    ErrorKind.INTERNAL_ERROR: 500,
}


class StorefrontError(Exception):
    """Base class for domain and infrastructure errors."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class OrderNotFoundError(StorefrontError):
    kind = ErrorKind.NOT_FOUND


class AttemptNotFoundError(StorefrontError):
    kind = ErrorKind.NOT_FOUND


class PaymentRetryNotAllowedError(StorefrontError):
    kind = ErrorKind.BAD_REQUEST


class PaymentValidationError(StorefrontError):
    """Verification input or gateway payment failed an integrity check."""

    kind = ErrorKind.BAD_REQUEST


class InventoryItemNotFoundError(StorefrontError):
    kind = ErrorKind.BAD_REQUEST


class InsufficientStockError(StorefrontError):
    kind = ErrorKind.INSUFFICIENT_STOCK

    def __init__(self, name: str, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}, Requested: {requested}"
        )
        self.name = name
        self.available = available
        self.requested = requested


class StockReservationError(StorefrontError):
    """Reservation aborted; nothing was decremented.

    ``results`` lists the line that failed and the lines rolled back with it.
    """

    def __init__(self, cause: StorefrontError, results: Any) -> None:
        super().__init__(cause.message)
        self.kind = cause.kind
        self.cause = cause
        self.results = results


class GatewayUnavailableError(StorefrontError):
    """Gateway timed out or failed on its side; safe to retry."""

    kind = ErrorKind.GATEWAY_UNAVAILABLE


class GatewayRequestError(StorefrontError):
    """Gateway rejected the request."""

    kind = ErrorKind.BAD_REQUEST


class ConcurrentUpdateError(StorefrontError):
    """A conditional write matched no document after validation passed."""

    kind = ErrorKind.INTERNAL_ERROR


class ServiceResult(BaseModel):
    """Outcome of a service operation."""

    success: bool
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    error: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, message: str, **data: Any) -> "ServiceResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: ErrorKind, message: str, **data: Any) -> "ServiceResult":
        return cls(success=False, message=message, data=data, error=error)

    @classmethod
    def from_error(cls, exc: StorefrontError) -> "ServiceResult":
        return cls.fail(exc.kind, exc.message)

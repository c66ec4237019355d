"""Error taxonomy shared by the availability and booking flows.

Every failure that leaves the core is one of the ErrorKind values below.
``message`` is safe to show to a customer; ``detail`` carries internal
context (provider text, ids) and is only ever logged.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    UPSTREAM_ERROR = "upstream_error"
    PAYMENT_DECLINED = "payment_declined"
    BOOKING_CONFLICT = "booking_conflict"
    COMPENSATION_FAILED = "compensation_failed"
    PERSISTENCE_INCONSISTENCY = "persistence_inconsistency"


STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.PAYMENT_DECLINED: 400,
    ErrorKind.BOOKING_CONFLICT: 400,
    ErrorKind.UPSTREAM_ERROR: 500,
    ErrorKind.COMPENSATION_FAILED: 500,
    ErrorKind.PERSISTENCE_INCONSISTENCY: 500,
}


class BookingError(Exception):
    kind: ErrorKind = ErrorKind.UPSTREAM_ERROR
    default_message = "Something went wrong. Please try again later."

    def __init__(self, message: Optional[str] = None, *, detail: Any = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def public_message(self) -> str:
        """Message for the HTTP response; 5xx kinds never expose custom text."""
        if self.status_code >= 500:
            return self.default_message
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.kind.value, "message": self.public_message()}}


class NotFoundError(BookingError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Resource not found"


class InvalidRequestError(BookingError):
    kind = ErrorKind.INVALID_REQUEST
    default_message = "Invalid booking request"


class UpstreamError(BookingError):
    kind = ErrorKind.UPSTREAM_ERROR
    default_message = "The booking service is temporarily unavailable. Please try again later."


class PaymentDeclinedError(BookingError):
    kind = ErrorKind.PAYMENT_DECLINED
    default_message = (
        "Your payment was declined. Please check your card details or use a different card."
    )


class BookingConflictError(BookingError):
    kind = ErrorKind.BOOKING_CONFLICT
    default_message = (
        "This appointment time is no longer available. Please choose another time."
    )


class CompensationFailedError(BookingError):
    kind = ErrorKind.COMPENSATION_FAILED
    default_message = (
        "We could not complete your booking. Our team has been notified and will contact you."
    )


class PersistenceInconsistencyError(BookingError):
    kind = ErrorKind.PERSISTENCE_INCONSISTENCY
    default_message = (
        "We could not complete your booking. Our team has been notified and will contact you."
    )


ERROR_BY_KIND: dict[ErrorKind, type[BookingError]] = {
    cls.kind: cls
    for cls in (
        NotFoundError,
        InvalidRequestError,
        UpstreamError,
        PaymentDeclinedError,
        BookingConflictError,
        CompensationFailedError,
        PersistenceInconsistencyError,
    )
}


def error_for_kind(kind: ErrorKind, message: Optional[str] = None, *, detail: Any = None) -> BookingError:
    """Build the exception matching ``kind``"""
    return ERROR_BY_KIND[kind](message, detail=detail)

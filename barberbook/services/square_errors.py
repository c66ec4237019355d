"""
Square error classification
The one place that reads Square error codes and detail text. Everything else
works with ErrorKind. Update the tables below when Square changes wording.
"""

import logging
from typing import Any

from ..errors import BookingError, ErrorKind
from .square_service import SquareAPIError

logger = logging.getLogger(__name__)

# https://developer.squareup.com/reference/square/enums/ErrorCode (payment method errors)
DECLINE_CODES = frozenset(
    {
        "ADDRESS_VERIFICATION_FAILURE",
        "CARD_DECLINED",
        "CARD_DECLINED_CALL_ISSUER",
        "CARD_DECLINED_VERIFICATION_REQUIRED",
        "CARD_EXPIRED",
        "CARD_NOT_SUPPORTED",
        "CARD_TOKEN_EXPIRED",
        "CARD_TOKEN_USED",
        "CVV_FAILURE",
        "EXPIRATION_FAILURE",
        "GENERIC_DECLINE",
        "INSUFFICIENT_FUNDS",
        "INVALID_ACCOUNT",
        "INVALID_CARD",
        "INVALID_CARD_DATA",
        "INVALID_EXPIRATION",
        "INVALID_PIN",
        "INVALID_POSTAL_CODE",
        "PAN_FAILURE",
        "PAYMENT_LIMIT_EXCEEDED",
        "TRANSACTION_LIMIT",
        "VOICE_FAILURE",
    }
)

# Lower-cased fragments of Square ``detail`` text
SLOT_TAKEN_PATTERNS = (
    "no longer available",
    "time slot is not available",
    "stale version",
)
CANCELLATION_WINDOW_PATTERNS = (
    "cancellation period",
    "past cancellation period end",
)


def _details(errors: list[dict[str, Any]]) -> list[str]:
    return [(e.get("detail") or "").lower() for e in errors]


def classify_square_error(exc: BaseException) -> ErrorKind:
    """Map a provider failure to an ErrorKind; anything unrecognised is an upstream error"""
    if isinstance(exc, BookingError):
        return exc.kind

    if not isinstance(exc, SquareAPIError):
        # Transport failures (httpx.HTTPError), timeouts, malformed payloads
        return ErrorKind.UPSTREAM_ERROR

    codes = {e.get("code") for e in exc.errors}
    categories = {e.get("category") for e in exc.errors}
    details = _details(exc.errors)

    if codes & DECLINE_CODES or "PAYMENT_METHOD_ERROR" in categories:
        return ErrorKind.PAYMENT_DECLINED

    if exc.status_code == 409 or any(p in d for d in details for p in SLOT_TAKEN_PATTERNS):
        return ErrorKind.BOOKING_CONFLICT

    if any(p in d for d in details for p in CANCELLATION_WINDOW_PATTERNS):
        return ErrorKind.INVALID_REQUEST

    logger.debug(f"Unclassified Square error ({exc.status_code}): codes={codes}")
    return ErrorKind.UPSTREAM_ERROR

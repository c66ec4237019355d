"""Shared validation utilities"""

import re
from datetime import date, datetime
from typing import Optional


def normalize_phone(phone: str) -> str:
    """
    Normalize a phone number to E.164 format.

    Ten-digit numbers are treated as North American and get the +1 prefix.
    This is the customer dedup key within a shop, so every entry point must
    go through it.

    Args:
        phone: Phone number string in various formats

    Returns:
        Normalized phone number in E.164 format (+XXXXXXXXXXX)

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone or not phone.strip():
        raise ValueError("Phone number is required")

    # Remove all non-digit characters
    digits = re.sub(r"\D", "", phone)

    if len(digits) == 10 and not phone.strip().startswith("+"):
        return f"+1{digits}"

    # E.164 allows at most 15 digits
    if not 8 <= len(digits) <= 15:
        raise ValueError("Phone number must have between 8 and 15 digits")

    return f"+{digits}"


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    # Basic email validation pattern
    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def validate_calendar_date(value: str) -> str:
    """Check a YYYY-MM-DD calendar day and return it unchanged"""
    if not re.match(r"^\d{4}-\d{2}-\d{2}$", value or ""):
        raise ValueError("date must be in YYYY-MM-DD format")
    date.fromisoformat(value)
    return value


def require_timezone(value: datetime) -> datetime:
    """Reject naive datetimes; booking instants must carry an offset"""
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("startAt must include a timezone offset (e.g. 2024-06-01T10:00:00Z)")
    return value

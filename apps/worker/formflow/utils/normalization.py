"""Canonical forms for the identity fields pulled out of form answers."""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    US numbers to E.164, e.g. "(555) 123-4567" and "1-555-123-4567" both
    become "+15551234567". Raises ValueError for anything that is not a
    10-digit number with an optional leading 1.
    """
    if not phone:
        return None

    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 11 and digits[0] == "1":
        digits = digits[1:]
    if len(digits) != 10:
        raise ValueError(f"Not a US phone number: {phone!r}")
    return f"+1{digits}"


def phone_or_raw(phone: Optional[str]) -> Optional[str]:
    """E.164 when the number parses, otherwise the trimmed text as typed."""
    try:
        return normalize_phone(phone)
    except ValueError:
        return phone.strip() or None


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Trimmed and lowercased; None when blank."""
    if not email:
        return None
    return email.strip().lower() or None


def normalize_name(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    return " ".join(name.split()) or None

"""Utility modules."""

from formflow.utils.normalization import (
    normalize_email,
    normalize_name,
    normalize_phone,
    phone_or_raw,
)

__all__ = [
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "phone_or_raw",
]

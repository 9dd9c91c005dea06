"""Recipient address normalisation for phone-number based channels."""
from __future__ import annotations

import re

from models.schemas import ValidationError

_NON_DIGITS = re.compile(r"[^\d]")


def normalize_recipient(raw: str, min_digits: int = 10, default_country_code: str = "") -> str:
    """
    Strip everything but digits and check the length.

    With ``default_country_code`` set, a single leading trunk ``0`` is replaced
    by the country code ("0771234567" -> "94771234567"); a leading ``00``
    international prefix is dropped.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if digits.startswith("00"):
        digits = digits[2:]
    elif default_country_code and digits.startswith("0"):
        digits = default_country_code + digits[1:]
    if len(digits) < min_digits:
        raise ValidationError("Invalid phone number: too short")
    return digits


def split_recipients(raw) -> list[str]:
    """Accept a list or a comma/semicolon separated string."""
    if raw is None:
        return []
    if isinstance(raw, str):
        parts = re.split(r"[,;]", raw)
    else:
        parts = [str(r) for r in raw]
    return [p.strip() for p in parts if p and p.strip()]

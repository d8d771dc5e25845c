"""Shared utilities used across the booking concierge."""

import re
import unicodedata


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("555-1234")
        '5551234'
        >>> normalize_phone("+381 (64) 123-4567")
        '+381641234567'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def phone_digits(value: str) -> str:
    """Return only the digits of a phone-like string."""
    return re.sub(r"[^\d]", "", value)


def fold_text(value: str) -> str:
    """Case-fold and collapse whitespace for tolerant text comparison."""
    return re.sub(r"\s+", " ", unicodedata.normalize("NFC", value)).strip().casefold()


def strip_punctuation(value: str) -> str:
    """Drop punctuation and symbols, keeping letters, digits and spaces."""
    kept = (
        ch if not unicodedata.category(ch).startswith(("P", "S")) else " "
        for ch in value
    )
    return re.sub(r"\s+", " ", "".join(kept)).strip()


def truncate(value: str, limit: int = 100) -> str:
    """Shorten text for log lines."""
    return value if len(value) <= limit else value[: limit - 3] + "..."

"""
Booking field validation and normalization.

Each draft field has a definition with a validator and a normalizer. A
grounded candidate still has to pass validation before it may enter the
draft; failures come back with a reason so the guest can be asked to
correct the value.

Usage:
    validator = SlotValidator(max_party_size=20)
    ok, value, reason = validator.validate("time", "7:30", today=date(2025, 3, 1))
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Optional

from concierge.config import settings
from concierge.utils import phone_digits

logger = logging.getLogger(__name__)

# Validation thresholds
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 80
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15
MAX_COMMENT_LENGTH = 500

_NAME_RE = re.compile(r"^[^\d@#$%^&*_=+<>{}\[\]|\\/]+$")


@dataclass(frozen=True)
class SlotDefinition:
    """Schema for a single draft field."""

    name: str
    display_name: str
    required: bool = True
    prompt_hint: str = ""


class SlotValidationError(ValueError):
    """A field value that is present but malformed."""


def _normalize_name(value: str, _: date) -> str:
    value = " ".join(str(value).split())
    if not MIN_NAME_LENGTH <= len(value) <= MAX_NAME_LENGTH:
        raise SlotValidationError(f"name must be {MIN_NAME_LENGTH}-{MAX_NAME_LENGTH} characters")
    if not _NAME_RE.match(value):
        raise SlotValidationError("name contains digits or symbols")
    return value


def _normalize_phone(value: str, _: date) -> str:
    # Stored as written; only the digit count is checked.
    value = str(value).strip()
    digits = phone_digits(value)
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise SlotValidationError(
            f"phone must have {MIN_PHONE_DIGITS}-{MAX_PHONE_DIGITS} digits"
        )
    return value


def _normalize_date(value: str, today: date) -> str:
    try:
        parsed = datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        raise SlotValidationError("date must be YYYY-MM-DD") from None
    if parsed < today:
        raise SlotValidationError("date is in the past")
    return parsed.isoformat()


def _normalize_time(value: str, _: date) -> str:
    try:
        parsed = datetime.strptime(str(value).strip(), "%H:%M")
    except ValueError:
        raise SlotValidationError("time must be HH:MM") from None
    return parsed.strftime("%H:%M")


def _normalize_comments(value: str, _: date) -> str:
    value = " ".join(str(value).split())
    if not value:
        raise SlotValidationError("comment is empty")
    return value[:MAX_COMMENT_LENGTH]


class SlotValidator:
    """Validates and normalizes candidate draft values."""

    SLOT_DEFINITIONS: list[SlotDefinition] = [
        SlotDefinition(name="name", display_name="name", prompt_hint="Ask for the guest's name"),
        SlotDefinition(
            name="phone", display_name="phone number", prompt_hint="Ask for a contact number"
        ),
        SlotDefinition(name="date", display_name="date", prompt_hint="Ask which day"),
        SlotDefinition(name="time", display_name="time", prompt_hint="Ask what time"),
        SlotDefinition(
            name="party_size", display_name="number of guests", prompt_hint="Ask how many guests"
        ),
        SlotDefinition(
            name="comments",
            display_name="special requests",
            required=False,
            prompt_hint="Offer to note special requests",
        ),
    ]

    def __init__(self, max_party_size: int = settings.restaurant.max_party_size) -> None:
        self.max_party_size = max_party_size
        self._normalizers: dict[str, Callable[[Any, date], Any]] = {
            "name": _normalize_name,
            "phone": _normalize_phone,
            "date": _normalize_date,
            "time": _normalize_time,
            "party_size": self._normalize_party_size,
            "comments": _normalize_comments,
        }

    def _normalize_party_size(self, value: Any, _: date) -> int:
        try:
            size = int(value)
        except (TypeError, ValueError):
            raise SlotValidationError("party size must be a whole number") from None
        if isinstance(value, float) and not value.is_integer():
            raise SlotValidationError("party size must be a whole number")
        if not 1 <= size <= self.max_party_size:
            raise SlotValidationError(f"party size must be between 1 and {self.max_party_size}")
        return size

    def get_definition(self, name: str) -> SlotDefinition:
        for defn in self.SLOT_DEFINITIONS:
            if defn.name == name:
                return defn
        raise ValueError(f"Unknown slot: {name}")

    def validate(
        self, name: str, value: Any, today: date
    ) -> tuple[bool, Optional[Any], Optional[str]]:
        """
        Validate and normalize one value.

        Returns:
            (ok, normalized_value, reason). ``reason`` is set only when ok is False.
        """
        self.get_definition(name)
        try:
            normalized = self._normalizers[name](value, today)
        except SlotValidationError as exc:
            logger.debug("Slot '%s' rejected %r: %s", name, value, exc)
            return False, None, str(exc)
        return True, normalized, None

    def display_names(self, names: list[str]) -> list[str]:
        return [self.get_definition(n).display_name for n in names]

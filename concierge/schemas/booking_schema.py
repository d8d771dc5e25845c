"""Booking draft, reservation records, and the closed set of backend actions."""

import logging
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class GatheringInfo(BaseModel):
    """The booking draft accumulated across turns."""

    name: Optional[str] = None
    phone: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    party_size: Optional[int] = None
    comments: Optional[str] = None

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("name", "phone", "date", "time", "party_size")
    IDENTITY_FIELDS: ClassVar[tuple[str, ...]] = ("name", "phone")

    def merge(self, delta: dict[str, Any]) -> list[str]:
        """Apply validated values. None never overwrites an existing value.

        Returns the names of fields whose value actually changed.
        """
        changed = []
        for key, value in delta.items():
            if key not in type(self).model_fields or value is None:
                continue
            if getattr(self, key) != value:
                setattr(self, key, value)
                changed.append(key)
        return changed

    def clear(self) -> None:
        """Reset every field at once."""
        for key in type(self).model_fields:
            setattr(self, key, None)

    def missing_fields(self) -> list[str]:
        return [f for f in self.REQUIRED_FIELDS if getattr(self, f) is None]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def is_empty(self) -> bool:
        return all(getattr(self, f) is None for f in type(self).model_fields)

    def has_booking_details(self) -> bool:
        return any(getattr(self, f) is not None for f in ("date", "time", "party_size"))

    def signature(self) -> str:
        return "|".join(str(getattr(self, f) or "") for f in type(self).model_fields)


class GuestProfile(BaseModel):
    """Guest history returned by the reservation backend."""

    name: Optional[str] = None
    phone: Optional[str] = None
    total_bookings: int = 0
    last_visit: Optional[str] = None
    common_party_size: Optional[int] = None
    frequent_requests: list[str] = Field(default_factory=list)


class TouchedReservation(BaseModel):
    """A reservation created or changed in this session, used for 'cancel it'."""

    reservation_id: str
    touched_at: datetime
    expires_at: datetime
    operation: str
    name: Optional[str] = None
    phone: Optional[str] = None


class Suggestion(BaseModel):
    """A value proposed from guest history. Never merged without a yes."""

    field: Literal["party_size", "comments"]
    value: Union[int, str]
    source: str = "guest_history"


class TimeSlot(BaseModel):
    date: str
    time: str
    tables_available: int = 0


class AvailabilityResult(BaseModel):
    available: bool
    slots: list[TimeSlot] = Field(default_factory=list)
    message: str = ""


class AvailabilityFailure(BaseModel):
    """The last failed availability check, kept until the guest picks new details."""

    date: str
    time: str
    party_size: int
    alternatives: list[TimeSlot] = Field(default_factory=list)
    at: datetime


class ConfirmedIdentity(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    source: str


class ReservationRecord(BaseModel):
    """A reservation as echoed back by the backend.

    Echoed fields are optional: a backend may omit any of them, and
    callers must not fill the gaps from the draft.
    """

    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    party_size: Optional[int] = None
    comments: Optional[str] = None
    status: str = "confirmed"


# ---------------------------------------------------------------------- #
# Actions
# ---------------------------------------------------------------------- #


class CheckAvailabilityAction(BaseModel):
    kind: Literal["check_availability"] = "check_availability"
    date: str
    time: str
    party_size: int = Field(ge=1)


class FindAlternativesAction(BaseModel):
    kind: Literal["find_alternatives"] = "find_alternatives"
    date: str
    time: str
    party_size: int = Field(ge=1)


class CreateReservationAction(BaseModel):
    kind: Literal["create_reservation"] = "create_reservation"
    name: str
    phone: str
    date: str
    time: str
    party_size: int = Field(ge=1)
    comments: Optional[str] = None
    confirmed_name: Optional[str] = None


class ReservationChanges(BaseModel):
    date: Optional[str] = None
    time: Optional[str] = None
    party_size: Optional[int] = Field(default=None, ge=1)
    comments: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ModifyReservationAction(BaseModel):
    kind: Literal["modify_reservation"] = "modify_reservation"
    reservation_id: Optional[str] = None
    changes: ReservationChanges = Field(default_factory=ReservationChanges)
    reason: str = ""


class CancelReservationAction(BaseModel):
    kind: Literal["cancel_reservation"] = "cancel_reservation"
    reservation_id: Optional[str] = None
    reason: str = ""
    confirmed: bool = False


class FindReservationAction(BaseModel):
    kind: Literal["find_reservation"] = "find_reservation"
    identifier: str
    identifier_type: Literal["phone", "name", "id", "auto"] = "auto"


class GetGuestHistoryAction(BaseModel):
    kind: Literal["get_guest_history"] = "get_guest_history"
    guest_key: str


Action = Annotated[
    Union[
        CheckAvailabilityAction,
        FindAlternativesAction,
        CreateReservationAction,
        ModifyReservationAction,
        CancelReservationAction,
        FindReservationAction,
        GetGuestHistoryAction,
    ],
    Field(discriminator="kind"),
]

SideEffectAction = Annotated[
    Union[CreateReservationAction, ModifyReservationAction, CancelReservationAction],
    Field(discriminator="kind"),
]

SIDE_EFFECT_KINDS: frozenset[str] = frozenset(
    {"create_reservation", "modify_reservation", "cancel_reservation"}
)

_action_adapter: TypeAdapter = TypeAdapter(Action)


def parse_actions(
    raw: Any, allowed: Optional[frozenset[str]] = None
) -> tuple[list[Any], list[str]]:
    """Validate model-requested actions once, at the persona boundary.

    Returns (actions, dropped) where dropped lists a short reason for every
    entry that was not a well-formed, permitted action.
    """
    if not isinstance(raw, list):
        return [], [] if raw in (None, "") else ["actions is not a list"]

    actions: list[Any] = []
    dropped: list[str] = []
    for entry in raw:
        kind = entry.get("kind") if isinstance(entry, dict) else None
        if allowed is not None and kind not in allowed:
            dropped.append(f"{kind!r} not allowed")
            continue
        try:
            actions.append(_action_adapter.validate_python(entry))
        except ValidationError as exc:
            dropped.append(f"{kind!r} invalid: {exc.error_count()} error(s)")
    if dropped:
        logger.debug("Dropped actions: %s", dropped)
    return actions, dropped

"""
Per-session conversation state.

The session is a flat draft plus a small gate state machine. The gate is a
single tagged field, so a session can never hold a pending confirmation and
a pending identity clarification at the same time.
"""

import logging
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from concierge.schemas.booking_schema import (
    AvailabilityFailure,
    ConfirmedIdentity,
    CreateReservationAction,
    GatheringInfo,
    GuestProfile,
    ReservationRecord,
    SideEffectAction,
    Suggestion,
    TouchedReservation,
)
from concierge.schemas.conversation_schema import (
    Channel,
    HandoffRecord,
    LanguageState,
    Persona,
    Role,
    Turn,
    utcnow,
)

logger = logging.getLogger(__name__)


class IdleGate(BaseModel):
    kind: Literal["idle"] = "idle"


class AwaitingConfirmation(BaseModel):
    """A queued side-effecting action and the read-back shown to the guest."""

    kind: Literal["awaiting_confirmation"] = "awaiting_confirmation"
    action: SideEffectAction
    summary: str
    attempts: int = 0
    opened_at: datetime = Field(default_factory=utcnow)


class AwaitingIdentityClarification(BaseModel):
    """A create that failed because the stored guest name differs."""

    kind: Literal["awaiting_identity_clarification"] = "awaiting_identity_clarification"
    action: CreateReservationAction
    db_name: str
    request_name: str
    attempts: int = 0
    opened_at: datetime = Field(default_factory=utcnow)


GateState = Annotated[
    Union[IdleGate, AwaitingConfirmation, AwaitingIdentityClarification],
    Field(discriminator="kind"),
]


class Session(BaseModel):
    """The unit of conversation state, persisted as JSON between turns."""

    session_id: str
    tenant_id: str
    channel: Channel = Channel.WEB
    guest_key: Optional[str] = None
    timezone: str = "UTC"
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)

    turns: list[Turn] = Field(default_factory=list)
    turn_count: int = 0
    language: LanguageState = Field(default_factory=LanguageState)

    current_persona: Persona = Persona.NEW_BOOKING
    persona_turn_count: int = 0
    handoffs: list[HandoffRecord] = Field(default_factory=list)

    draft: GatheringInfo = Field(default_factory=GatheringInfo)
    gate: GateState = Field(default_factory=IdleGate)

    guest_profile: Optional[GuestProfile] = None
    guest_profile_fetched: bool = False

    active_reservation_id: Optional[str] = None
    found_reservations: list[ReservationRecord] = Field(default_factory=list)
    recently_touched: list[TouchedReservation] = Field(default_factory=list)
    confirmed_identity: Optional[ConfirmedIdentity] = None

    suggestions: list[Suggestion] = Field(default_factory=list)
    offered_suggestion: Optional[Suggestion] = None
    declined_suggestions: list[str] = Field(default_factory=list)
    availability_failure: Optional[AvailabilityFailure] = None
    time_clarification_pending: bool = False
    declined_draft_signature: Optional[str] = None
    booked_draft_signature: Optional[str] = None
    bookings_completed: int = 0

    # ------------------------------------------------------------------ #
    # Persona
    # ------------------------------------------------------------------ #

    def switch_persona(
        self, to: Persona, trigger: str, reasoning: str
    ) -> Optional[HandoffRecord]:
        """Change the active persona, always recording why.

        Returns the handoff record, or None when ``to`` is already active.
        """
        if to == self.current_persona:
            return None
        if not reasoning:
            raise ValueError("A persona switch must carry a reason")
        record = HandoffRecord(
            from_persona=self.current_persona,
            to_persona=to,
            trigger=trigger,
            reasoning=reasoning,
        )
        self.handoffs.append(record)
        self.current_persona = to
        self.persona_turn_count = 0
        logger.info(
            "Persona handoff %s -> %s (%s): %s",
            record.from_persona.value, to.value, trigger, reasoning,
        )
        return record

    # ------------------------------------------------------------------ #
    # Gate views
    # ------------------------------------------------------------------ #

    @property
    def pending_confirmation(self) -> Optional[AwaitingConfirmation]:
        return self.gate if isinstance(self.gate, AwaitingConfirmation) else None

    @property
    def pending_identity_clarification(self) -> Optional[AwaitingIdentityClarification]:
        return self.gate if isinstance(self.gate, AwaitingIdentityClarification) else None

    @property
    def gate_is_idle(self) -> bool:
        return isinstance(self.gate, IdleGate)

    # ------------------------------------------------------------------ #
    # Transcript
    # ------------------------------------------------------------------ #

    def add_turn(self, role: Role, text: str, action_calls: tuple[str, ...] = ()) -> Turn:
        turn = Turn(role=role, text=text, action_calls=action_calls)
        self.turns.append(turn)
        self.last_activity = turn.timestamp
        return turn

    def recent_turns(self, limit: int) -> list[Turn]:
        return self.turns[-limit:] if limit > 0 else []

    def last_assistant_text(self) -> Optional[str]:
        for turn in reversed(self.turns):
            if turn.role == Role.ASSISTANT:
                return turn.text
        return None

    def assistant_texts(self) -> list[str]:
        return [t.text for t in self.turns if t.role == Role.ASSISTANT]

    # ------------------------------------------------------------------ #
    # Reservation references
    # ------------------------------------------------------------------ #

    def prune_touched(self, now: datetime) -> int:
        """Drop expired touched reservations. Returns how many were removed."""
        before = len(self.recently_touched)
        self.recently_touched = [t for t in self.recently_touched if t.expires_at > now]
        return before - len(self.recently_touched)

    def has_existing_context(self) -> bool:
        return bool(self.active_reservation_id or self.found_reservations)

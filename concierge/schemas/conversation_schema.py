"""Conversation-level enums and transcript models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Persona(str, Enum):
    """Behavioral modes the assistant can reply in."""

    NEW_BOOKING = "new_booking"
    EXISTING_BOOKING = "existing_booking"
    NEUTRAL = "neutral"
    AVAILABILITY = "availability"


class Channel(str, Enum):
    WEB = "web"
    MESSAGING = "messaging"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """A single transcript entry. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    role: Role
    text: str
    timestamp: datetime = Field(default_factory=utcnow)
    action_calls: tuple[str, ...] = ()


class LanguageState(BaseModel):
    """Current conversation language and its lock metadata."""

    code: str = "en"
    locked: bool = False
    confidence: float = 0.0
    first_message: Optional[str] = None
    locked_at: Optional[datetime] = None
    reasoning: str = ""


class HandoffRecord(BaseModel):
    """A recorded change of the active persona."""

    model_config = ConfigDict(frozen=True)

    from_persona: Persona
    to_persona: Persona
    at: datetime = Field(default_factory=utcnow)
    trigger: str
    reasoning: str


class TurnResult(BaseModel):
    """What the caller of handle_message gets back."""

    reply: str
    booking_created: bool = False
    reservation_id: Optional[str] = None
    blocked: bool = False
    persona: Persona
    handoff: Optional[HandoffRecord] = None

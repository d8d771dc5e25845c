"""Neutral persona, the idle state after a completed action."""

from typing import Optional

from concierge.agents.base import PersonaAgent
from concierge.conversation.extractor import ExtractionResult
from concierge.prompts.system_prompts import NEUTRAL_SYSTEM_PROMPT
from concierge.schemas.conversation_schema import Persona
from concierge.schemas.session_schema import Session


class NeutralAgent(PersonaAgent):
    persona = Persona.NEUTRAL
    system_prompt = NEUTRAL_SYSTEM_PROMPT
    allowed_actions = frozenset({"check_availability", "find_reservation"})

    def context_lines(self, session: Session, extraction: Optional[ExtractionResult]) -> list[str]:
        lines = [f"Completed bookings in this chat: {session.bookings_completed}"]
        if session.active_reservation_id:
            lines.append(f"Last reservation handled: {session.active_reservation_id}")
        return lines

"""Existing-booking persona for looking up and changing reservations."""

import json
from typing import Optional

from concierge.agents.base import PersonaAgent
from concierge.conversation.extractor import ExtractionResult
from concierge.prompts.messages import render
from concierge.prompts.system_prompts import EXISTING_BOOKING_SYSTEM_PROMPT
from concierge.schemas.conversation_schema import Persona
from concierge.schemas.session_schema import Session


class ExistingBookingAgent(PersonaAgent):
    persona = Persona.EXISTING_BOOKING
    system_prompt = EXISTING_BOOKING_SYSTEM_PROMPT
    allowed_actions = frozenset({
        "find_reservation", "modify_reservation", "cancel_reservation",
        "check_availability", "find_alternatives",
    })

    def context_lines(self, session: Session, extraction: Optional[ExtractionResult]) -> list[str]:
        lines = []
        if extraction is not None and extraction.fields:
            lines.append(
                "Details in this message: " + json.dumps(extraction.fields, ensure_ascii=False)
            )
        if session.active_reservation_id:
            lines.append(f"Reservation in focus: {session.active_reservation_id}")
        if session.found_reservations:
            found = [r.model_dump(exclude_none=True) for r in session.found_reservations]
            lines.append("Reservations found: " + json.dumps(found, ensure_ascii=False))
        if session.recently_touched:
            touched = [f"{t.reservation_id} ({t.operation})" for t in session.recently_touched]
            lines.append(f"Touched in this chat: {', '.join(touched)}")
        if not lines:
            lines.append("No reservation found yet")
        return lines

    def fallback_reply(self, session: Session, extraction: Optional[ExtractionResult] = None) -> str:
        if not session.has_existing_context():
            return render("which_reservation", session.language.code)
        return render("anything_else", session.language.code)

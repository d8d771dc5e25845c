"""Availability specialist: suggests other slots after a failed check."""

from typing import Optional

from concierge.agents.base import PersonaAgent
from concierge.conversation.extractor import ExtractionResult
from concierge.prompts.messages import render
from concierge.prompts.system_prompts import AVAILABILITY_SYSTEM_PROMPT
from concierge.schemas.conversation_schema import Persona
from concierge.schemas.session_schema import Session


class AvailabilityAgent(PersonaAgent):
    persona = Persona.AVAILABILITY
    system_prompt = AVAILABILITY_SYSTEM_PROMPT
    allowed_actions = frozenset({"check_availability", "find_alternatives"})

    def context_lines(self, session: Session, extraction: Optional[ExtractionResult]) -> list[str]:
        failure = session.availability_failure
        if failure is None:
            return ["No failed availability check on record"]
        lines = [f"Unavailable: {failure.date} {failure.time} for {failure.party_size}"]
        if failure.alternatives:
            lines.append("Known free slots: " + ", ".join(f"{s.date} {s.time}" for s in failure.alternatives))
        else:
            lines.append("No alternatives searched yet: call find_alternatives")
        return lines

    def fallback_reply(self, session: Session, extraction: Optional[ExtractionResult] = None) -> str:
        language = session.language.code
        failure = session.availability_failure
        if failure is None or not failure.alternatives:
            return render("availability_check_failed", language)
        slots = ", ".join(f"{s.date} {s.time}" for s in failure.alternatives)
        return render("alternatives", language, slots=slots)

"""
New-booking persona. Gathers the draft one question at a time.

The persona never books by itself: when the draft is complete the
orchestrator proposes the create and the gate asks the guest to confirm.
"""

import json
from typing import Optional

from concierge.agents.base import PersonaAgent
from concierge.conversation.extractor import ExtractionResult
from concierge.prompts.messages import render
from concierge.prompts.system_prompts import NEW_BOOKING_SYSTEM_PROMPT
from concierge.schemas.conversation_schema import Persona
from concierge.schemas.session_schema import Session


class NewBookingAgent(PersonaAgent):
    """Slot-gathering specialist for a new table reservation."""

    persona = Persona.NEW_BOOKING
    system_prompt = NEW_BOOKING_SYSTEM_PROMPT
    allowed_actions = frozenset({"check_availability", "find_alternatives", "create_reservation"})

    def context_lines(self, session: Session, extraction: Optional[ExtractionResult]) -> list[str]:
        lines = super().context_lines(session, extraction)
        missing = session.draft.missing_fields()
        lines.append(f"Still missing: {', '.join(missing) if missing else 'nothing'}")
        if extraction is not None:
            if extraction.rejected:
                lines.append(
                    "Rejected values (ask the guest to correct): "
                    + json.dumps(extraction.rejected, ensure_ascii=False)
                )
            if extraction.time_range and not extraction.time_range_repeated:
                lines.append(f"Guest gave a time range {extraction.time_range}: ask for one exact time")
        if session.offered_suggestion is not None:
            offered = session.offered_suggestion
            lines.append(
                f"Ask whether the usual {offered.field.replace('_', ' ')} ({offered.value}) applies"
            )
        failure = session.availability_failure
        if failure is not None:
            slots = ", ".join(s.time for s in failure.alternatives) or "none found"
            lines.append(
                f"{failure.date} {failure.time} for {failure.party_size} is full; free nearby: {slots}"
            )
        return lines

    def fallback_reply(self, session: Session, extraction: Optional[ExtractionResult] = None) -> str:
        language = session.language.code
        if extraction is not None and extraction.time_range and not extraction.time_range_repeated:
            return render("time_range_question", language, range=extraction.time_range)
        failure = session.availability_failure
        if failure is not None:
            text = render(
                "unavailable", language,
                date=failure.date, time=failure.time, party_size=failure.party_size,
            )
            if failure.alternatives:
                slots = ", ".join(s.time for s in failure.alternatives)
                text = f"{text} {render('alternatives', language, slots=slots)}"
            return text
        offered = session.offered_suggestion
        if offered is not None and offered.field == "party_size":
            return render("suggestion_party_size", language, value=offered.value)
        if session.draft.missing_fields():
            return render("ask_missing", language, fields=self.missing_fields_text(session))
        return render("anything_else", language)

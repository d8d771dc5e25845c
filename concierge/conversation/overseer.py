"""
Persona router ("overseer").

Decides per turn which persona owns the reply and whether the guest has
started a brand-new booking. Deterministic rules run first, in priority
order; the generation call only settles what they leave open:

1. Explicit switch phrases ("book another one", "cancel my reservation").
2. A failed availability check plus a request for alternatives.
3. The availability specialist hands back once the guest picks new details.
4. Continuity: a persona in the middle of a task keeps the turn, and
   time/quantity follow-ups stay with the active persona.
5. Stuck-loop detection: the same assistant reply repeated.
6. Generation call.

The router never chooses the neutral persona; only a completed action does.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from concierge.config import AppConfig, settings
from concierge.conversation.extractor import ExtractionResult
from concierge.conversation.language import is_ambiguous
from concierge.conversation.lexicon import (
    ALTERNATIVES_PHRASES,
    EXISTING_BOOKING_PHRASES,
    NEW_BOOKING_PHRASES,
    contains_phrase,
)
from concierge.llm.base import GenerationError, GenerationOptions
from concierge.llm.service import ProviderChain
from concierge.prompts.messages import render
from concierge.prompts.prompt_templates import build_overseer_messages
from concierge.schemas.booking_schema import AvailabilityFailure
from concierge.schemas.conversation_schema import Persona
from concierge.schemas.session_schema import Session
from concierge.utils import fold_text

logger = logging.getLogger(__name__)

_DETAIL_FIELDS = ("date", "time", "party_size")


@dataclass(frozen=True)
class OverseerDecision:
    persona: Persona
    reasoning: str
    trigger: str
    intervention: Optional[str] = None
    is_new_booking_request: bool = False


def is_simple_continuation(message: str, extracted: Optional[ExtractionResult] = None) -> bool:
    """Short answers and pure detail follow-ups never start a new booking."""
    if is_ambiguous(message):
        return True
    if extracted is not None and extracted.fields and len(message.split()) <= 6:
        return set(extracted.fields) <= {"date", "time", "party_size", "name", "phone", "comments"}
    return False


class Overseer:
    """Routes each message to a persona."""

    def __init__(self, generator: ProviderChain, config: AppConfig = settings) -> None:
        self.generator = generator
        self.config = config

    async def decide(
        self,
        session: Session,
        message: str,
        extracted: Optional[ExtractionResult] = None,
        availability_failure: Optional[AvailabilityFailure] = None,
    ) -> OverseerDecision:
        current = session.current_persona
        failure = availability_failure or session.availability_failure
        fields = extracted.fields if extracted is not None else {}
        picked_details = any(f in fields for f in _DETAIL_FIELDS)

        if contains_phrase(message, NEW_BOOKING_PHRASES):
            return OverseerDecision(
                Persona.NEW_BOOKING, "guest explicitly asked for another booking",
                "explicit_phrase", is_new_booking_request=True,
            )
        if contains_phrase(message, EXISTING_BOOKING_PHRASES):
            return OverseerDecision(
                Persona.EXISTING_BOOKING, "guest referred to an existing reservation",
                "explicit_phrase",
            )

        if failure is not None and current != Persona.AVAILABILITY:
            if contains_phrase(message, ALTERNATIVES_PHRASES):
                return OverseerDecision(
                    Persona.AVAILABILITY, "guest wants alternatives after a failed check",
                    "availability_failure",
                )

        if current == Persona.AVAILABILITY and picked_details:
            return OverseerDecision(
                Persona.NEW_BOOKING, "guest picked new details after the alternative search",
                "details_selected",
            )

        continuity = self._continuity(session, message, fields)
        if continuity is not None:
            return continuity

        intervention = self._stuck_intervention(session)
        if intervention is not None:
            return OverseerDecision(
                self._fallback_persona(current), "assistant is repeating itself",
                "stuck_loop", intervention=intervention,
            )

        return await self._ask_model(session, message, extracted)

    def _continuity(
        self, session: Session, message: str, fields: dict
    ) -> Optional[OverseerDecision]:
        current = session.current_persona

        if current == Persona.NEW_BOOKING and (not session.draft.is_empty() or fields):
            return OverseerDecision(current, "continuing the booking in progress", "continuity")
        if current == Persona.EXISTING_BOOKING and (session.has_existing_context() or fields):
            # "a different time" while managing a reservation refers to that reservation
            return OverseerDecision(current, "continuing work on an existing reservation", "continuity")
        if current == Persona.AVAILABILITY and session.availability_failure is not None:
            return OverseerDecision(current, "still searching alternatives", "continuity")
        if current == Persona.NEUTRAL and any(f in fields for f in _DETAIL_FIELDS):
            return OverseerDecision(
                Persona.NEW_BOOKING, "guest gave booking details after a completed request",
                "details_after_completion", is_new_booking_request=True,
            )
        if is_ambiguous(message):
            return OverseerDecision(current, "short reply stays with the active persona", "continuity")
        return None

    def _stuck_intervention(self, session: Session) -> Optional[str]:
        threshold = self.config.guardrails.stuck_repeat_threshold
        replies = [fold_text(t) for t in session.assistant_texts()[-threshold:]]
        if len(replies) < threshold or len(set(replies)) != 1:
            return None
        logger.warning("Stuck loop: last %d replies identical", threshold)
        return render("stuck_intervention", session.language.code)

    async def _ask_model(
        self, session: Session, message: str, extracted: Optional[ExtractionResult]
    ) -> OverseerDecision:
        current = session.current_persona
        failure = session.availability_failure
        messages = build_overseer_messages(
            message=message,
            recent=session.recent_turns(self.config.session.transcript_window),
            current_persona=current.value,
            draft={k: v for k, v in session.draft.model_dump().items() if v is not None},
            has_existing_context=session.has_existing_context(),
            availability_failure=(
                f"{failure.date} {failure.time} for {failure.party_size}" if failure else None
            ),
        )
        options = GenerationOptions(
            purpose="overseer",
            max_tokens=150,
            temperature=self.config.model.decision_temperature,
        )
        try:
            data = await self.generator.generate_json(messages, options)
            persona = Persona(str(data.get("persona", "")))
        except (GenerationError, ValueError):
            fallback = self._fallback_persona(current)
            logger.warning("Overseer decision failed; keeping %s", fallback.value)
            return OverseerDecision(fallback, "decision call failed, keeping persona", "fallback")

        reasoning = str(data.get("reasoning") or "model routing decision")
        is_new = bool(data.get("is_new_booking_request", False))

        if persona == Persona.NEUTRAL:
            persona = self._fallback_persona(current)
            reasoning = f"{reasoning} (neutral is reserved for completed actions)"
        if is_new and (persona != Persona.NEW_BOOKING or is_simple_continuation(message, extracted)):
            logger.debug("Ignoring new-booking flag for continuation message")
            is_new = False
        return OverseerDecision(persona, reasoning, "model", is_new_booking_request=is_new)

    @staticmethod
    def _fallback_persona(current: Persona) -> Persona:
        return Persona.NEW_BOOKING if current == Persona.NEUTRAL else current

"""
Confirm-before-commit gate.

Holds at most one open question per session: either a queued
side-effecting action waiting for a yes/no, or a name conflict waiting for
the guest to pick one of two names. Moves are validated by
``GateStateMachine``; the gate state itself lives on the session.
"""

import logging
import re
from enum import Enum
from typing import Optional

from concierge.config import AppConfig, settings
from concierge.conversation.lexicon import yes_or_no
from concierge.conversation.state_machine import GateStateMachine, GateStatus, GateTrigger
from concierge.llm.base import GenerationError, GenerationOptions
from concierge.llm.service import ProviderChain
from concierge.prompts.messages import render
from concierge.prompts.prompt_templates import (
    build_confirmation_classifier_messages,
    build_name_choice_messages,
)
from concierge.schemas.booking_schema import CreateReservationAction
from concierge.schemas.conversation_schema import Turn
from concierge.schemas.session_schema import (
    AwaitingConfirmation,
    AwaitingIdentityClarification,
    IdleGate,
    Session,
)
from concierge.utils import fold_text, strip_punctuation

logger = logging.getLogger(__name__)

# Longer replies go to the classifier even when a yes/no word is present:
# "I don't know, maybe" contains "don't" but is not a refusal.
_PHRASE_TABLE_MAX_WORDS = 6
_CHOICE_INDEX_RE = re.compile(r"^\s*(?:#|no\.?|option|вариант|opcija)?\s*([12])\s*[).]?\s*$", re.IGNORECASE)


class ConfirmationDecision(str, Enum):
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    UNCLEAR = "unclear"


def gate_status(session: Session) -> GateStatus:
    return GateStatus(session.gate.kind)


def match_candidate_name(message: str, db_name: str, request_name: str) -> Optional[str]:
    """Deterministic name pick: exactly one candidate appears as whole words.

    "use Anna" picks "Anna" over "Ana"; a reply naming both, or neither,
    returns None. "1" and "2" pick by position.
    """
    index = _CHOICE_INDEX_RE.match(message)
    if index:
        return db_name if index.group(1) == "1" else request_name

    folded = fold_text(strip_punctuation(message))
    matches = [
        candidate for candidate in (db_name, request_name)
        if re.search(r"(?<!\w)" + re.escape(fold_text(candidate)) + r"(?!\w)", folded)
    ]
    if len(matches) == 1:
        return matches[0]
    return None


class ConfirmationGate:
    """Opens, classifies, and closes the single pending question of a session."""

    def __init__(self, generator: ProviderChain, config: AppConfig = settings) -> None:
        self.generator = generator
        self.config = config
        self.machine = GateStateMachine()

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def open_confirmation(self, session: Session, action, summary: str) -> AwaitingConfirmation:
        """Queue a side-effecting action behind a yes/no question.

        Raises:
            GateBusyError: If another question is already open.
        """
        self.machine.transition(gate_status(session), GateTrigger.CONFIRMATION_REQUESTED)
        session.gate = AwaitingConfirmation(action=action, summary=summary)
        logger.info("Confirmation gate opened for %s", action.kind)
        return session.gate

    def refresh_confirmation(self, session: Session, action, summary: str) -> AwaitingConfirmation:
        """Replace the queued snapshot after the guest corrected a value."""
        self.machine.transition(gate_status(session), GateTrigger.CORRECTED)
        session.gate = AwaitingConfirmation(action=action, summary=summary)
        logger.info("Confirmation snapshot refreshed for %s", action.kind)
        return session.gate

    def open_identity_clarification(
        self,
        session: Session,
        action: CreateReservationAction,
        db_name: str,
        request_name: str,
    ) -> AwaitingIdentityClarification:
        """Hold a create that hit a name conflict until the guest picks a name.

        Raises:
            GateBusyError: If another question is already open.
        """
        self.machine.transition(gate_status(session), GateTrigger.NAME_CONFLICT)
        session.gate = AwaitingIdentityClarification(
            action=action, db_name=db_name, request_name=request_name
        )
        logger.info("Identity clarification opened: %r vs %r", db_name, request_name)
        return session.gate

    def record_unclear(self, session: Session) -> int:
        """Count an unclear reply. Returns the attempts made so far."""
        self.machine.transition(gate_status(session), GateTrigger.UNCLEAR)
        gate = session.gate
        gate.attempts += 1
        return gate.attempts

    def close(self, session: Session, trigger: GateTrigger) -> None:
        self.machine.transition(gate_status(session), trigger)
        session.gate = IdleGate()
        logger.debug("Gate closed (%s)", trigger.value)

    def reprompt(self, session: Session, language: str) -> str:
        """Ask again after an unclear reply; turn direct once attempts run out."""
        gate = session.pending_confirmation
        if gate is None:
            return render("direct_yes_no", language)
        if gate.attempts >= self.config.guardrails.max_confirmation_attempts:
            return render("direct_yes_no", language)
        return render("reprompt_yes_no", language, summary=gate.summary)

    # ------------------------------------------------------------------ #
    # Classification
    # ------------------------------------------------------------------ #

    async def classify(
        self,
        message: str,
        summary: str,
        language: str,
        recent: Optional[list[Turn]] = None,
    ) -> ConfirmationDecision:
        """Yes, no, or unclear. Phrase table first, generation call second."""
        if len(message.split()) <= _PHRASE_TABLE_MAX_WORDS:
            verdict = yes_or_no(message)
            if verdict is True:
                return ConfirmationDecision.AFFIRMATIVE
            if verdict is False:
                return ConfirmationDecision.NEGATIVE

        options = GenerationOptions(
            purpose="confirmation",
            max_tokens=60,
            temperature=self.config.model.decision_temperature,
        )
        try:
            data = await self.generator.generate_json(
                build_confirmation_classifier_messages(message, summary, recent or []), options
            )
            decision = ConfirmationDecision(str(data.get("decision", "unclear")).lower())
        except (GenerationError, ValueError):
            logger.warning("Confirmation classifier failed; treating reply as unclear")
            return ConfirmationDecision.UNCLEAR
        logger.debug("Classifier decision for %r (%s): %s", message, language, decision.value)
        return decision

    async def resolve_name_choice(
        self, message: str, db_name: str, request_name: str, language: str
    ) -> Optional[str]:
        """Map a reply to one of the two exact candidate names, or None."""
        picked = match_candidate_name(message, db_name, request_name)
        if picked is not None:
            return picked

        options = GenerationOptions(
            purpose="name_choice",
            max_tokens=60,
            temperature=self.config.model.decision_temperature,
        )
        try:
            data = await self.generator.generate_json(
                build_name_choice_messages(message, db_name, request_name), options
            )
        except GenerationError:
            logger.warning("Name choice call failed")
            return None

        choice = data.get("choice")
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        if confidence < self.config.guardrails.name_choice_confidence:
            logger.debug("Name choice %r below threshold (%.2f)", choice, confidence)
            return None
        if not isinstance(choice, str):
            return None
        for candidate in (db_name, request_name):
            if choice == candidate:
                return candidate
        logger.info("Name choice %r is not one of the candidates (%s)", choice, language)
        return None

"""
Shared persona behavior: prompt assembly and response parsing.

A persona is a system prompt, the set of action kinds it may request, and
a scripted fallback reply used when every provider is down. The model
answers with ``{"reply": ..., "actions": [...]}``; actions are validated
once here and anything outside the persona's allowance is dropped.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

from concierge.config import AppConfig, settings
from concierge.conversation.extractor import ExtractionResult
from concierge.llm.base import ChatMessage
from concierge.prompts.messages import field_labels, render
from concierge.schemas.booking_schema import parse_actions
from concierge.schemas.conversation_schema import Persona
from concierge.schemas.session_schema import Session

logger = logging.getLogger(__name__)


@dataclass
class PersonaResponse:
    reply: str
    actions: list[Any] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)


class PersonaAgent:
    """Base class for the four reply personas."""

    persona: ClassVar[Persona]
    system_prompt: ClassVar[str]
    allowed_actions: ClassVar[frozenset[str]] = frozenset()

    def __init__(self, config: AppConfig = settings) -> None:
        self.config = config

    def build_messages(
        self,
        session: Session,
        message: str,
        extraction: Optional[ExtractionResult] = None,
        notes: Optional[list[str]] = None,
    ) -> list[ChatMessage]:
        lines = [f"Conversation language: {session.language.code}"]
        lines.extend(self.context_lines(session, extraction))
        lines.extend(notes or [])
        system = f"{self.system_prompt}\n\nCURRENT STATE:\n" + "\n".join(f"- {line}" for line in lines)

        messages = [ChatMessage("system", system)]
        for turn in session.recent_turns(self.config.session.transcript_window):
            messages.append(ChatMessage(turn.role.value, turn.text))
        messages.append(ChatMessage("user", message))
        return messages

    def context_lines(self, session: Session, extraction: Optional[ExtractionResult]) -> list[str]:
        """Persona-specific facts for the prompt. Subclasses extend."""
        known = {k: v for k, v in session.draft.model_dump().items() if v is not None}
        return [f"Booking details known: {json.dumps(known, ensure_ascii=False)}"]

    def parse_response(self, data: dict[str, Any]) -> PersonaResponse:
        reply = data.get("reply")
        if not isinstance(reply, str):
            reply = ""
        actions, dropped = parse_actions(data.get("actions"), self.allowed_actions)
        if dropped:
            logger.info("%s: dropped actions %s", self.persona.value, dropped)
        return PersonaResponse(reply=reply.strip(), actions=actions, dropped=dropped)

    def fallback_reply(self, session: Session, extraction: Optional[ExtractionResult] = None) -> str:
        """Scripted reply when no provider answered."""
        return render("anything_else", session.language.code)

    @staticmethod
    def missing_fields_text(session: Session) -> str:
        labels = field_labels(session.language.code)
        return ", ".join(labels[f].lower() for f in session.draft.missing_fields())

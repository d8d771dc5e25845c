"""
Field extraction with an anti-hallucination gate.

Pipeline per message:
1. Deterministic time normalization (typo'd separators, am/pm, ranges).
2. One generation call asking only for values present in this message.
3. Grounding check per candidate; ungrounded candidates are dropped.
4. Per-language headcount words ("впятером", "zu zweit").
5. Guest-history suggestions, merged only after an explicit yes.
6. Validation and normalization of everything that survived.

The extractor never mutates the session; it returns a validated delta.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from concierge.config import AppConfig, settings
from concierge.conversation.grounding import check_grounding, party_size_from_words
from concierge.conversation.language import script_language
from concierge.conversation.lexicon import yes_or_no
from concierge.conversation.slot_manager import SlotValidator
from concierge.conversation.time_normalization import normalize_time_tokens
from concierge.llm.base import GenerationError, GenerationOptions
from concierge.llm.service import ProviderChain
from concierge.prompts.prompt_templates import build_extraction_messages
from concierge.schemas.booking_schema import GatheringInfo, Suggestion
from concierge.schemas.session_schema import Session
from concierge.utils import truncate

logger = logging.getLogger(__name__)

FIELD_ORDER: tuple[str, ...] = ("name", "phone", "date", "time", "party_size", "comments")


def today_in(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()


@dataclass
class ExtractionResult:
    """Validated delta for the draft plus what was rejected and why."""

    fields: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    missing_fields: list[str] = field(default_factory=list)
    rejected: dict[str, str] = field(default_factory=dict)
    dropped: list[str] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    suggestion_accepted: Optional[Suggestion] = None
    suggestion_declined: Optional[Suggestion] = None
    time_range: Optional[str] = None
    time_range_repeated: bool = False
    normalized_text: str = ""

    @property
    def has_fields(self) -> bool:
        return bool(self.fields)


class FieldExtractor:
    """Turns free text into a grounded, validated draft delta."""

    def __init__(
        self,
        generator: ProviderChain,
        validator: Optional[SlotValidator] = None,
        config: AppConfig = settings,
        today_fn: Callable[[str], date] = today_in,
    ) -> None:
        self.generator = generator
        self.config = config
        self.validator = validator or SlotValidator(config.restaurant.max_party_size)
        self._today_fn = today_fn

    async def extract(self, message: str, session: Session) -> ExtractionResult:
        normalized = normalize_time_tokens(message)
        today = self._today_fn(session.timezone)
        result = ExtractionResult(normalized_text=normalized.text)

        languages = {session.language.code}
        script = script_language(message)
        if script:
            languages.add(script)

        candidates = await self._generate_candidates(message, normalized.text, today, session)
        result.confidence = _clamp(candidates.pop("confidence", 0.8 if candidates else 0.0))

        for name in FIELD_ORDER:
            value = candidates.get(name)
            if value is None or value == "":
                continue
            if name == "time" and normalized.time_range:
                result.dropped.append(name)
                continue
            if not check_grounding(name, value, message, normalized.text, languages):
                result.dropped.append(name)
                logger.info("Dropped ungrounded %s=%r", name, truncate(str(value), 40))
                continue
            self._accept(result, name, value, today)

        if "party_size" not in result.fields and "party_size" not in result.rejected:
            size = party_size_from_words(message, languages)
            if size is not None:
                self._accept(result, "party_size", size, today)

        self._resolve_offered_suggestion(result, message, session, today)
        self._handle_time_range(result, normalized.time_range, session, today)
        result.suggestions = self._suggest(result, session)

        result.missing_fields = [
            f for f in GatheringInfo.REQUIRED_FIELDS
            if getattr(session.draft, f) is None and f not in result.fields
        ]
        if result.fields or result.dropped or result.rejected:
            logger.debug(
                "Extracted %s (dropped=%s rejected=%s)",
                result.fields, result.dropped, result.rejected,
            )
        return result

    async def _generate_candidates(
        self, message: str, normalized: str, today: date, session: Session
    ) -> dict[str, Any]:
        known = {k: v for k, v in session.draft.model_dump().items() if v is not None}
        messages = build_extraction_messages(
            message=message,
            normalized=normalized,
            today=today.isoformat(),
            weekday=today.strftime("%A"),
            last_assistant=session.last_assistant_text(),
            known=known,
        )
        options = GenerationOptions(
            purpose="extraction",
            max_tokens=300,
            temperature=self.config.model.decision_temperature,
        )
        try:
            candidates = await self.generator.generate_json(messages, options)
        except GenerationError:
            logger.warning("Extraction call failed; continuing with deterministic fields only")
            return {}
        return {k: v for k, v in candidates.items() if k in FIELD_ORDER or k == "confidence"}

    def _accept(self, result: ExtractionResult, name: str, value: Any, today: date) -> bool:
        ok, normalized, reason = self.validator.validate(name, value, today)
        if ok:
            result.fields[name] = normalized
            result.rejected.pop(name, None)
        else:
            result.rejected[name] = reason or "invalid"
        return ok

    def _resolve_offered_suggestion(
        self, result: ExtractionResult, message: str, session: Session, today: date
    ) -> None:
        offered = session.offered_suggestion
        if offered is None:
            return
        if offered.field in result.fields:
            # An explicit value wins over the suggestion.
            result.suggestion_declined = offered
            return
        if yes_or_no(message) is True and self._accept(result, offered.field, offered.value, today):
            result.suggestion_accepted = offered
            logger.info("Guest accepted suggested %s=%r", offered.field, offered.value)
        else:
            result.suggestion_declined = offered

    def _handle_time_range(
        self,
        result: ExtractionResult,
        time_range: Optional[str],
        session: Session,
        today: date,
    ) -> None:
        if not time_range:
            return
        result.time_range = time_range
        if not session.time_clarification_pending:
            return
        # Second range in a row: keep it as a note instead of asking again.
        result.time_range_repeated = True
        existing = result.fields.get("comments") or session.draft.comments
        note = f"preferred time {time_range}"
        self._accept(result, "comments", f"{existing}; {note}" if existing else note, today)

    def _suggest(self, result: ExtractionResult, session: Session) -> list[Suggestion]:
        profile = session.guest_profile
        if profile is None:
            return []
        declined = set(session.declined_suggestions)
        if result.suggestion_declined is not None:
            declined.add(result.suggestion_declined.field)
        if result.suggestion_accepted is not None:
            declined.add(result.suggestion_accepted.field)

        suggestions: list[Suggestion] = []
        if (
            profile.common_party_size
            and session.draft.party_size is None
            and "party_size" not in result.fields
            and "party_size" not in declined
        ):
            suggestions.append(Suggestion(field="party_size", value=profile.common_party_size))
        if (
            profile.frequent_requests
            and session.draft.comments is None
            and "comments" not in result.fields
            and "comments" not in declined
        ):
            suggestions.append(Suggestion(field="comments", value=profile.frequent_requests[0]))
        return suggestions


def _clamp(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0

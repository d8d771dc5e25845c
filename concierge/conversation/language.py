"""
Conversation language detection with graduated locking.

Fast path: script and keyword scoring. Slow path: a generation call with
the recent transcript. Short ambiguous input never flips a locked language,
and the longer a conversation runs in one language, the more confidence a
switch needs:

    none  (< soft_lock_turns turns)              -> language_change_confidence
    soft  (>= soft_lock_turns turns)             -> soft_lock_confidence, and the
                                                    persona must have run
                                                    lock_persona_turns turns
    hard  (>= hard_lock_turns turns and persona
           turns >= lock_persona_turns)          -> hard_lock_confidence
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from concierge.config import AppConfig, settings
from concierge.conversation.lexicon import SUPPORTED_LANGUAGES, is_yes_no_token
from concierge.llm.base import GenerationError, GenerationOptions
from concierge.llm.service import ProviderChain
from concierge.prompts.prompt_templates import build_language_messages
from concierge.schemas.session_schema import Session
from concierge.utils import fold_text, strip_punctuation

logger = logging.getLogger(__name__)

_CYRILLIC_RE = re.compile(r"[Ѐ-ӿ]")
_LATIN_RE = re.compile(r"[A-Za-zÀ-ɏ]")
_SERBIAN_CYRILLIC = set("ђјљњћџЂЈЉЊЋЏ")
_BARE_NUMBER_RE = re.compile(r"^[\d\s:.,/+\-()]+$")
_LANG_CODE_RE = re.compile(r"^[a-z]{2}$")
_WORD_RE = re.compile(r"[\w']+", re.UNICODE)

LANGUAGE_KEYWORDS: dict[str, frozenset[str]] = {
    "en": frozenset({"hello", "hi", "table", "book", "booking", "reservation", "please",
                     "tomorrow", "tonight", "people", "want", "would", "like", "the",
                     "thanks", "evening", "dinner", "i'd", "we", "my", "and", "with"}),
    "sr": frozenset({"zdravo", "sto", "stola", "rezervacija", "rezervaciju", "rezervisati",
                     "molim", "sutra", "večeras", "veceras", "osobe", "osoba", "želim",
                     "zelim", "hvala", "za", "je", "li", "može", "moze"}),
    "hu": frozenset({"szia", "helló", "hello", "asztal", "asztalt", "foglalás", "foglalni",
                     "szeretnék", "szeretnek", "holnap", "este", "főre", "fore",
                     "köszönöm", "kérem", "személy", "személyre", "és"}),
    "de": frozenset({"hallo", "guten", "tisch", "reservieren", "reservierung", "bitte",
                     "morgen", "heute", "personen", "möchte", "mochte", "für", "danke",
                     "abend", "ich", "wir", "und"}),
    "fr": frozenset({"bonjour", "bonsoir", "table", "réserver", "reserver", "réservation",
                     "demain", "personnes", "voudrais", "pour", "merci", "soir", "je",
                     "nous", "et", "s'il"}),
    "es": frozenset({"hola", "mesa", "reservar", "reserva", "mañana", "personas", "quiero",
                     "para", "gracias", "noche", "por", "favor", "una", "somos"}),
    "it": frozenset({"ciao", "buongiorno", "tavolo", "prenotare", "prenotazione", "domani",
                     "persone", "vorrei", "per", "grazie", "stasera", "sono"}),
    "pt": frozenset({"olá", "ola", "mesa", "reservar", "reserva", "amanhã", "pessoas",
                     "quero", "para", "obrigado", "noite", "uma"}),
    "nl": frozenset({"hallo", "tafel", "reserveren", "reservering", "morgen", "personen",
                     "graag", "voor", "bedankt", "vanavond", "wij", "een"}),
}

_DIACRITIC_HINTS: dict[str, str] = {
    "ő": "hu", "ű": "hu", "ß": "de", "ñ": "es", "¿": "es", "¡": "es",
    "č": "sr", "ć": "sr", "đ": "sr", "ž": "sr", "š": "sr", "ã": "pt", "õ": "pt",
    "œ": "fr", "ç": "fr", "ê": "fr",
}


@dataclass(frozen=True)
class LanguageDetection:
    language: str
    confidence: float
    should_lock: bool
    reasoning: str
    source: str  # "ambiguous" | "script" | "keywords" | "llm" | "fallback"
    message: str = ""


def script_language(text: str) -> Optional[str]:
    """Language implied by the writing system alone (Cyrillic only)."""
    cyrillic = len(_CYRILLIC_RE.findall(text))
    if cyrillic == 0 or cyrillic < len(_LATIN_RE.findall(text)):
        return None
    return "sr" if any(ch in _SERBIAN_CYRILLIC for ch in text) else "ru"


def is_ambiguous(message: str) -> bool:
    """Bare numbers, very short input, punctuation, and yes/no tokens."""
    stripped = message.strip()
    if len(stripped) <= 2:
        return True
    if _BARE_NUMBER_RE.match(stripped):
        return True
    if not strip_punctuation(stripped):
        return True
    return is_yes_no_token(stripped)


def keyword_scores(message: str) -> dict[str, int]:
    words = set(_WORD_RE.findall(fold_text(message)))
    scores = {lang: len(words & keywords) for lang, keywords in LANGUAGE_KEYWORDS.items()}
    for ch in set(message.lower()):
        hinted = _DIACRITIC_HINTS.get(ch)
        if hinted:
            scores[hinted] = scores.get(hinted, 0) + 2
    return scores


class LanguageDetector:
    """Detects the message language and applies it to the session lock."""

    def __init__(self, generator: ProviderChain, config: AppConfig = settings) -> None:
        self.generator = generator
        self.config = config
        self.thresholds = config.guardrails

    async def detect(self, message: str, session: Session) -> LanguageDetection:
        current = session.language

        if is_ambiguous(message):
            if current.locked:
                return LanguageDetection(
                    language=current.code,
                    confidence=max(current.confidence, self.thresholds.hard_lock_confidence),
                    should_lock=True,
                    reasoning="short ambiguous input keeps the locked language",
                    source="ambiguous",
                    message=message,
                )
            return LanguageDetection(
                language=current.code,
                confidence=0.3,
                should_lock=False,
                reasoning="short ambiguous input",
                source="ambiguous",
                message=message,
            )

        fast = self.fast_path(message)
        if fast is not None and fast.confidence >= self.thresholds.fast_language_confidence:
            return fast

        try:
            return await self._slow_path(message, session)
        except GenerationError:
            logger.warning("Language detection call failed; using deterministic guess")
            guess = fast.language if fast is not None else current.code
            return LanguageDetection(
                language=guess,
                confidence=min(fast.confidence, 0.4) if fast is not None else 0.3,
                should_lock=False,
                reasoning="provider failure fallback",
                source="fallback",
                message=message,
            )

    def fast_path(self, message: str) -> Optional[LanguageDetection]:
        script = script_language(message)
        if script is not None:
            return self._detection(script, 0.95, "Cyrillic script", "script", message)

        scores = keyword_scores(message)
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        (best, top), (_, second) = ranked[0], ranked[1]
        if top == 0:
            return None
        margin = top - second
        if top >= 3 and margin >= 2:
            confidence = 0.95
        elif top >= 2 and margin >= 1:
            confidence = 0.9
        elif margin >= 1:
            confidence = 0.7
        else:
            confidence = 0.5
        return self._detection(best, confidence, f"keyword score {top} vs {second}", "keywords", message)

    def _detection(
        self, language: str, confidence: float, reasoning: str, source: str, message: str
    ) -> LanguageDetection:
        return LanguageDetection(
            language=language,
            confidence=confidence,
            should_lock=confidence >= self.thresholds.language_change_confidence,
            reasoning=reasoning,
            source=source,
            message=message,
        )

    async def _slow_path(self, message: str, session: Session) -> LanguageDetection:
        messages = build_language_messages(message, session.recent_turns(3), session.language.code)
        options = GenerationOptions(
            purpose="language",
            max_tokens=100,
            temperature=self.config.model.decision_temperature,
        )
        data = await self.generator.generate_json(messages, options)
        code = str(data.get("language", "")).strip().lower()
        if not _LANG_CODE_RE.match(code):
            raise GenerationError(f"Invalid language code {code!r}")
        try:
            confidence = max(0.0, min(1.0, float(data.get("confidence", 0.0))))
        except (TypeError, ValueError):
            confidence = 0.0
        if code not in SUPPORTED_LANGUAGES:
            confidence = min(confidence, 0.85)
        return self._detection(code, confidence, str(data.get("reasoning", "")), "llm", message)

    # ------------------------------------------------------------------ #
    # Locking
    # ------------------------------------------------------------------ #

    def lock_strength(self, session: Session) -> str:
        g = self.thresholds
        if session.turn_count >= g.hard_lock_turns and session.persona_turn_count >= g.lock_persona_turns:
            return "hard"
        if session.turn_count >= g.soft_lock_turns:
            return "soft"
        return "none"

    def required_confidence(self, session: Session) -> float:
        if not session.language.locked:
            return self.thresholds.language_change_confidence
        strength = self.lock_strength(session)
        if strength == "hard":
            return self.thresholds.hard_lock_confidence
        if strength == "soft":
            return self.thresholds.soft_lock_confidence
        return self.thresholds.language_change_confidence

    def apply(self, session: Session, detection: LanguageDetection) -> bool:
        """Update the session language. Returns True if the language changed."""
        state = session.language

        if detection.language == state.code:
            if detection.should_lock and not state.locked and detection.source != "ambiguous":
                self._lock(session, detection)
            return False

        if detection.source in ("ambiguous", "fallback"):
            return False
        if (
            state.locked
            and self.lock_strength(session) == "soft"
            and session.persona_turn_count < self.thresholds.lock_persona_turns
        ):
            logger.debug("Soft lock on '%s' holds against '%s'", state.code, detection.language)
            return False
        required = self.required_confidence(session)
        if detection.confidence < required:
            logger.debug(
                "Language '%s' at %.2f below %.2f; keeping '%s'",
                detection.language, detection.confidence, required, state.code,
            )
            return False

        logger.info(
            "Language %s -> %s (%.2f, %s)",
            state.code, detection.language, detection.confidence, detection.reasoning,
        )
        state.code = detection.language
        state.confidence = detection.confidence
        state.reasoning = detection.reasoning
        if detection.should_lock:
            self._lock(session, detection)
        return True

    def _lock(self, session: Session, detection: LanguageDetection) -> None:
        state = session.language
        state.locked = True
        state.confidence = detection.confidence
        state.reasoning = detection.reasoning
        state.first_message = detection.message or state.first_message
        state.locked_at = datetime.now(timezone.utc)
        logger.info("Language locked to '%s' (%.2f)", state.code, detection.confidence)

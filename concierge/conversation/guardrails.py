"""
Pre- and post-generation guardrails.

Thin deterministic layers, one concern each:
1. RateLimiter: sliding one-minute window per session
2. MessageLengthGuardrail: rejects oversized inbound messages
3. ScopeGuardrail: rejects clearly off-topic requests
4. PersonaGuardrail: flags assistant replies that break character

These are composed into a GuardrailPipeline for pre-LLM and post-LLM checks.
"""

import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Optional

from concierge.config import AppConfig, settings
from concierge.utils import fold_text

logger = logging.getLogger(__name__)


@dataclass
class GuardrailResult:
    """Outcome of a single guardrail check."""
    passed: bool
    violation_type: Optional[str] = None
    message: Optional[str] = None
    severity: str = "warning"  # "warning" | "block"


class RateLimiter:
    """Per-session sliding window. A rejected message does not count."""

    def __init__(
        self,
        limit: int,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window = window
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def check(self, session_id: str) -> GuardrailResult:
        now = self._clock()
        hits = self._hits[session_id]
        while hits and now - hits[0] >= self.window:
            hits.popleft()
        if len(hits) >= self.limit:
            logger.warning("Rate limit hit for %s (%d/%ds)", session_id, self.limit, self.window)
            return GuardrailResult(
                passed=False,
                violation_type="rate_limited",
                message=f"More than {self.limit} messages in {self.window:.0f}s.",
                severity="block",
            )
        hits.append(now)
        return GuardrailResult(passed=True)

    def forget(self, session_id: str) -> None:
        self._hits.pop(session_id, None)


class MessageLengthGuardrail:
    def __init__(self, max_length: int) -> None:
        self.max_length = max_length

    def check(self, text: str) -> GuardrailResult:
        if len(text) > self.max_length:
            return GuardrailResult(
                passed=False,
                violation_type="message_too_long",
                message=f"Message has {len(text)} characters (max {self.max_length}).",
                severity="block",
            )
        return GuardrailResult(passed=True)


class ScopeGuardrail:
    """Rejects requests that are obviously not about a table reservation."""

    OUT_OF_SCOPE_TOPICS = [
        "medical advice", "legal advice", "financial advice",
        "investment", "cryptocurrency", "bitcoin", "political",
        "write me a poem", "write code", "homework", "ignore previous instructions",
        "ignore all previous instructions", "system prompt",
    ]

    def check_topic_scope(self, text: str) -> GuardrailResult:
        lower = fold_text(text)
        for topic in self.OUT_OF_SCOPE_TOPICS:
            if topic in lower:
                return GuardrailResult(
                    passed=False,
                    violation_type="blocked_topic",
                    message=f"Topic '{topic}' is outside our scope.",
                    severity="block",
                )
        return GuardrailResult(passed=True)


class PersonaGuardrail:
    """Flags assistant replies that leak the model or the prompt."""

    FORBIDDEN_PATTERNS = [
        "as an ai", "as a language model", "i'm just a computer",
        "my instructions", "system prompt", '"actions":',
    ]

    def check_persona(self, response_text: str) -> GuardrailResult:
        lower = fold_text(response_text)
        for pattern in self.FORBIDDEN_PATTERNS:
            if pattern in lower:
                return GuardrailResult(
                    passed=False,
                    violation_type="persona_break",
                    message=f"Response breaks persona with: '{pattern}'.",
                    severity="warning",
                )
        return GuardrailResult(passed=True)


class GuardrailPipeline:
    """Composes all guardrails into pre-LLM and post-LLM check pipelines."""

    def __init__(self, config: AppConfig = settings) -> None:
        self.rate_limiter = RateLimiter(config.guardrails.rate_limit_per_minute)
        self.length = MessageLengthGuardrail(config.guardrails.max_message_length)
        self.scope = ScopeGuardrail()
        self.persona = PersonaGuardrail()

    def check_user_input(self, session_id: str, text: str) -> list[GuardrailResult]:
        """Pre-LLM: rate limit first, then size and scope."""
        limited = self.rate_limiter.check(session_id)
        if not limited.passed:
            return [limited]
        results = [
            self.length.check(text),
            self.scope.check_topic_scope(text),
        ]
        return [r for r in results if not r.passed]

    def check_agent_response(self, text: str) -> list[GuardrailResult]:
        """Post-LLM: check the assistant reply for persona leaks."""
        results = [self.persona.check_persona(text)]
        failed = [r for r in results if not r.passed]
        for result in failed:
            logger.warning("Response guardrail: %s", result.message)
        return failed

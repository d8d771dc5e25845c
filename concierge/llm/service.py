"""
Ordered provider chain behind one interface.

Every call goes through the same timeout wrapper, and providers are tried
in order until one answers. Adding or removing a provider only touches
``build_provider_chain``.
"""

import asyncio
import json
import logging
import re
from dataclasses import replace
from typing import Any, Optional

from concierge.config import AppConfig, settings
from concierge.llm.base import ChatMessage, GenerationError, GenerationOptions, TextGenerator

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    return _FENCE_RE.sub("", text.strip()).strip()


class ProviderChain:
    """Tries each generator in sequence with a uniform timeout."""

    def __init__(
        self,
        generators: list[TextGenerator],
        default_timeout: float = 20.0,
        json_retries: int = 2,
    ) -> None:
        if not generators:
            raise ValueError("ProviderChain needs at least one generator")
        self.generators = list(generators)
        self.default_timeout = default_timeout
        self.json_retries = json_retries

    async def generate_text(
        self, messages: list[ChatMessage], options: Optional[GenerationOptions] = None
    ) -> str:
        """Return the first successful completion.

        Raises:
            GenerationError: If every provider failed or timed out.
        """
        options = options or GenerationOptions()
        timeout = options.timeout or self.default_timeout
        failures: list[str] = []

        for generator in self.generators:
            try:
                return await asyncio.wait_for(
                    generator.generate(messages, options), timeout=timeout
                )
            except asyncio.TimeoutError:
                failures.append(f"{generator.name}: timeout after {timeout}s")
            except Exception as exc:
                failures.append(f"{generator.name}: {exc}")
            logger.warning("Provider %s failed for %s", generator.name, options.purpose)

        logger.error("All providers failed for %s: %s", options.purpose, "; ".join(failures))
        raise GenerationError(f"All providers failed for {options.purpose}")

    async def generate_json(
        self, messages: list[ChatMessage], options: Optional[GenerationOptions] = None
    ) -> dict[str, Any]:
        """Return a parsed JSON object, re-asking when the reply does not parse.

        Raises:
            GenerationError: If no provider answered or no attempt parsed.
        """
        options = replace(options or GenerationOptions(), response_format="json")
        attempt_messages = list(messages)

        for attempt in range(self.json_retries + 1):
            text = await self.generate_text(attempt_messages, options)
            try:
                parsed = json.loads(strip_code_fences(text))
            except json.JSONDecodeError as exc:
                error = f"invalid JSON ({exc.msg})"
            else:
                if isinstance(parsed, dict):
                    return parsed
                error = f"expected a JSON object, got {type(parsed).__name__}"

            logger.debug("%s attempt %d returned %s", options.purpose, attempt + 1, error)
            attempt_messages = list(messages) + [
                ChatMessage("assistant", text),
                ChatMessage(
                    "user",
                    f"Your previous reply was {error}. Reply with one JSON object only.",
                ),
            ]

        raise GenerationError(f"No valid JSON for {options.purpose}")


def build_provider_chain(config: AppConfig = settings) -> ProviderChain:
    """Build the chain from the configured provider order.

    Providers without an API key are skipped.

    Raises:
        GenerationError: If no configured provider has credentials.
    """
    from concierge.llm.providers import AnthropicGenerator, OpenAIGenerator

    generators: list[TextGenerator] = []
    for name in config.model.providers:
        if name == "openai" and config.model.openai_api_key:
            generators.append(
                OpenAIGenerator(config.model.openai_model, api_key=config.model.openai_api_key)
            )
        elif name == "anthropic" and config.model.anthropic_api_key:
            generators.append(
                AnthropicGenerator(
                    config.model.anthropic_model, api_key=config.model.anthropic_api_key
                )
            )
        elif name not in ("openai", "anthropic"):
            logger.warning("Unknown provider '%s' in LLM_PROVIDER_ORDER", name)

    if not generators:
        raise GenerationError(
            "No text-generation provider configured; set OPENAI_API_KEY or ANTHROPIC_API_KEY"
        )
    logger.info("Provider chain: %s", [g.name for g in generators])
    return ProviderChain(
        generators,
        default_timeout=config.model.request_timeout_sec,
        json_retries=config.model.json_retries,
    )

"""OpenAI and Anthropic implementations of the text-generation capability."""

import logging
import time
from typing import Any, Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from concierge.llm.base import ChatMessage, GenerationError, GenerationOptions, TextGenerator

logger = logging.getLogger(__name__)


class OpenAIGenerator(TextGenerator):
    """Chat completions against the OpenAI API."""

    name = "openai"

    def __init__(
        self, model: str, api_key: Optional[str] = None, client: Optional[Any] = None
    ) -> None:
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def generate(self, messages: list[ChatMessage], options: GenerationOptions) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}

        start_time = time.monotonic()
        response = await self.client.chat.completions.create(**kwargs)
        latency_ms = (time.monotonic() - start_time) * 1000

        content = response.choices[0].message.content
        if not content:
            raise GenerationError("OpenAI returned an empty completion")
        logger.debug("openai %s completed in %.0fms", options.purpose, latency_ms)
        return content


class AnthropicGenerator(TextGenerator):
    """Messages API against Anthropic. System turns are folded into ``system``."""

    name = "anthropic"

    def __init__(
        self, model: str, api_key: Optional[str] = None, client: Optional[Any] = None
    ) -> None:
        self.model = model
        self.client = client or AsyncAnthropic(api_key=api_key)

    async def generate(self, messages: list[ChatMessage], options: GenerationOptions) -> str:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        if options.response_format == "json":
            system += "\n\nRespond with a single JSON object and nothing else."
        conversation = [
            {"role": m.role, "content": m.content} for m in messages if m.role != "system"
        ]
        if not conversation:
            conversation = [{"role": "user", "content": "Continue."}]

        start_time = time.monotonic()
        response = await self.client.messages.create(
            model=self.model,
            system=system.strip(),
            messages=conversation,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
        )
        latency_ms = (time.monotonic() - start_time) * 1000

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not text:
            raise GenerationError("Anthropic returned an empty completion")
        logger.debug("anthropic %s completed in %.0fms", options.purpose, latency_ms)
        return text

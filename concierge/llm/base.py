"""Text-generation capability shared by every provider."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Optional


class GenerationError(Exception):
    """Raised when no provider produced a usable response."""


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class GenerationOptions:
    """Per-call settings. ``purpose`` tags the call for logging and test doubles."""

    purpose: str = "reply"
    max_tokens: int = 400
    temperature: float = 0.7
    response_format: Literal["text", "json"] = "text"
    timeout: Optional[float] = None


class TextGenerator(ABC):
    """A single provider able to turn chat messages into text."""

    name: str = "generator"

    @abstractmethod
    async def generate(self, messages: list[ChatMessage], options: GenerationOptions) -> str:
        """Return the raw completion text."""

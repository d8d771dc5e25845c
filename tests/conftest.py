"""Shared test fixtures and helpers."""

import json
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Optional

import pytest

from concierge.config import AppConfig, GuardrailConfig, RestaurantConfig
from concierge.conversation.gate import ConfirmationGate
from concierge.llm.base import ChatMessage, GenerationError, GenerationOptions, TextGenerator
from concierge.llm.service import ProviderChain
from concierge.orchestrator import ConversationOrchestrator
from concierge.schemas.booking_schema import GatheringInfo
from concierge.schemas.conversation_schema import LanguageState, Persona
from concierge.schemas.session_schema import Session
from concierge.storage.session_store import InMemorySessionStore
from concierge.tools.backend import InMemoryReservationBackend

TODAY = date(2026, 10, 17)
TOMORROW = "2026-10-18"


class FakeGenerator(TextGenerator):
    """Canned responses queued per ``GenerationOptions.purpose``.

    A purpose with nothing queued fails like a provider outage, so every
    component falls back to its deterministic path.
    """

    name = "fake"

    def __init__(self) -> None:
        self.responses: dict[str, list[Any]] = {}
        self.calls: list[tuple[str, list[ChatMessage]]] = []

    def script(self, purpose: str, *responses: Any) -> "FakeGenerator":
        self.responses.setdefault(purpose, []).extend(responses)
        return self

    def purposes(self) -> list[str]:
        return [purpose for purpose, _ in self.calls]

    async def generate(self, messages: list[ChatMessage], options: GenerationOptions) -> str:
        self.calls.append((options.purpose, messages))
        queue = self.responses.get(options.purpose)
        if not queue:
            raise GenerationError(f"nothing scripted for {options.purpose}")
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response if isinstance(response, str) else json.dumps(response)


def make_config(**guardrails: Any) -> AppConfig:
    """Default config with fixed restaurant settings and optional guardrail overrides."""
    restaurant = RestaurantConfig(
        name="Test Bistro",
        timezone="Europe/Belgrade",
        default_language="en",
        max_party_size=20,
        opening_hour=10,
        closing_hour=23,
        tables_per_slot=6,
    )
    return replace(
        AppConfig(),
        restaurant=restaurant,
        guardrails=replace(GuardrailConfig(), **guardrails),
    )


def make_session(
    session_id: str = "web-test",
    language: str = "en",
    persona: Persona = Persona.NEW_BOOKING,
    **draft: Any,
) -> Session:
    return Session(
        session_id=session_id,
        tenant_id="test-bistro",
        timezone="Europe/Belgrade",
        language=LanguageState(code=language),
        current_persona=persona,
        draft=GatheringInfo(**draft),
    )


def fixed_today(_: str) -> date:
    return TODAY


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def chain(generator):
    return ProviderChain([generator], default_timeout=5.0, json_retries=0)


@pytest.fixture
def backend(config):
    return InMemoryReservationBackend(config)


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def gate(chain, config):
    return ConfirmationGate(chain, config)


@pytest.fixture
def orchestrator(chain, backend, store, config):
    return ConversationOrchestrator(
        generator=chain, backend=backend, store=store, config=config, today_fn=fixed_today
    )


async def update_session(
    orchestrator: ConversationOrchestrator,
    session_id: str,
    change: Callable[[Session], Optional[Any]],
) -> Session:
    """Load, mutate and save a session outside of a turn."""
    session = await orchestrator.get_session(session_id)
    change(session)
    await orchestrator.store.set(session_id, session.model_dump(mode="json"), ttl=3600)
    return session

"""
Booking concierge entry point.

Runs a chat against the orchestrator in the terminal, with the in-memory
reservation engine and the configured session store.

Usage:
    Console chat:   python main.py console
    Offline chat:   python main.py console --offline   (no API keys; scripted replies)
    Demo guest:     python main.py console --guest +381641234567
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from concierge.config import settings
from concierge.llm.base import ChatMessage, GenerationError, GenerationOptions, TextGenerator
from concierge.llm.service import ProviderChain, build_provider_chain
from concierge.orchestrator import ConversationOrchestrator
from concierge.schemas.conversation_schema import Channel
from concierge.storage.session_store import build_session_store
from concierge.tools.backend import InMemoryReservationBackend

logger = logging.getLogger(__name__)

GREEN = "\033[92m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"

EXIT_WORDS = {"quit", "exit", "bye"}


class OfflineGenerator(TextGenerator):
    """Stands in for every provider when no API key is available.

    Every call fails, so each component takes its deterministic path.
    """

    name = "offline"

    async def generate(self, messages: list[ChatMessage], options: GenerationOptions) -> str:
        raise GenerationError("offline mode")


def _build_generator(offline: bool) -> ProviderChain:
    if offline:
        return ProviderChain([OfflineGenerator()], default_timeout=1.0, json_retries=0)
    return build_provider_chain(settings)


async def _run_console(offline: bool, guest: Optional[str]) -> None:
    backend = InMemoryReservationBackend(settings)
    if guest:
        backend.seed_guest(
            name="Demo Guest", phone=guest, guest_key=guest,
            total_bookings=3, common_party_size=2, frequent_requests=["window table"],
        )
    orchestrator = ConversationOrchestrator(
        generator=_build_generator(offline),
        backend=backend,
        store=build_session_store(settings),
        config=settings,
    )

    async with orchestrator:
        session_id = await orchestrator.create_session(
            tenant_id=settings.restaurant.name, channel=Channel.WEB, guest_key=guest
        )
        print(f"{DIM}Session {session_id}. Type 'quit' to leave.{RESET}")
        while True:
            try:
                text = await asyncio.to_thread(input, f"{BOLD}You:{RESET} ")
            except (EOFError, KeyboardInterrupt):
                break
            if not text.strip():
                continue
            if text.strip().lower() in EXIT_WORDS:
                break
            result = await orchestrator.handle_message(session_id, text)
            print(f"{GREEN}{BOLD}[{result.persona.value}]{RESET} {GREEN}{result.reply}{RESET}")
            if result.handoff is not None:
                print(f"{DIM}  >> handoff {result.handoff.from_persona.value} -> "
                      f"{result.handoff.to_persona.value}: {result.handoff.reasoning}{RESET}")
        print(f"{DIM}{await orchestrator.get_stats()}{RESET}")
        await orchestrator.end_session(session_id)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=f"{settings.agent_name} console")
    parser.add_argument("mode", choices=["console"], help="Run the terminal chat")
    parser.add_argument("--offline", action="store_true", help="Run without any provider")
    parser.add_argument("--guest", default=None, help="Seed a returning guest with this phone")
    args = parser.parse_args(argv)

    try:
        asyncio.run(_run_console(args.offline, args.guest))
    except GenerationError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

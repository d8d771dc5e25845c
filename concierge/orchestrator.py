"""
Per-session turn handling.

One inbound message produces exactly one reply:

    guardrails -> load -> guest history (first turn) -> extract -> language
    -> gate short-circuit -> overseer -> merge draft -> auto-propose create
    -> persona generation -> actions -> final reply -> persist

Turns on one session are serialized with a per-session lock. Every external
call is time-boxed, and a failure anywhere degrades to a conversational
reply instead of an exception.
"""

import asyncio
import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from concierge.agents.base import PersonaAgent, PersonaResponse
from concierge.agents.registry import create_agents
from concierge.config import AppConfig, settings
from concierge.conversation.extractor import ExtractionResult, FieldExtractor, today_in
from concierge.conversation.gate import ConfirmationDecision, ConfirmationGate
from concierge.conversation.guardrails import GuardrailPipeline
from concierge.conversation.identity import IdentityPreserver
from concierge.conversation.language import LanguageDetector
from concierge.conversation.lexicon import (
    EXISTING_BOOKING_PHRASES,
    NEW_BOOKING_PHRASES,
    contains_phrase,
)
from concierge.conversation.overseer import Overseer
from concierge.conversation.state_machine import GateTrigger
from concierge.llm.base import GenerationError, GenerationOptions
from concierge.llm.service import ProviderChain
from concierge.logging_context import bind_turn, get_session_logger, set_persona, set_session_id
from concierge.prompts.messages import render
from concierge.prompts.prompt_templates import build_final_reply_messages
from concierge.schemas.booking_schema import (
    AvailabilityFailure,
    ConfirmedIdentity,
    CreateReservationAction,
    GuestProfile,
)
from concierge.schemas.conversation_schema import (
    Channel,
    LanguageState,
    Persona,
    Role,
    TurnResult,
    utcnow,
)
from concierge.schemas.session_schema import Session
from concierge.storage.session_store import SessionStore, SessionStoreError
from concierge.tools.backend import ReservationBackend
from concierge.tools.context import TurnContext
from concierge.tools.coordinator import (
    ActionCoordinator,
    confirmation_summary,
    draft_create_action,
)

logger = get_session_logger(__name__)

_BLOCK_MESSAGES = {
    "rate_limited": "rate_limited",
    "message_too_long": "message_too_long",
    "blocked_topic": "blocked_topic",
}


class SessionNotFoundError(KeyError):
    """The session id is unknown or its session has expired."""


@dataclass
class _TurnOutcome:
    reply: str
    booking_created: bool = False
    reservation_id: Optional[str] = None
    action_calls: tuple[str, ...] = ()


class ConversationOrchestrator:
    """Composes extraction, routing, the gate, and actions into turns."""

    def __init__(
        self,
        generator: ProviderChain,
        backend: ReservationBackend,
        store: SessionStore,
        config: AppConfig = settings,
        today_fn: Callable[[str], date] = today_in,
    ) -> None:
        self.generator = generator
        self.backend = backend
        self.store = store
        self.config = config
        self.extractor = FieldExtractor(generator, config=config, today_fn=today_fn)
        self.language = LanguageDetector(generator, config)
        self.overseer = Overseer(generator, config)
        self.gate = ConfirmationGate(generator, config)
        self.identity = IdentityPreserver()
        self.coordinator = ActionCoordinator(
            backend, self.gate, config, validator=self.extractor.validator, today_fn=today_fn
        )
        self.guardrails = GuardrailPipeline(config)
        self._agents: dict[Persona, PersonaAgent] = create_agents(config)
        self._locks: dict[str, asyncio.Lock] = {}
        self._session_ids: set[str] = set()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def open(self) -> None:
        await self.store.open()
        await self.backend.open()
        logger.info("Orchestrator opened for '%s'", self.config.restaurant.name)

    async def close(self) -> None:
        await self.store.close()
        await self.backend.close()
        logger.info("Orchestrator closed")

    async def __aenter__(self) -> "ConversationOrchestrator":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #

    async def create_session(
        self,
        tenant_id: str,
        channel: Channel = Channel.WEB,
        locale: Optional[str] = None,
        guest_key: Optional[str] = None,
    ) -> str:
        """Start a conversation. Returns the new session id."""
        session_id = f"{channel.value}-{uuid.uuid4().hex[:12]}"
        language = (locale or self.config.restaurant.default_language).split("-")[0].lower()
        session = Session(
            session_id=session_id,
            tenant_id=tenant_id,
            channel=channel,
            guest_key=guest_key,
            timezone=self.config.restaurant.timezone,
            language=LanguageState(code=language),
        )
        await self._save(session)
        self._session_ids.add(session_id)
        logger.info("Session %s created (%s, %s)", session_id, channel.value, language)
        return session_id

    async def get_session(self, session_id: str) -> Session:
        """Load a session.

        Raises:
            SessionNotFoundError: If it does not exist or has expired.
        """
        data = await self.store.get(session_id)
        if data is None:
            raise SessionNotFoundError(session_id)
        return Session.model_validate(data)

    async def end_session(self, session_id: str) -> None:
        await self.store.delete(session_id)
        self._forget(session_id)
        logger.info("Session %s ended", session_id)

    def _forget(self, session_id: str) -> None:
        """Drop per-session bookkeeping for a session that is gone."""
        self._locks.pop(session_id, None)
        self._session_ids.discard(session_id)
        self.guardrails.rate_limiter.forget(session_id)

    async def _load_existing(self, session_id: str) -> Session:
        try:
            return await self.get_session(session_id)
        except SessionNotFoundError:
            self._forget(session_id)
            raise

    async def get_stats(self) -> dict[str, Any]:
        """Aggregate counters over the sessions this process created."""
        sessions = []
        for session_id in sorted(self._session_ids):
            data = await self.store.get(session_id)
            if data is None:
                self._forget(session_id)
                continue
            sessions.append(Session.model_validate(data))
        return {
            "active_sessions": len(sessions),
            "total_handoffs": sum(len(s.handoffs) for s in sessions),
            "locked_languages": sum(1 for s in sessions if s.language.locked),
            "languages": dict(Counter(s.language.code for s in sessions)),
            "personas": dict(Counter(s.current_persona.value for s in sessions)),
            "bookings_completed": sum(s.bookings_completed for s in sessions),
        }

    # ------------------------------------------------------------------ #
    # Turns
    # ------------------------------------------------------------------ #

    async def handle_message(self, session_id: str, text: str) -> TurnResult:
        """Process one guest message and return the reply.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        set_session_id(session_id)
        try:
            if session_id not in self._locks:
                await self._load_existing(session_id)
        except SessionStoreError as exc:
            return self._store_failure(exc)
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            try:
                session = await self._load_existing(session_id)
            except SessionStoreError as exc:
                return self._store_failure(exc)

            bind_turn(session_id, session.current_persona.value, session.turn_count + 1)
            violations = self.guardrails.check_user_input(session_id, text)
            if violations:
                violation = violations[0]
                logger.info("Turn blocked: %s", violation.violation_type)
                key = _BLOCK_MESSAGES.get(violation.violation_type, "generic_error")
                return TurnResult(
                    reply=render(key, session.language.code, restaurant=self.config.restaurant.name),
                    blocked=True,
                    persona=session.current_persona,
                )

            snapshot = session.model_copy(deep=True)
            handoffs_before = len(session.handoffs)
            try:
                outcome = await self._process_turn(session, text)
            except Exception:
                logger.exception("Turn failed; replying with a generic error")
                session = snapshot
                handoffs_before = len(session.handoffs)
                outcome = _TurnOutcome(render("generic_error", session.language.code))

            session.add_turn(Role.USER, text)
            session.add_turn(Role.ASSISTANT, outcome.reply, outcome.action_calls)
            session.turn_count += 1
            session.persona_turn_count += 1
            await self._save(session)

            handoff = session.handoffs[-1] if len(session.handoffs) > handoffs_before else None
            return TurnResult(
                reply=outcome.reply,
                booking_created=outcome.booking_created,
                reservation_id=outcome.reservation_id,
                persona=session.current_persona,
                handoff=handoff,
            )

    def _store_failure(self, exc: SessionStoreError) -> TurnResult:
        logger.error("Could not load session: %s", exc)
        return TurnResult(
            reply=render("generic_error", self.config.restaurant.default_language),
            blocked=True,
            persona=Persona.NEW_BOOKING,
        )

    async def _process_turn(self, session: Session, text: str) -> _TurnOutcome:
        await self._load_guest_history(session)
        session.prune_touched(utcnow())

        extraction = await self.extractor.extract(text, session)
        detection = await self.language.detect(text, session)
        self.language.apply(session, detection)
        turn = TurnContext.for_session(session)

        if session.pending_identity_clarification is not None:
            return await self._handle_name_choice(session, text, turn)
        if session.pending_confirmation is not None:
            outcome = await self._handle_confirmation_reply(session, text, extraction, turn)
            if outcome is not None:
                return outcome

        decision = await self.overseer.decide(session, text, extraction)
        if decision.intervention:
            return _TurnOutcome(decision.intervention)
        session.switch_persona(decision.persona, decision.trigger, decision.reasoning)
        set_persona(session.current_persona.value)
        if decision.is_new_booking_request:
            self.identity.reset_for_new_booking(session, decision.reasoning)

        self._merge_extraction(session, extraction)

        proposal = await self._maybe_propose_create(session)
        if proposal is not None:
            return proposal

        return await self._persona_turn(session, text, extraction, turn)

    # ------------------------------------------------------------------ #
    # Gate
    # ------------------------------------------------------------------ #

    async def _handle_confirmation_reply(
        self,
        session: Session,
        text: str,
        extraction: ExtractionResult,
        turn: TurnContext,
    ) -> Optional[_TurnOutcome]:
        """Resolve the open yes/no question. None means continue normally."""
        gate = session.pending_confirmation
        language = session.language.code
        action = gate.action

        if isinstance(action, CreateReservationAction) and extraction.fields:
            corrected = {k: v for k, v in extraction.fields.items() if getattr(action, k, None) != v}
            if corrected:
                return await self._refresh_queued_create(session, extraction)

        decision = await self.gate.classify(
            text, gate.summary, language, session.recent_turns(self.config.session.transcript_window)
        )
        if decision == ConfirmationDecision.AFFIRMATIVE:
            self.gate.close(session, GateTrigger.AFFIRMED)
            result = await self.coordinator.execute_confirmed(session, action, turn)
            return _TurnOutcome(
                result.reply,
                booking_created=result.booking_created,
                reservation_id=result.reservation_id,
                action_calls=(action.kind,),
            )
        if decision == ConfirmationDecision.NEGATIVE:
            self.gate.close(session, GateTrigger.DECLINED)
            if isinstance(action, CreateReservationAction):
                session.declined_draft_signature = session.draft.signature()
            logger.info("Guest declined %s; draft kept", action.kind)
            return _TurnOutcome(render("action_discarded", language))

        if contains_phrase(text, NEW_BOOKING_PHRASES + EXISTING_BOOKING_PHRASES):
            self.gate.close(session, GateTrigger.ABANDONED)
            logger.info("Guest moved on from pending %s", action.kind)
            return None
        self.gate.record_unclear(session)
        return _TurnOutcome(self.gate.reprompt(session, language))

    async def _refresh_queued_create(
        self, session: Session, extraction: ExtractionResult
    ) -> _TurnOutcome:
        language = session.language.code
        session.draft.merge(extraction.fields)
        refreshed = draft_create_action(session.draft)

        availability = await self._check_availability(refreshed)
        if availability is not None and not availability[0]:
            self.gate.close(session, GateTrigger.ABANDONED)
            return _TurnOutcome(self._unavailable_text(session, refreshed, availability[1]))

        summary = confirmation_summary(refreshed, language)
        self.gate.refresh_confirmation(session, refreshed, summary)
        return _TurnOutcome(summary)

    async def _handle_name_choice(
        self, session: Session, text: str, turn: TurnContext
    ) -> _TurnOutcome:
        gate = session.pending_identity_clarification
        language = session.language.code
        choice = await self.gate.resolve_name_choice(text, gate.db_name, gate.request_name, language)

        if choice is None:
            attempts = self.gate.record_unclear(session)
            if attempts >= self.config.guardrails.max_name_choice_attempts:
                self.gate.close(session, GateTrigger.ABANDONED)
                return _TurnOutcome(render("name_choice_failed", language))
            return _TurnOutcome(render(
                "name_choice_reprompt", language, db_name=gate.db_name, request_name=gate.request_name
            ))

        action = gate.action.model_copy(update={"name": choice, "confirmed_name": choice})
        self.gate.close(session, GateTrigger.NAME_RESOLVED)
        session.confirmed_identity = ConfirmedIdentity(
            name=choice, phone=action.phone, source="name_choice"
        )
        session.draft.merge({"name": choice})
        logger.info("Name conflict resolved to %r", choice)

        result = await self.coordinator.execute_confirmed(session, action, turn)
        return _TurnOutcome(
            result.reply,
            booking_created=result.booking_created,
            reservation_id=result.reservation_id,
            action_calls=(action.kind,),
        )

    # ------------------------------------------------------------------ #
    # Draft
    # ------------------------------------------------------------------ #

    def _merge_extraction(self, session: Session, extraction: ExtractionResult) -> None:
        changed = session.draft.merge(extraction.fields)
        if changed:
            logger.debug("Draft updated: %s", changed)

        if extraction.suggestion_declined is not None:
            session.declined_suggestions.append(extraction.suggestion_declined.field)
        if extraction.suggestion_accepted is not None or extraction.suggestion_declined is not None:
            session.offered_suggestion = None
        session.suggestions = list(extraction.suggestions)
        if (
            session.offered_suggestion is None
            and session.current_persona == Persona.NEW_BOOKING
            and session.suggestions
        ):
            session.offered_suggestion = session.suggestions[0]

        session.time_clarification_pending = bool(
            extraction.time_range and not extraction.time_range_repeated
        )

    async def _maybe_propose_create(self, session: Session) -> Optional[_TurnOutcome]:
        """Ask for confirmation as soon as a new booking's draft is complete."""
        if session.current_persona != Persona.NEW_BOOKING or not session.gate_is_idle:
            return None
        action = draft_create_action(session.draft)
        if action is None:
            return None
        signature = session.draft.signature()
        if signature in (session.declined_draft_signature, session.booked_draft_signature):
            return None

        failure = session.availability_failure
        if failure is not None and (failure.date, failure.time, failure.party_size) == (
            action.date, action.time, action.party_size
        ):
            return None

        availability = await self._check_availability(action)
        if availability is None:
            return _TurnOutcome(render("availability_check_failed", session.language.code))
        available, alternatives = availability
        if not available:
            session.availability_failure = AvailabilityFailure(
                date=action.date,
                time=action.time,
                party_size=action.party_size,
                alternatives=alternatives,
                at=datetime.now(timezone.utc),
            )
            logger.info("Requested slot unavailable; %d alternatives", len(alternatives))
            return None

        session.availability_failure = None
        session.offered_suggestion = None
        summary = confirmation_summary(action, session.language.code)
        self.gate.open_confirmation(session, action, summary)
        return _TurnOutcome(summary)

    async def _check_availability(self, action: CreateReservationAction):
        """(available, alternatives), or None when the backend did not answer."""
        timeout = self.config.guardrails.action_timeout_sec
        try:
            result = await asyncio.wait_for(
                self.backend.check_availability(action.date, action.time, action.party_size),
                timeout=timeout,
            )
            if result.available:
                return True, []
            alternatives = await asyncio.wait_for(
                self.backend.find_alternatives(action.date, action.time, action.party_size),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Availability check timed out")
            return None
        except Exception as exc:
            logger.error("Availability check failed: %s", exc)
            return None
        return False, alternatives

    def _unavailable_text(self, session: Session, action: CreateReservationAction, alternatives) -> str:
        language = session.language.code
        session.availability_failure = AvailabilityFailure(
            date=action.date,
            time=action.time,
            party_size=action.party_size,
            alternatives=alternatives,
            at=datetime.now(timezone.utc),
        )
        text = render(
            "unavailable", language, date=action.date, time=action.time, party_size=action.party_size
        )
        if alternatives:
            slots = ", ".join(s.time for s in alternatives)
            text = f"{text} {render('alternatives', language, slots=slots)}"
        return text

    async def _load_guest_history(self, session: Session) -> None:
        if session.guest_profile_fetched or not session.guest_key:
            return
        try:
            profile = await asyncio.wait_for(
                self.backend.get_guest_history(session.guest_key),
                timeout=self.config.guardrails.action_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning("Guest history lookup timed out")
            return
        except Exception as exc:
            logger.warning("Guest history lookup failed: %s", exc)
            return
        if isinstance(profile, GuestProfile):
            session.guest_profile = profile
            logger.info("Guest history loaded (%d bookings)", profile.total_bookings)
        session.guest_profile_fetched = True

    # ------------------------------------------------------------------ #
    # Persona
    # ------------------------------------------------------------------ #

    async def _persona_turn(
        self,
        session: Session,
        text: str,
        extraction: ExtractionResult,
        turn: TurnContext,
    ) -> _TurnOutcome:
        agent = self._agents[session.current_persona]
        messages = agent.build_messages(session, text, extraction)
        options = GenerationOptions(
            purpose="persona",
            max_tokens=400,
            temperature=self.config.model.reply_temperature,
        )
        try:
            response = agent.parse_response(await self.generator.generate_json(messages, options))
        except GenerationError:
            logger.warning("Persona %s generation failed; using scripted reply", agent.persona.value)
            response = PersonaResponse(reply="")
        if not response.reply:
            response.reply = agent.fallback_reply(session, extraction)

        report = await self.coordinator.run(response.actions, session, turn, text)
        action_calls = tuple(o.action.kind for o in report.outcomes)

        if report.gate_question:
            return _TurnOutcome(report.gate_question, action_calls=action_calls)
        if report.clarification:
            return _TurnOutcome(report.clarification, action_calls=action_calls)

        reply = response.reply
        if report.executed and report.tool_messages:
            reply = await self._final_reply(session, agent, text, response.reply, report.tool_messages, extraction)

        if self.guardrails.check_agent_response(reply):
            reply = agent.fallback_reply(session, extraction)
        return _TurnOutcome(reply, action_calls=action_calls)

    async def _final_reply(
        self,
        session: Session,
        agent: PersonaAgent,
        text: str,
        draft_reply: str,
        tool_messages: list[str],
        extraction: ExtractionResult,
    ) -> str:
        messages = build_final_reply_messages(
            system_prompt=agent.system_prompt,
            recent=session.recent_turns(self.config.session.transcript_window),
            message=text,
            draft_reply=draft_reply,
            tool_messages=tool_messages,
            language=session.language.code,
        )
        options = GenerationOptions(
            purpose="final_reply",
            max_tokens=400,
            temperature=self.config.model.reply_temperature,
        )
        try:
            reply = (await self.generator.generate_text(messages, options)).strip()
        except GenerationError:
            logger.warning("Final reply generation failed; using scripted reply")
            return agent.fallback_reply(session, extraction)
        return reply or agent.fallback_reply(session, extraction)

    async def _save(self, session: Session) -> None:
        try:
            await self.store.set(
                session.session_id,
                session.model_dump(mode="json"),
                ttl=self.config.session.ttl_seconds,
            )
        except SessionStoreError as exc:
            logger.error("Session write failed: %s", exc)

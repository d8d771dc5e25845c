"""Tests for the per-turn logging context."""

import logging

import pytest

from concierge.logging_context import (
    NO_SESSION,
    SessionIdFilter,
    bind_turn,
    current_context,
    get_session_id,
    get_session_logger,
    set_persona,
    set_session_id,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("concierge.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestContext:
    def test_bind_turn_sets_all_fields(self):
        bind_turn("web-abc", persona="new_booking", turn=3)
        assert current_context() == {"session_id": "web-abc", "persona": "new_booking", "turn": 3}

    def test_new_session_resets_persona_and_turn(self):
        bind_turn("web-abc", persona="new_booking", turn=3)
        set_session_id("web-def")
        assert get_session_id() == "web-def"
        assert current_context() == {"session_id": "web-def", "persona": "-", "turn": 0}

    def test_persona_updates_mid_turn(self):
        bind_turn("web-abc", persona="new_booking", turn=1)
        set_persona("existing_reservation")
        assert current_context()["persona"] == "existing_reservation"
        assert current_context()["turn"] == 1


class TestFilter:
    def test_record_is_stamped(self):
        bind_turn("web-abc", persona="new_booking", turn=2)
        record = _record()
        assert SessionIdFilter().filter(record)
        assert (record.session_id, record.persona, record.turn) == ("web-abc", "new_booking", 2)

    def test_explicit_extra_wins(self):
        bind_turn("web-abc", turn=2)
        record = _record(session_id="web-other")
        SessionIdFilter().filter(record)
        assert record.session_id == "web-other"

    def test_filter_attached_once(self):
        logger = get_session_logger("concierge.test_attach")
        get_session_logger("concierge.test_attach")
        assert sum(isinstance(f, SessionIdFilter) for f in logger.filters) == 1


class TestOrchestratorTurns:
    @pytest.mark.asyncio
    async def test_turn_records_carry_persona_and_number(self, orchestrator, caplog):
        caplog.set_level(logging.INFO, logger="concierge.orchestrator")
        session_id = await orchestrator.create_session("test-bistro")
        await orchestrator.handle_message(session_id, "what do you think about bitcoin?")

        blocked = [r for r in caplog.records if r.getMessage().startswith("Turn blocked")]
        assert len(blocked) == 1
        assert blocked[0].session_id == session_id
        assert blocked[0].persona == "new_booking"
        assert blocked[0].turn == 1

    @pytest.mark.asyncio
    async def test_records_outside_a_turn_have_no_session(self, orchestrator, caplog):
        set_session_id(NO_SESSION)
        caplog.set_level(logging.INFO, logger="concierge.orchestrator")
        await orchestrator.create_session("test-bistro")
        created = [r for r in caplog.records if "created" in r.getMessage()]
        assert created[0].session_id == NO_SESSION

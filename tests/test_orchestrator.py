"""End-to-end turn handling through the orchestrator."""

from unittest.mock import AsyncMock

import pytest

from concierge.orchestrator import ConversationOrchestrator, SessionNotFoundError
from concierge.schemas.conversation_schema import Persona

from tests.conftest import TOMORROW, fixed_today, make_config, update_session

PHONE = "+381 64 123 4567"
SUMMARY_19 = (
    f"Please confirm: a table for 4 on {TOMORROW} at 19:00, name Anna, "
    f"phone {PHONE}. Shall I book it?"
)


async def start(orchestrator, guest_key=None, persona=None, **draft):
    session_id = await orchestrator.create_session("test-bistro", guest_key=guest_key)

    def seed(session):
        session.draft.merge(draft)
        if persona is not None:
            session.current_persona = persona

    if draft or persona is not None:
        await update_session(orchestrator, session_id, seed)
    return session_id


async def open_booking_gate(orchestrator, generator):
    """Drive a fresh session to the point where a 19:00 booking awaits a yes."""
    session_id = await start(orchestrator)
    generator.script("extraction", {"date": TOMORROW, "time": "19:00", "party_size": 4})
    await orchestrator.handle_message(session_id, "Hi, I'd like to book a table for 4 tomorrow at 7pm")
    generator.script("extraction", {"name": "Anna", "phone": PHONE})
    result = await orchestrator.handle_message(session_id, f"Anna, {PHONE}")
    assert result.reply == SUMMARY_19
    return session_id


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_first_turn_asks_for_identity(self, orchestrator, generator):
        session_id = await start(orchestrator)
        generator.script("extraction", {"date": TOMORROW, "time": "19:00", "party_size": 4})
        result = await orchestrator.handle_message(
            session_id, "Hi, I'd like to book a table for 4 tomorrow at 7pm"
        )
        assert result.reply == "To book a table I still need your name, phone."
        session = await orchestrator.get_session(session_id)
        assert session.language.locked
        assert session.language.code == "en"

    @pytest.mark.asyncio
    async def test_booking_created_after_yes(self, orchestrator, generator, backend):
        session_id = await open_booking_gate(orchestrator, generator)
        assert await backend.find_reservations(PHONE) == []

        result = await orchestrator.handle_message(session_id, "yes")
        assert result.booking_created
        assert result.reply.startswith("Your table is booked!")
        assert f"Reservation: {result.reservation_id}" in result.reply
        assert result.persona == Persona.NEUTRAL
        assert result.handoff.trigger == "action_completed"

        session = await orchestrator.get_session(session_id)
        assert session.gate_is_idle
        assert session.active_reservation_id == result.reservation_id

    @pytest.mark.asyncio
    async def test_repeated_yes_does_not_double_book(self, orchestrator, generator, backend):
        session_id = await open_booking_gate(orchestrator, generator)
        await orchestrator.handle_message(session_id, "yes")
        result = await orchestrator.handle_message(session_id, "yes")
        assert not result.booking_created
        assert result.reply == "Is there anything else I can help you with?"
        assert len(await backend.find_reservations(PHONE)) == 1

    @pytest.mark.asyncio
    async def test_correction_refreshes_pending_summary(self, orchestrator, generator, backend):
        session_id = await open_booking_gate(orchestrator, generator)
        generator.script("extraction", {"time": "20:00"})
        result = await orchestrator.handle_message(session_id, "make it 20:00 instead")
        assert result.reply == SUMMARY_19.replace("19:00", "20:00")
        assert await backend.find_reservations(PHONE) == []

        result = await orchestrator.handle_message(session_id, "yes")
        assert "Time: 20:00" in result.reply


class TestScenarios:
    @pytest.mark.asyncio
    async def test_time_fills_partial_draft(self, orchestrator, generator):
        session_id = await start(orchestrator, date=TOMORROW, party_size=4)
        generator.script("extraction", {"time": "17:00"})
        result = await orchestrator.handle_message(session_id, "5pm")
        session = await orchestrator.get_session(session_id)
        assert session.draft.time == "17:00"
        assert session.draft.missing_fields() == ["name", "phone"]
        assert result.reply == "To book a table I still need your name, phone."

    @pytest.mark.asyncio
    async def test_party_size_correction_keeps_persona(self, orchestrator, generator):
        session_id = await start(orchestrator, date=TOMORROW, time="19:00", party_size=4)
        generator.script("extraction", {"party_size": 6})
        result = await orchestrator.handle_message(session_id, "actually 6 people")
        assert result.persona == Persona.NEW_BOOKING
        assert result.handoff is None
        session = await orchestrator.get_session(session_id)
        assert session.draft.party_size == 6

    @pytest.mark.asyncio
    async def test_name_conflict_resolved_by_guest(self, orchestrator, generator, backend):
        backend.seed_guest(name="Ana", phone="+381641234567")
        session_id = await open_booking_gate(orchestrator, generator)

        result = await orchestrator.handle_message(session_id, "yes")
        assert not result.booking_created
        assert "Ana" in result.reply and "Anna" in result.reply
        session = await orchestrator.get_session(session_id)
        assert session.pending_identity_clarification is not None
        assert session.pending_confirmation is None

        result = await orchestrator.handle_message(session_id, "use Anna")
        assert result.booking_created
        assert "Name: Anna" in result.reply
        session = await orchestrator.get_session(session_id)
        assert session.gate_is_idle
        assert session.confirmed_identity.name == "Anna"

    @pytest.mark.asyncio
    async def test_unclear_name_choice_reprompts(self, orchestrator, generator, backend):
        backend.seed_guest(name="Ana", phone="+381641234567")
        session_id = await open_booking_gate(orchestrator, generator)
        await orchestrator.handle_message(session_id, "yes")
        result = await orchestrator.handle_message(session_id, "whatever works")
        assert result.reply == "Please choose one: 1) Ana or 2) Anna."

    @pytest.mark.asyncio
    async def test_decline_keeps_draft_and_books_nothing(self, orchestrator, generator, backend):
        session_id = await start(orchestrator, name="Anna", date=TOMORROW, time="19:00", party_size=4)
        generator.script("extraction", {"phone": PHONE})
        result = await orchestrator.handle_message(session_id, f"my number is {PHONE}")
        assert result.reply == SUMMARY_19
        assert not result.booking_created

        result = await orchestrator.handle_message(session_id, "no")
        assert result.reply == (
            "No problem, nothing has been booked or changed. What would you like to adjust?"
        )
        session = await orchestrator.get_session(session_id)
        assert session.gate_is_idle
        assert session.draft.is_complete()
        assert await backend.find_reservations(PHONE) == []

        result = await orchestrator.handle_message(session_id, "thanks")
        assert result.reply != SUMMARY_19
        assert (await orchestrator.get_session(session_id)).gate_is_idle

    @pytest.mark.asyncio
    async def test_new_booking_keeps_identity(self, orchestrator):
        session_id = await start(
            orchestrator, persona=Persona.NEUTRAL,
            name="John", phone="555-1234", date=TOMORROW, time="19:00", party_size=4,
        )
        result = await orchestrator.handle_message(session_id, "I want to make a new booking")
        assert result.persona == Persona.NEW_BOOKING
        assert result.handoff.trigger == "explicit_phrase"
        assert result.reply == "To book a table I still need your date, time, guests."

        draft = (await orchestrator.get_session(session_id)).draft
        assert (draft.name, draft.phone) == ("John", "555-1234")
        assert (draft.date, draft.time, draft.party_size) == (None, None, None)


class TestConfirmationGate:
    @pytest.mark.asyncio
    async def test_unclear_reply_reprompts_then_asks_directly(self, orchestrator, generator):
        session_id = await open_booking_gate(orchestrator, generator)
        result = await orchestrator.handle_message(session_id, "hmm")
        assert result.reply == f"Sorry, I didn't quite get that. {SUMMARY_19}"
        result = await orchestrator.handle_message(session_id, "hmm")
        assert result.reply == "Please answer just yes or no: should I go ahead?"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["that's not correct", "that's not right"])
    async def test_negated_confirmation_books_nothing(self, orchestrator, generator, backend, reply):
        session_id = await open_booking_gate(orchestrator, generator)
        result = await orchestrator.handle_message(session_id, reply)
        assert not result.booking_created
        assert result.reply == (
            "No problem, nothing has been booked or changed. What would you like to adjust?"
        )
        assert (await orchestrator.get_session(session_id)).gate_is_idle
        assert await backend.find_reservations(PHONE) == []

    @pytest.mark.asyncio
    async def test_switching_topic_abandons_pending_booking(self, orchestrator, generator, backend):
        session_id = await open_booking_gate(orchestrator, generator)
        result = await orchestrator.handle_message(
            session_id, "actually I would rather cancel my reservation instead"
        )
        assert result.persona == Persona.EXISTING_BOOKING
        assert result.reply.startswith("Which reservation do you mean?")
        assert (await orchestrator.get_session(session_id)).gate_is_idle
        assert await backend.find_reservations(PHONE) == []


class TestAvailability:
    @pytest.mark.asyncio
    async def test_full_slot_offers_alternatives_and_rebooks(self, orchestrator, generator, backend):
        backend.capacity = 1
        await backend.create_reservation("Bob", "+381 11 222 3333", TOMORROW, "19:00", 2)
        session_id = await start(orchestrator, name="Anna", phone=PHONE, date=TOMORROW, party_size=4)

        generator.script("extraction", {"time": "19:00"})
        result = await orchestrator.handle_message(session_id, "7pm please")
        assert result.reply == (
            f"Unfortunately {TOMORROW} at 19:00 for 4 is fully booked. "
            "Nearby times that are free: 18:00, 18:30, 19:30."
        )
        assert (await orchestrator.get_session(session_id)).gate_is_idle

        result = await orchestrator.handle_message(session_id, "do you have a different time?")
        assert result.persona == Persona.AVAILABILITY
        assert result.handoff.trigger == "availability_failure"
        assert "18:30" in result.reply

        generator.script("extraction", {"time": "19:30"})
        result = await orchestrator.handle_message(session_id, "19:30 then")
        assert result.persona == Persona.NEW_BOOKING
        assert result.reply == SUMMARY_19.replace("19:00", "19:30")
        session = await orchestrator.get_session(session_id)
        assert session.availability_failure is None
        assert session.pending_confirmation.action.time == "19:30"


class TestExistingReservations:
    @pytest.mark.asyncio
    async def test_modify_after_confirmation(self, orchestrator, generator, backend):
        record = await backend.create_reservation("Anna", PHONE, TOMORROW, "19:00", 4)
        session_id = await start(orchestrator)

        generator.script("persona", {
            "reply": "One moment.",
            "actions": [{
                "kind": "modify_reservation",
                "reservation_id": record.id,
                "changes": {"time": "21:00"},
            }],
        })
        result = await orchestrator.handle_message(
            session_id, f"I need to change my reservation {record.id} to 21:00"
        )
        assert result.persona == Persona.EXISTING_BOOKING
        assert result.reply == (
            f"Please confirm: change reservation {record.id} (time: 21:00). Shall I go ahead?"
        )
        assert (await backend.find_reservations(record.id))[0].time == "19:00"

        result = await orchestrator.handle_message(session_id, "yes")
        assert result.reply == f"Reservation {record.id} is updated: {TOMORROW} at 21:00 for 4."
        assert (await backend.find_reservations(record.id))[0].time == "21:00"

    @pytest.mark.asyncio
    async def test_lookup_then_cancel(self, orchestrator, generator, backend):
        record = await backend.create_reservation("Anna", PHONE, TOMORROW, "19:00", 4)
        session_id = await start(orchestrator)

        generator.script("persona", {
            "reply": "Let me look that up.",
            "actions": [{"kind": "find_reservation", "identifier": PHONE}],
        })
        generator.script("final_reply", f"I found {record.id} for tomorrow at 19:00.")
        result = await orchestrator.handle_message(
            session_id, f"cancel my reservation, phone {PHONE}"
        )
        assert result.reply == f"I found {record.id} for tomorrow at 19:00."
        assert (await orchestrator.get_session(session_id)).active_reservation_id == record.id

        generator.script("persona", {"reply": "", "actions": [{"kind": "cancel_reservation"}]})
        result = await orchestrator.handle_message(session_id, "please cancel it")
        assert result.reply == f"Please confirm: cancel reservation {record.id}. Shall I go ahead?"

        result = await orchestrator.handle_message(session_id, "yes")
        assert result.reply == f"Reservation {record.id} has been cancelled."
        assert await backend.find_reservations(record.id) == []
        assert (await orchestrator.get_session(session_id)).active_reservation_id is None


class TestGuestHistory:
    @pytest.mark.asyncio
    async def test_usual_party_size_needs_a_yes(self, orchestrator, generator, backend):
        backend.seed_guest(name="Anna", phone=PHONE, guest_key="web-user-7", common_party_size=2)
        session_id = await start(orchestrator, guest_key="web-user-7")

        generator.script("extraction", {"date": TOMORROW, "time": "19:00"})
        result = await orchestrator.handle_message(session_id, "a table tomorrow at 7pm")
        assert result.reply == "Will it be 2 guests, like usual?"
        session = await orchestrator.get_session(session_id)
        assert session.guest_profile.common_party_size == 2
        assert session.draft.party_size is None

        await orchestrator.handle_message(session_id, "yes")
        assert (await orchestrator.get_session(session_id)).draft.party_size == 2


class TestGuardrailsAndFailures:
    @pytest.mark.asyncio
    async def test_rate_limited_turn_is_not_recorded(self, chain, backend, store):
        orchestrator = ConversationOrchestrator(
            generator=chain, backend=backend, store=store,
            config=make_config(rate_limit_per_minute=2), today_fn=fixed_today,
        )
        session_id = await start(orchestrator)
        await orchestrator.handle_message(session_id, "hello")
        await orchestrator.handle_message(session_id, "hello")
        result = await orchestrator.handle_message(session_id, "hello")
        assert result.blocked
        assert result.reply.startswith("You're sending messages a little too fast")
        session = await orchestrator.get_session(session_id)
        assert session.turn_count == 2
        assert len(session.turns) == 4

    @pytest.mark.asyncio
    async def test_off_topic_blocked(self, orchestrator):
        session_id = await start(orchestrator)
        result = await orchestrator.handle_message(session_id, "what do you think about bitcoin?")
        assert result.blocked
        assert result.reply == "I can only help with table reservations at Test Bistro."
        assert (await orchestrator.get_session(session_id)).turn_count == 0

    @pytest.mark.asyncio
    async def test_failed_turn_restores_session(self, orchestrator, generator, monkeypatch):
        session_id = await start(orchestrator, date=TOMORROW, party_size=4)
        monkeypatch.setattr(
            orchestrator, "_maybe_propose_create", AsyncMock(side_effect=RuntimeError("boom"))
        )
        generator.script("extraction", {"time": "17:00"})
        result = await orchestrator.handle_message(session_id, "5pm")
        assert result.reply == "Sorry, something went wrong on my side. Could you repeat that?"
        session = await orchestrator.get_session(session_id)
        assert session.draft.time is None
        assert session.turn_count == 1

    @pytest.mark.asyncio
    async def test_unknown_session(self, orchestrator):
        with pytest.raises(SessionNotFoundError):
            await orchestrator.handle_message("web-missing", "hello")

    @pytest.mark.asyncio
    async def test_unknown_session_leaves_no_bookkeeping(self, orchestrator):
        for _ in range(3):
            with pytest.raises(SessionNotFoundError):
                await orchestrator.handle_message("nope", "hello")
        assert "nope" not in orchestrator._locks
        assert "nope" not in orchestrator.guardrails.rate_limiter._hits

    @pytest.mark.asyncio
    async def test_expired_session_is_pruned(self, orchestrator):
        session_id = await start(orchestrator)
        await orchestrator.handle_message(session_id, "hello")
        assert session_id in orchestrator._locks
        await orchestrator.store.delete(session_id)

        stats = await orchestrator.get_stats()
        assert stats["active_sessions"] == 0
        assert session_id not in orchestrator._session_ids
        assert session_id not in orchestrator._locks
        assert session_id not in orchestrator.guardrails.rate_limiter._hits

    @pytest.mark.asyncio
    async def test_turn_on_expired_session_is_pruned(self, orchestrator):
        session_id = await start(orchestrator)
        await orchestrator.handle_message(session_id, "hello")
        await orchestrator.store.delete(session_id)
        with pytest.raises(SessionNotFoundError):
            await orchestrator.handle_message(session_id, "hello again")
        assert session_id not in orchestrator._locks
        assert session_id not in orchestrator._session_ids


class TestSessions:
    @pytest.mark.asyncio
    async def test_locale_sets_language(self, orchestrator):
        session_id = await orchestrator.create_session("test-bistro", locale="ru-RU")
        session = await orchestrator.get_session(session_id)
        assert session.language.code == "ru"
        assert session_id.startswith("web-")

    @pytest.mark.asyncio
    async def test_stats(self, orchestrator, generator):
        session_id = await open_booking_gate(orchestrator, generator)
        await orchestrator.handle_message(session_id, "yes")
        await start(orchestrator)

        stats = await orchestrator.get_stats()
        assert stats["active_sessions"] == 2
        assert stats["bookings_completed"] == 1
        assert stats["personas"] == {"neutral": 1, "new_booking": 1}
        assert stats["languages"] == {"en": 2}

    @pytest.mark.asyncio
    async def test_end_session(self, orchestrator):
        session_id = await start(orchestrator)
        await orchestrator.end_session(session_id)
        with pytest.raises(SessionNotFoundError):
            await orchestrator.get_session(session_id)
        assert (await orchestrator.get_stats())["active_sessions"] == 0

"""Tests for action execution, the queueing of side effects, and confirmed runs."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from concierge.schemas.booking_schema import (
    CancelReservationAction,
    CheckAvailabilityAction,
    CreateReservationAction,
    FindReservationAction,
    ModifyReservationAction,
    ReservationChanges,
    ReservationRecord,
    TouchedReservation,
)
from concierge.schemas.conversation_schema import Persona
from concierge.tools.backend import InMemoryReservationBackend
from concierge.tools.context import TurnContext
from concierge.tools.coordinator import (
    ActionCoordinator,
    build_confirmation_text,
    confirmation_summary,
    resolve_reservation_reference,
)

from tests.conftest import TOMORROW, fixed_today, make_config, make_session

COMPLETE_DRAFT = dict(name="Anna", phone="555-1234", date=TOMORROW, time="19:00", party_size=4)


class EchoingBackend(InMemoryReservationBackend):
    """Books normally but echoes back altered fields."""

    def __init__(self, config, **overrides):
        super().__init__(config)
        self.overrides = overrides

    async def create_reservation(self, *args, **kwargs):
        record = await super().create_reservation(*args, **kwargs)
        return record.model_copy(update=self.overrides)


class SlowBackend(InMemoryReservationBackend):
    async def create_reservation(self, *args, **kwargs):
        await asyncio.sleep(1)
        return await super().create_reservation(*args, **kwargs)


@pytest.fixture
def coordinator(backend, gate, config):
    return ActionCoordinator(backend, gate, config, today_fn=fixed_today)


def create_request(name: str = "Anna") -> CreateReservationAction:
    return CreateReservationAction(
        name=name, phone="555-1234", date=TOMORROW, time="19:00", party_size=4
    )


def touched(reservation_id: str) -> TouchedReservation:
    now = datetime.now(timezone.utc)
    return TouchedReservation(
        reservation_id=reservation_id, touched_at=now,
        expires_at=now + timedelta(minutes=10), operation="create",
    )


class TestReads:
    @pytest.mark.asyncio
    async def test_no_actions(self, coordinator):
        session = make_session()
        report = await coordinator.run([], session, TurnContext.for_session(session))
        assert report.outcomes == []
        assert not report.executed

    @pytest.mark.asyncio
    async def test_availability_ok(self, coordinator):
        session = make_session()
        action = CheckAvailabilityAction(date=TOMORROW, time="19:00", party_size=4)
        report = await coordinator.run([action], session, TurnContext.for_session(session))
        assert report.executed
        assert report.tool_messages[0].startswith("check_availability: ")
        assert session.availability_failure is None

    @pytest.mark.asyncio
    async def test_unavailable_records_failure_with_alternatives(self, coordinator, backend):
        backend.capacity = 0
        session = make_session()
        action = CheckAvailabilityAction(date=TOMORROW, time="19:00", party_size=4)
        await coordinator.run([action], session, TurnContext.for_session(session))
        failure = session.availability_failure
        assert (failure.date, failure.time, failure.party_size) == (TOMORROW, "19:00", 4)
        assert failure.alternatives == []

    @pytest.mark.asyncio
    async def test_single_lookup_sets_focus(self, coordinator, backend):
        record = await backend.create_reservation("Anna", "555-1234", TOMORROW, "19:00", 4)
        session = make_session(persona=Persona.EXISTING_BOOKING)
        action = FindReservationAction(identifier="555-1234")
        await coordinator.run([action], session, TurnContext.for_session(session))
        assert session.active_reservation_id == record.id
        assert [r.id for r in session.found_reservations] == [record.id]

    @pytest.mark.asyncio
    async def test_context_detached_after_run(self, coordinator):
        session = make_session()
        turn = TurnContext.for_session(session)
        with turn.attached(session, coordinator.backend) as ctx:
            assert ctx.live_session is session
        with pytest.raises(RuntimeError):
            ctx.live_session


class TestSideEffectsAreQueued:
    @pytest.mark.asyncio
    async def test_create_opens_gate_with_draft_values(self, coordinator, backend):
        session = make_session(**COMPLETE_DRAFT)
        report = await coordinator.run(
            [create_request(name="Bob")], session, TurnContext.for_session(session)
        )
        pending = session.pending_confirmation
        assert pending.action.name == "Anna"
        assert report.gate_question == pending.summary
        assert await backend.find_reservations("555-1234") == []

    @pytest.mark.asyncio
    async def test_create_with_incomplete_draft_fails(self, coordinator):
        session = make_session(name="Anna", date=TOMORROW)
        report = await coordinator.run([create_request()], session, TurnContext.for_session(session))
        assert session.gate_is_idle
        assert "missing phone, time, party_size" in report.tool_messages[0]

    @pytest.mark.asyncio
    async def test_create_into_full_slot_reports_unavailable(self, coordinator, backend):
        backend.capacity = 0
        session = make_session(**COMPLETE_DRAFT)
        report = await coordinator.run([create_request()], session, TurnContext.for_session(session))
        assert session.gate_is_idle
        assert session.availability_failure is not None
        assert report.gate_question is None

    @pytest.mark.asyncio
    async def test_only_first_side_effect_kept(self, coordinator):
        session = make_session(**COMPLETE_DRAFT)
        session.active_reservation_id = "R-ABC123"
        actions = [create_request(), CancelReservationAction(reservation_id="R-ABC123")]
        report = await coordinator.run(actions, session, TurnContext.for_session(session))
        assert len(report.outcomes) == 1
        assert session.pending_confirmation.action.kind == "create_reservation"

    @pytest.mark.asyncio
    async def test_side_effect_dropped_while_gate_pending(self, coordinator, gate):
        session = make_session(**COMPLETE_DRAFT)
        gate.open_confirmation(session, create_request(), "first question")
        session.active_reservation_id = "R-ABC123"
        report = await coordinator.run(
            [CancelReservationAction(reservation_id="R-ABC123")], session,
            TurnContext.for_session(session),
        )
        assert report.outcomes == []
        assert session.pending_confirmation.summary == "first question"

    @pytest.mark.asyncio
    async def test_cancel_without_reference_asks_which(self, coordinator):
        session = make_session(persona=Persona.EXISTING_BOOKING)
        report = await coordinator.run(
            [CancelReservationAction()], session, TurnContext.for_session(session), "cancel it"
        )
        assert session.gate_is_idle
        assert report.clarification.startswith("Which reservation")

    @pytest.mark.asyncio
    async def test_cancel_is_marked_confirmed_when_queued(self, coordinator):
        session = make_session(persona=Persona.EXISTING_BOOKING)
        session.active_reservation_id = "R-ABC123"
        await coordinator.run(
            [CancelReservationAction()], session, TurnContext.for_session(session), "cancel please"
        )
        action = session.pending_confirmation.action
        assert action.reservation_id == "R-ABC123"
        assert action.confirmed

    @pytest.mark.asyncio
    async def test_modify_without_changes_fails(self, coordinator):
        session = make_session(persona=Persona.EXISTING_BOOKING)
        session.active_reservation_id = "R-ABC123"
        report = await coordinator.run(
            [ModifyReservationAction()], session, TurnContext.for_session(session)
        )
        assert session.gate_is_idle
        assert "no changes requested" in report.tool_messages[0]

    @pytest.mark.asyncio
    async def test_modify_time_is_normalized(self, coordinator):
        session = make_session(persona=Persona.EXISTING_BOOKING)
        session.active_reservation_id = "R-ABC123"
        action = ModifyReservationAction(changes=ReservationChanges(time="8pm"))
        report = await coordinator.run([action], session, TurnContext.for_session(session))
        assert report.gate_question == (
            "Please confirm: change reservation R-ABC123 (time: 20:00). Shall I go ahead?"
        )
        assert session.pending_confirmation.action.changes.time == "20:00"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes, reply", [
        (
            {"time": "late evening"},
            "I can't change the time to late evening (time must be HH:MM). "
            "What should it be instead?",
        ),
        (
            {"date": "2020-01-01"},
            "I can't change the date to 2020-01-01 (date is in the past). "
            "What should it be instead?",
        ),
        (
            {"party_size": 50},
            "I can't change the guests to 50 (party size must be between 1 and 20). "
            "What should it be instead?",
        ),
    ])
    async def test_invalid_modify_asks_for_correction(self, coordinator, backend, changes, reply):
        record = await backend.create_reservation("Anna", "555-1234", TOMORROW, "19:00", 4)
        session = make_session(persona=Persona.EXISTING_BOOKING)
        session.active_reservation_id = record.id
        action = ModifyReservationAction(changes=ReservationChanges(**changes))
        report = await coordinator.run([action], session, TurnContext.for_session(session))
        assert session.gate_is_idle
        assert report.gate_question is None
        assert report.clarification == reply
        assert (await backend.find_reservations(record.id))[0].time == "19:00"


class TestExecuteConfirmed:
    @pytest.mark.asyncio
    async def test_create_success(self, coordinator):
        session = make_session(**COMPLETE_DRAFT)
        result = await coordinator.execute_confirmed(
            session, create_request(), TurnContext.for_session(session)
        )
        assert result.ok and result.booking_created
        assert session.active_reservation_id == result.reservation_id
        assert session.recently_touched[-1].reservation_id == result.reservation_id
        assert session.bookings_completed == 1
        assert session.current_persona == Persona.NEUTRAL
        assert session.handoffs[-1].trigger == "action_completed"
        assert session.booked_draft_signature == session.draft.signature()
        assert f"Reservation: {result.reservation_id}" in result.reply
        assert session.confirmed_identity.source == "create_result"

    @pytest.mark.asyncio
    async def test_confirmation_uses_echoed_values(self, gate, config):
        backend = EchoingBackend(config, time="19:30", name="Anna P.")
        coordinator = ActionCoordinator(backend, gate, config)
        session = make_session(**COMPLETE_DRAFT)
        result = await coordinator.execute_confirmed(
            session, create_request(), TurnContext.for_session(session)
        )
        assert "Time: 19:30" in result.reply
        assert "Name: Anna P." in result.reply
        assert "19:00" not in result.reply

    @pytest.mark.asyncio
    async def test_missing_echo_gives_generic_confirmation(self, gate, config):
        backend = EchoingBackend(config, phone=None)
        coordinator = ActionCoordinator(backend, gate, config)
        session = make_session(**COMPLETE_DRAFT)
        result = await coordinator.execute_confirmed(
            session, create_request(), TurnContext.for_session(session)
        )
        assert result.booking_created
        assert result.reply == "Your booking is confirmed. Details will follow shortly."
        assert "555-1234" not in result.reply

    @pytest.mark.asyncio
    async def test_name_conflict_opens_identity_gate(self, coordinator, backend):
        backend.seed_guest(name="Ana", phone="555-1234")
        session = make_session(**COMPLETE_DRAFT)
        result = await coordinator.execute_confirmed(
            session, create_request(), TurnContext.for_session(session)
        )
        assert result.name_conflict and not result.ok
        gate = session.pending_identity_clarification
        assert (gate.db_name, gate.request_name) == ("Ana", "Anna")
        assert "Ana" in result.reply and "Anna" in result.reply

    @pytest.mark.asyncio
    async def test_backend_rejection(self, coordinator):
        session = make_session(persona=Persona.EXISTING_BOOKING)
        action = CancelReservationAction(reservation_id="R-000000", confirmed=True)
        result = await coordinator.execute_confirmed(session, action, TurnContext.for_session(session))
        assert not result.ok
        assert result.reply.startswith("Sorry, I couldn't complete that")
        assert session.current_persona == Persona.EXISTING_BOOKING

    @pytest.mark.asyncio
    async def test_timeout(self, gate):
        config = make_config(action_timeout_sec=0.05)
        coordinator = ActionCoordinator(SlowBackend(config), gate, config)
        session = make_session(**COMPLETE_DRAFT)
        result = await coordinator.execute_confirmed(
            session, create_request(), TurnContext.for_session(session)
        )
        assert not result.ok
        assert "timeout" in result.reply

    @pytest.mark.asyncio
    async def test_modify_and_cancel(self, coordinator, backend):
        record = await backend.create_reservation("Anna", "555-1234", TOMORROW, "19:00", 4)
        session = make_session(persona=Persona.EXISTING_BOOKING)
        session.active_reservation_id = record.id
        turn = TurnContext.for_session(session)

        modify = ModifyReservationAction(
            reservation_id=record.id, changes=ReservationChanges(time="20:00")
        )
        result = await coordinator.execute_confirmed(session, modify, turn)
        assert result.reply == f"Reservation {record.id} is updated: {TOMORROW} at 20:00 for 4."

        cancel = CancelReservationAction(reservation_id=record.id, confirmed=True)
        result = await coordinator.execute_confirmed(session, cancel, turn)
        assert result.reply == f"Reservation {record.id} has been cancelled."
        assert session.active_reservation_id is None


class TestReferenceResolution:
    def test_known_explicit_id(self):
        session = make_session()
        session.found_reservations = [ReservationRecord(id="R-AAAAAA"), ReservationRecord(id="R-BBBBBB")]
        assert resolve_reservation_reference(session, "the second one", "R-BBBBBB") == "R-BBBBBB"

    def test_explicit_id_mentioned_by_guest(self):
        session = make_session()
        assert resolve_reservation_reference(session, "cancel r-abc123", "r-abc123") == "R-ABC123"

    def test_invented_id_ignored(self):
        session = make_session()
        assert resolve_reservation_reference(session, "cancel my booking", "R-FFFFFF") is None

    def test_pronoun_means_last_touched(self):
        session = make_session()
        session.active_reservation_id = "R-AAAAAA"
        session.recently_touched = [touched("R-AAAAAA"), touched("R-BBBBBB")]
        assert resolve_reservation_reference(session, "actually cancel it") == "R-BBBBBB"

    def test_active_reservation(self):
        session = make_session()
        session.active_reservation_id = "R-AAAAAA"
        assert resolve_reservation_reference(session, "move to 9pm") == "R-AAAAAA"

    def test_single_found(self):
        session = make_session()
        session.found_reservations = [ReservationRecord(id="R-AAAAAA")]
        assert resolve_reservation_reference(session, "move to 9pm") == "R-AAAAAA"

    def test_ambiguous_found(self):
        session = make_session()
        session.found_reservations = [ReservationRecord(id="R-AAAAAA"), ReservationRecord(id="R-BBBBBB")]
        assert resolve_reservation_reference(session, "move to 9pm") is None


class TestRendering:
    def test_summary_lists_snapshot_values(self):
        action = CreateReservationAction(
            name="Anna", phone="555-1234", date=TOMORROW, time="19:00", party_size=4,
            comments="window",
        )
        assert confirmation_summary(action, "en") == (
            "Please confirm: a table for 4 on 2026-10-18 at 19:00, name Anna, "
            "phone 555-1234, notes: window. Shall I book it?"
        )

    def test_modify_summary(self):
        action = ModifyReservationAction(
            reservation_id="R-ABC123", changes=ReservationChanges(time="20:00", party_size=6)
        )
        assert "time: 20:00, guests: 6" in confirmation_summary(action, "en")

    def test_confirmation_text_localized(self):
        record = ReservationRecord(
            id="R-ABC123", name="Иван", phone="+7 900 1234567", date=TOMORROW,
            time="19:00", party_size=2,
        )
        text = build_confirmation_text(record, "ru")
        assert "Имя: Иван" in text
        assert "Бронь: R-ABC123" in text

    def test_confirmation_text_missing_party_size(self):
        record = ReservationRecord(
            id="R-ABC123", name="Anna", phone="555-1234", date=TOMORROW, time="19:00"
        )
        assert build_confirmation_text(record, "en") == (
            "Your booking is confirmed. Details will follow shortly."
        )

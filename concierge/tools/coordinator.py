"""
Executes backend actions for one turn and folds the results into the session.

Two passes:
1. Execute every read action (with a timeout) and prepare side-effecting
   ones; nothing on the session changes yet.
2. Apply each outcome to the session in order and build the tool messages
   the model sees in its final reply.

Create, modify, and cancel never run from a persona turn. The first one
requested opens the confirmation gate; it runs only through
``execute_confirmed`` after the guest says yes.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

from concierge.config import AppConfig, settings
from concierge.conversation.extractor import today_in
from concierge.conversation.gate import ConfirmationGate
from concierge.conversation.slot_manager import SlotValidator
from concierge.conversation.time_normalization import normalize_time_tokens
from concierge.prompts.messages import field_labels, render
from concierge.schemas.booking_schema import (
    SIDE_EFFECT_KINDS,
    AvailabilityFailure,
    AvailabilityResult,
    CancelReservationAction,
    CheckAvailabilityAction,
    ConfirmedIdentity,
    CreateReservationAction,
    FindAlternativesAction,
    FindReservationAction,
    GatheringInfo,
    GetGuestHistoryAction,
    GuestProfile,
    ModifyReservationAction,
    ReservationChanges,
    ReservationRecord,
    TimeSlot,
    TouchedReservation,
)
from concierge.schemas.conversation_schema import Persona
from concierge.schemas.session_schema import Session
from concierge.tools.backend import NameConflictError, ReservationBackend, ReservationError
from concierge.tools.context import ExecutionContext, TurnContext
from concierge.utils import fold_text

logger = logging.getLogger(__name__)

CONFIRMATION_FIELDS: tuple[str, ...] = ("id", "name", "phone", "date", "time", "party_size")

REFERENCE_PHRASES: tuple[str, ...] = (
    "it", "that one", "this one", "that reservation", "this reservation", "that booking",
    "this booking", "the reservation", "the booking", "just made", "just booked",
    "её", "ее", "его", "эту бронь", "эту", "ту бронь",
    "nju", "tu rezervaciju", "ovu rezervaciju", "ezt", "azt", "sie", "diese", "la", "esa",
)

_ID_RE = re.compile(r"\bR-[0-9A-F]{6}\b", re.IGNORECASE)


# ---------------------------------------------------------------------- #
# Rendering helpers shared with the orchestrator
# ---------------------------------------------------------------------- #


def draft_create_action(draft: GatheringInfo) -> Optional[CreateReservationAction]:
    """The create action for a complete draft, or None if anything is missing."""
    if not draft.is_complete():
        return None
    return CreateReservationAction(
        name=draft.name,
        phone=draft.phone,
        date=draft.date,
        time=draft.time,
        party_size=draft.party_size,
        comments=draft.comments,
    )


def confirmation_summary(action: Any, language: str) -> str:
    """Read-back for the confirmation question, from the queued snapshot."""
    if isinstance(action, CreateReservationAction):
        labels = field_labels(language)
        comments = f", {labels['comments'].lower()}: {action.comments}" if action.comments else ""
        return render(
            "confirm_create", language,
            party_size=action.party_size, date=action.date, time=action.time,
            name=action.name, phone=action.phone, comments=comments,
        )
    if isinstance(action, ModifyReservationAction):
        labels = field_labels(language)
        changes = ", ".join(
            f"{labels.get(key, key).lower()}: {value}" for key, value in action.changes.as_dict().items()
        )
        return render("confirm_modify", language, reservation_id=action.reservation_id, changes=changes)
    return render("confirm_cancel", language, reservation_id=action.reservation_id)


def build_confirmation_text(record: ReservationRecord, language: str) -> str:
    """Guest-facing booking confirmation built only from the backend's echo.

    If the backend left out any field the message needs, fall back to a
    generic confirmation instead of filling the gap from anywhere else.
    """
    values = record.model_dump()
    missing = [f for f in CONFIRMATION_FIELDS if values.get(f) in (None, "")]
    if missing:
        logger.warning("Create result %s missing %s; using generic confirmation", record.id, missing)
        return render("booking_confirmed_generic", language)
    labels = field_labels(language)
    return render(
        "booking_confirmed", language,
        id_label=labels["id"], id=record.id,
        name_label=labels["name"], name=record.name,
        phone_label=labels["phone"], phone=record.phone,
        date_label=labels["date"], date=record.date,
        time_label=labels["time"], time=record.time,
        party_size_label=labels["party_size"], party_size=record.party_size,
    )


def _modified_text(record: ReservationRecord, language: str) -> str:
    if any(getattr(record, f) in (None, "") for f in ("date", "time", "party_size")):
        return render("modified_generic", language)
    return render(
        "modified", language,
        id=record.id, date=record.date, time=record.time, party_size=record.party_size,
    )


def _slots_text(slots: list[TimeSlot]) -> str:
    return ", ".join(f"{s.date} {s.time}" for s in slots)


# ---------------------------------------------------------------------- #
# Results
# ---------------------------------------------------------------------- #


@dataclass
class ActionOutcome:
    """Raw result of one requested action, collected in the first pass."""

    action: Any
    ok: bool
    result: Any = None
    alternatives: list[TimeSlot] = field(default_factory=list)
    error: Optional[str] = None
    queued: bool = False
    summary: Optional[str] = None
    clarification: Optional[str] = None


@dataclass
class CoordinatorReport:
    outcomes: list[ActionOutcome] = field(default_factory=list)
    tool_messages: list[str] = field(default_factory=list)
    gate_question: Optional[str] = None
    clarification: Optional[str] = None

    @property
    def executed(self) -> bool:
        return any(not o.queued for o in self.outcomes)


@dataclass
class ConfirmedResult:
    """What running a confirmed action produced for the guest."""

    reply: str
    ok: bool
    booking_created: bool = False
    reservation_id: Optional[str] = None
    name_conflict: bool = False


class ActionCoordinator:
    """Runs model-requested actions against the reservation backend."""

    def __init__(
        self,
        backend: ReservationBackend,
        gate: ConfirmationGate,
        config: AppConfig = settings,
        validator: Optional[SlotValidator] = None,
        today_fn: Callable[[str], date] = today_in,
    ) -> None:
        self.backend = backend
        self.gate = gate
        self.config = config
        self.timeout = config.guardrails.action_timeout_sec
        self.validator = validator or SlotValidator(config.restaurant.max_party_size)
        self._today_fn = today_fn

    # ------------------------------------------------------------------ #
    # Persona turn
    # ------------------------------------------------------------------ #

    async def run(
        self,
        actions: list[Any],
        session: Session,
        turn: TurnContext,
        message: str = "",
    ) -> CoordinatorReport:
        report = CoordinatorReport()
        if not actions:
            return report

        with turn.attached(session, self.backend) as ctx:
            side_effect_seen = not session.gate_is_idle
            for action in actions:
                if action.kind in SIDE_EFFECT_KINDS:
                    if side_effect_seen:
                        logger.info("Dropped extra side-effecting action %s", action.kind)
                        continue
                    side_effect_seen = True
                    report.outcomes.append(await self._prepare(ctx, action, message))
                else:
                    report.outcomes.append(await self._execute_read(ctx, action))

            for outcome in report.outcomes:
                self._apply(ctx, outcome, report)
        return report

    async def _execute_read(self, ctx: ExecutionContext, action: Any) -> ActionOutcome:
        backend = ctx.backend
        try:
            if isinstance(action, CheckAvailabilityAction):
                result = await self._bounded(
                    backend.check_availability(action.date, action.time, action.party_size)
                )
                outcome = ActionOutcome(action, ok=True, result=result)
                if not result.available:
                    outcome.alternatives = await self._bounded(
                        backend.find_alternatives(action.date, action.time, action.party_size)
                    )
                return outcome
            if isinstance(action, FindAlternativesAction):
                slots = await self._bounded(
                    backend.find_alternatives(action.date, action.time, action.party_size)
                )
                return ActionOutcome(action, ok=True, result=slots)
            if isinstance(action, FindReservationAction):
                records = await self._bounded(
                    backend.find_reservations(action.identifier, action.identifier_type)
                )
                return ActionOutcome(action, ok=True, result=records)
            if isinstance(action, GetGuestHistoryAction):
                profile = await self._bounded(backend.get_guest_history(action.guest_key))
                return ActionOutcome(action, ok=True, result=profile)
        except asyncio.TimeoutError:
            logger.warning("Action %s timed out after %.1fs", action.kind, self.timeout)
            return ActionOutcome(action, ok=False, error="timeout")
        except ReservationError as exc:
            return ActionOutcome(action, ok=False, error=exc.code)
        except Exception as exc:
            logger.error("Action %s failed: %s", action.kind, exc)
            return ActionOutcome(action, ok=False, error="backend_error")
        return ActionOutcome(action, ok=False, error="unsupported")

    async def _prepare(self, ctx: ExecutionContext, action: Any, message: str) -> ActionOutcome:
        """Build the snapshot a side-effecting action will be confirmed against."""
        session = ctx.live_session
        language = session.language.code

        if isinstance(action, CreateReservationAction):
            # The queued values always come from the validated draft.
            prepared = draft_create_action(session.draft)
            if prepared is None:
                return ActionOutcome(
                    action, ok=False, error=f"missing {', '.join(session.draft.missing_fields())}"
                )
            try:
                availability = await self._bounded(
                    ctx.backend.check_availability(prepared.date, prepared.time, prepared.party_size)
                )
            except Exception as exc:
                logger.warning("Availability check before create failed: %s", exc)
                return ActionOutcome(action, ok=False, error="availability_unknown")
            if not availability.available:
                alternatives = await self._safe_alternatives(ctx, prepared)
                return ActionOutcome(
                    CheckAvailabilityAction(
                        date=prepared.date, time=prepared.time, party_size=prepared.party_size
                    ),
                    ok=True, result=availability, alternatives=alternatives,
                )
            return ActionOutcome(
                prepared, ok=True, queued=True, summary=confirmation_summary(prepared, language)
            )

        reservation_id = resolve_reservation_reference(session, message, action.reservation_id)
        if reservation_id is None:
            return ActionOutcome(action, ok=False, error="which_reservation")

        if isinstance(action, ModifyReservationAction):
            if not action.changes.as_dict():
                return ActionOutcome(action, ok=False, error="no changes requested")
            changes, rejection = self._validate_changes(session, action.changes.as_dict())
            if rejection is not None:
                name, value, reason = rejection
                return ActionOutcome(
                    action, ok=False, error=f"invalid {name}: {reason}",
                    clarification=render(
                        "invalid_change", language,
                        field=field_labels(language)[name].lower(), value=value, reason=reason,
                    ),
                )
            prepared = action.model_copy(
                update={"reservation_id": reservation_id, "changes": ReservationChanges(**changes)}
            )
        else:
            prepared = action.model_copy(update={"reservation_id": reservation_id, "confirmed": True})
        return ActionOutcome(
            prepared, ok=True, queued=True, summary=confirmation_summary(prepared, language)
        )

    def _validate_changes(
        self, session: Session, changes: dict[str, Any]
    ) -> tuple[dict[str, Any], Optional[tuple[str, Any, str]]]:
        """Normalize requested changes the same way draft values are.

        Returns the normalized changes, or the first rejected (field, value, reason).
        """
        today = self._today_fn(session.timezone)
        normalized: dict[str, Any] = {}
        for name, value in changes.items():
            if name == "time":
                value = normalize_time_tokens(str(value)).text.strip()
            ok, clean, reason = self.validator.validate(name, value, today)
            if not ok:
                logger.info("Rejected requested %s change %r: %s", name, value, reason)
                return {}, (name, changes[name], reason or "invalid")
            normalized[name] = clean
        return normalized, None

    async def _safe_alternatives(self, ctx: ExecutionContext, action: Any) -> list[TimeSlot]:
        try:
            return await self._bounded(
                ctx.backend.find_alternatives(action.date, action.time, action.party_size)
            )
        except Exception as exc:
            logger.warning("Alternative search failed: %s", exc)
            return []

    def _apply(self, ctx: ExecutionContext, outcome: ActionOutcome, report: CoordinatorReport) -> None:
        session = ctx.live_session
        language = session.language.code
        action = outcome.action

        if not outcome.ok:
            if outcome.error == "which_reservation":
                report.clarification = render("which_reservation", language)
            elif outcome.clarification:
                report.clarification = outcome.clarification
            report.tool_messages.append(f"{action.kind}: failed ({outcome.error})")
            return

        if outcome.queued:
            self.gate.open_confirmation(session, action, outcome.summary)
            report.gate_question = outcome.summary
            report.tool_messages.append(f"{action.kind}: waiting for guest confirmation")
            return

        result = outcome.result
        if isinstance(result, AvailabilityResult):
            if result.available:
                session.availability_failure = None
            else:
                session.availability_failure = AvailabilityFailure(
                    date=action.date,
                    time=action.time,
                    party_size=action.party_size,
                    alternatives=outcome.alternatives,
                    at=datetime.now(timezone.utc),
                )
            payload = {
                "available": result.available,
                "message": result.message,
                "alternatives": [s.model_dump() for s in outcome.alternatives],
            }
        elif isinstance(action, FindAlternativesAction):
            if session.availability_failure is not None:
                session.availability_failure.alternatives = list(result)
            payload = {"slots": [s.model_dump() for s in result]}
        elif isinstance(action, FindReservationAction):
            session.found_reservations = list(result)
            if len(result) == 1:
                session.active_reservation_id = result[0].id
            payload = {"reservations": [r.model_dump(exclude_none=True) for r in result]}
        elif isinstance(action, GetGuestHistoryAction):
            if isinstance(result, GuestProfile):
                session.guest_profile = result
            session.guest_profile_fetched = True
            payload = {"guest": result.model_dump() if result is not None else None}
        else:
            payload = {}
        report.tool_messages.append(f"{action.kind}: {json.dumps(payload, ensure_ascii=False)}")

    # ------------------------------------------------------------------ #
    # Confirmed side effects
    # ------------------------------------------------------------------ #

    async def execute_confirmed(
        self, session: Session, action: Any, turn: TurnContext
    ) -> ConfirmedResult:
        """Run an action the guest has just confirmed. The gate must be idle."""
        language = session.language.code
        with turn.attached(session, self.backend) as ctx:
            try:
                record = await self._bounded(self._call(ctx, action))
            except NameConflictError as conflict:
                self.gate.open_identity_clarification(
                    session, action, conflict.db_name, conflict.request_name
                )
                return ConfirmedResult(
                    reply=render(
                        "name_conflict_question", language,
                        db_name=conflict.db_name, request_name=conflict.request_name,
                    ),
                    ok=False,
                    name_conflict=True,
                )
            except asyncio.TimeoutError:
                logger.warning("Confirmed %s timed out", action.kind)
                return ConfirmedResult(render("action_failed", language, reason="timeout"), ok=False)
            except ReservationError as exc:
                logger.info("Confirmed %s rejected: %s", action.kind, exc.code)
                return ConfirmedResult(
                    render("action_failed", language, reason=str(exc)), ok=False
                )
            except Exception as exc:
                logger.error("Confirmed %s failed: %s", action.kind, exc)
                return ConfirmedResult(
                    render("action_failed", language, reason="backend error"), ok=False
                )
            return self._apply_confirmed(ctx, action, record)

    async def _call(self, ctx: ExecutionContext, action: Any) -> ReservationRecord:
        backend = ctx.backend
        if isinstance(action, CreateReservationAction):
            return await backend.create_reservation(
                name=action.name,
                phone=action.phone,
                date=action.date,
                time=action.time,
                party_size=action.party_size,
                comments=action.comments,
                confirmed_name=action.confirmed_name,
            )
        if isinstance(action, ModifyReservationAction):
            return await backend.modify_reservation(
                action.reservation_id, action.changes.as_dict(), action.reason
            )
        if isinstance(action, CancelReservationAction):
            return await backend.cancel_reservation(action.reservation_id, action.reason, confirmed=True)
        raise ReservationError("UNSUPPORTED", f"{action.kind} is not a side-effecting action")

    def _apply_confirmed(
        self, ctx: ExecutionContext, action: Any, record: ReservationRecord
    ) -> ConfirmedResult:
        session = ctx.live_session
        language = session.language.code
        operation = action.kind.split("_")[0]
        self._touch(session, record, operation)

        if isinstance(action, CreateReservationAction):
            session.active_reservation_id = record.id
            session.bookings_completed += 1
            session.availability_failure = None
            session.booked_draft_signature = session.draft.signature()
            if record.name or record.phone:
                session.confirmed_identity = ConfirmedIdentity(
                    name=record.name, phone=record.phone, source="create_result"
                )
            reply = build_confirmation_text(record, language)
            session.switch_persona(Persona.NEUTRAL, "action_completed", f"reservation {record.id} created")
            return ConfirmedResult(reply, ok=True, booking_created=True, reservation_id=record.id)

        if isinstance(action, ModifyReservationAction):
            session.active_reservation_id = record.id
            reply = _modified_text(record, language)
            session.switch_persona(Persona.NEUTRAL, "action_completed", f"reservation {record.id} modified")
            return ConfirmedResult(reply, ok=True, reservation_id=record.id)

        if session.active_reservation_id == record.id:
            session.active_reservation_id = None
        session.found_reservations = [r for r in session.found_reservations if r.id != record.id]
        reply = render("cancelled", language, id=record.id)
        session.switch_persona(Persona.NEUTRAL, "action_completed", f"reservation {record.id} cancelled")
        return ConfirmedResult(reply, ok=True, reservation_id=record.id)

    def _touch(self, session: Session, record: ReservationRecord, operation: str) -> None:
        now = datetime.now(timezone.utc)
        session.recently_touched = [t for t in session.recently_touched if t.reservation_id != record.id]
        session.recently_touched.append(TouchedReservation(
            reservation_id=record.id,
            touched_at=now,
            expires_at=now + timedelta(seconds=self.config.session.touched_reservation_ttl_sec),
            operation=operation,
            name=record.name,
            phone=record.phone,
        ))

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout)


def resolve_reservation_reference(
    session: Session, message: str, explicit_id: Optional[str] = None
) -> Optional[str]:
    """Which reservation "it" means, or None when the guest must be asked.

    Order: an explicit id the conversation can vouch for, a recently touched
    reservation referred to by pronoun, the active reservation, the only
    reservation found by a lookup.
    """
    known = {r.id for r in session.found_reservations}
    known.update(t.reservation_id for t in session.recently_touched)
    if session.active_reservation_id:
        known.add(session.active_reservation_id)

    if explicit_id:
        if explicit_id in known:
            return explicit_id
        mentioned = {m.upper() for m in _ID_RE.findall(message)}
        if explicit_id.strip().upper() in mentioned:
            return explicit_id.strip().upper()
        logger.info("Ignoring unverified reservation id %r", explicit_id)

    if session.recently_touched and any(
        re.search(r"(?<!\w)" + re.escape(p) + r"(?!\w)", fold_text(message)) for p in REFERENCE_PHRASES
    ):
        return session.recently_touched[-1].reservation_id

    if session.active_reservation_id:
        return session.active_reservation_id
    if len(session.found_reservations) == 1:
        return session.found_reservations[0].id
    return None

"""
Reservation engine interface and an in-memory implementation.

In production, ``ReservationBackend`` is implemented against the
restaurant's booking system over HTTP. The in-memory engine keeps guests
keyed by phone, a fixed number of tables per half-hour slot, and raises a
structured name conflict when a known phone books under a different name.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from concierge.config import AppConfig, settings
from concierge.schemas.booking_schema import (
    AvailabilityResult,
    GuestProfile,
    ReservationRecord,
    TimeSlot,
)
from concierge.utils import fold_text, normalize_phone, phone_digits

logger = logging.getLogger(__name__)

SLOT_MINUTES = 30
MAX_ALTERNATIVES = 3


class ReservationError(Exception):
    """A backend rejected an action. ``code`` is machine-readable."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code


class NameConflictError(ReservationError):
    """The phone is on file under a different guest name."""

    def __init__(self, db_name: str, request_name: str) -> None:
        super().__init__(
            "NAME_CONFLICT", f"Phone registered to {db_name!r}, request used {request_name!r}"
        )
        self.db_name = db_name
        self.request_name = request_name


class ReservationBackend(ABC):
    """The black-box reservation engine the coordinator talks to."""

    async def open(self) -> None:
        """Acquire connections. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    @abstractmethod
    async def check_availability(self, date: str, time: str, party_size: int) -> AvailabilityResult:
        ...

    @abstractmethod
    async def find_alternatives(self, date: str, time: str, party_size: int) -> list[TimeSlot]:
        ...

    @abstractmethod
    async def create_reservation(
        self,
        name: str,
        phone: str,
        date: str,
        time: str,
        party_size: int,
        comments: Optional[str] = None,
        confirmed_name: Optional[str] = None,
    ) -> ReservationRecord:
        """Book a table.

        Raises:
            NameConflictError: The phone belongs to a guest with another name
                and ``confirmed_name`` was not given.
            ReservationError: The slot is full or the request is invalid.
        """

    @abstractmethod
    async def modify_reservation(
        self, reservation_id: str, changes: dict[str, Any], reason: str = ""
    ) -> ReservationRecord:
        ...

    @abstractmethod
    async def cancel_reservation(
        self, reservation_id: str, reason: str = "", confirmed: bool = False
    ) -> ReservationRecord:
        ...

    @abstractmethod
    async def find_reservations(
        self, identifier: str, identifier_type: str = "auto"
    ) -> list[ReservationRecord]:
        ...

    @abstractmethod
    async def get_guest_history(self, guest_key: str) -> Optional[GuestProfile]:
        ...


def _slot_minutes(time: str) -> int:
    hours, minutes = time.split(":")
    return int(hours) * 60 + int(minutes)


def _format_minutes(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


class InMemoryReservationBackend(ReservationBackend):
    """Process-local engine used by the console demo and the test suite."""

    def __init__(self, config: AppConfig = settings) -> None:
        self.config = config
        self.capacity = config.restaurant.tables_per_slot
        self._reservations: dict[str, dict[str, Any]] = {}
        self._guests: dict[str, dict[str, Any]] = {}
        self._aliases: dict[str, str] = {}

    # ------------------------------------------------------------------ #
    # Fixtures
    # ------------------------------------------------------------------ #

    def seed_guest(
        self,
        name: str,
        phone: str,
        guest_key: Optional[str] = None,
        total_bookings: int = 0,
        last_visit: Optional[str] = None,
        common_party_size: Optional[int] = None,
        frequent_requests: Optional[list[str]] = None,
    ) -> None:
        key = normalize_phone(phone)
        self._guests[key] = {
            "name": name,
            "phone": phone,
            "total_bookings": total_bookings,
            "last_visit": last_visit,
            "common_party_size": common_party_size,
            "frequent_requests": list(frequent_requests or []),
        }
        if guest_key:
            self._aliases[guest_key] = key

    def reset(self) -> None:
        """Clear all data. Used by test fixtures for isolation."""
        self._reservations.clear()
        self._guests.clear()
        self._aliases.clear()

    # ------------------------------------------------------------------ #
    # Availability
    # ------------------------------------------------------------------ #

    def _within_hours(self, time: str) -> bool:
        minutes = _slot_minutes(time)
        return (
            self.config.restaurant.opening_hour * 60
            <= minutes
            < self.config.restaurant.closing_hour * 60
        )

    def _tables_free(self, date: str, time: str) -> int:
        taken = sum(
            1 for r in self._reservations.values()
            if r["date"] == date and r["time"] == time and r["status"] != "cancelled"
        )
        return self.capacity - taken

    async def check_availability(self, date: str, time: str, party_size: int) -> AvailabilityResult:
        if party_size > self.config.restaurant.max_party_size:
            return AvailabilityResult(
                available=False, message=f"Parties above {self.config.restaurant.max_party_size} need a call."
            )
        if not self._within_hours(time):
            return AvailabilityResult(available=False, message=f"We are closed at {time}.")
        free = self._tables_free(date, time)
        if free <= 0:
            return AvailabilityResult(available=False, message=f"No tables left on {date} at {time}.")
        return AvailabilityResult(
            available=True,
            slots=[TimeSlot(date=date, time=time, tables_available=free)],
            message=f"{free} table(s) free on {date} at {time}.",
        )

    async def find_alternatives(self, date: str, time: str, party_size: int) -> list[TimeSlot]:
        requested = _slot_minutes(time)
        opening = self.config.restaurant.opening_hour * 60
        closing = self.config.restaurant.closing_hour * 60
        candidates = sorted(
            range(opening, closing, SLOT_MINUTES), key=lambda m: (abs(m - requested), m)
        )
        slots: list[TimeSlot] = []
        for minutes in candidates:
            if minutes == requested:
                continue
            slot_time = _format_minutes(minutes)
            free = self._tables_free(date, slot_time)
            if free > 0:
                slots.append(TimeSlot(date=date, time=slot_time, tables_available=free))
            if len(slots) >= MAX_ALTERNATIVES:
                break
        return sorted(slots, key=lambda s: s.time)

    # ------------------------------------------------------------------ #
    # Reservations
    # ------------------------------------------------------------------ #

    async def create_reservation(
        self,
        name: str,
        phone: str,
        date: str,
        time: str,
        party_size: int,
        comments: Optional[str] = None,
        confirmed_name: Optional[str] = None,
    ) -> ReservationRecord:
        availability = await self.check_availability(date, time, party_size)
        if not availability.available:
            raise ReservationError("UNAVAILABLE", availability.message)

        key = normalize_phone(phone)
        guest = self._guests.get(key)
        if guest is not None and fold_text(guest["name"]) != fold_text(name):
            if confirmed_name is None:
                raise NameConflictError(db_name=guest["name"], request_name=name)
            name = confirmed_name
        elif confirmed_name:
            name = confirmed_name

        if guest is None:
            self.seed_guest(name=name, phone=phone)
            guest = self._guests[key]
        guest["name"] = name
        guest["total_bookings"] += 1
        guest["last_visit"] = date

        reservation_id = f"R-{uuid.uuid4().hex[:6].upper()}"
        self._reservations[reservation_id] = {
            "id": reservation_id,
            "name": name,
            "phone": phone,
            "date": date,
            "time": time,
            "party_size": party_size,
            "comments": comments,
            "status": "confirmed",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("Reservation created: %s for %s on %s at %s", reservation_id, name, date, time)
        return self._record(reservation_id)

    async def modify_reservation(
        self, reservation_id: str, changes: dict[str, Any], reason: str = ""
    ) -> ReservationRecord:
        reservation = self._active(reservation_id)
        updated = {**reservation, **{k: v for k, v in changes.items() if v is not None}}
        if (updated["date"], updated["time"]) != (reservation["date"], reservation["time"]):
            availability = await self.check_availability(
                updated["date"], updated["time"], updated["party_size"]
            )
            if not availability.available:
                raise ReservationError("UNAVAILABLE", availability.message)
        updated["status"] = "modified"
        self._reservations[reservation_id] = updated
        logger.info("Reservation modified: %s %s (%s)", reservation_id, changes, reason or "no reason")
        return self._record(reservation_id)

    async def cancel_reservation(
        self, reservation_id: str, reason: str = "", confirmed: bool = False
    ) -> ReservationRecord:
        if not confirmed:
            raise ReservationError("NOT_CONFIRMED", "Cancellation must be confirmed")
        reservation = self._active(reservation_id)
        reservation["status"] = "cancelled"
        logger.info("Reservation cancelled: %s (%s)", reservation_id, reason or "no reason")
        return self._record(reservation_id)

    async def find_reservations(
        self, identifier: str, identifier_type: str = "auto"
    ) -> list[ReservationRecord]:
        identifier = identifier.strip()
        if identifier_type == "auto":
            if identifier.upper().startswith("R-"):
                identifier_type = "id"
            elif len(phone_digits(identifier)) >= 7:
                identifier_type = "phone"
            else:
                identifier_type = "name"

        if identifier_type == "id":
            matches = [r for r in self._reservations.values() if r["id"] == identifier.upper()]
        elif identifier_type == "phone":
            wanted = phone_digits(identifier)
            matches = [r for r in self._reservations.values() if phone_digits(r["phone"]) == wanted]
        else:
            wanted = fold_text(identifier)
            matches = [r for r in self._reservations.values() if fold_text(r["name"]) == wanted]
        return [
            self._record(r["id"]) for r in matches if r["status"] != "cancelled"
        ]

    async def get_guest_history(self, guest_key: str) -> Optional[GuestProfile]:
        key = self._aliases.get(guest_key, normalize_phone(guest_key))
        guest = self._guests.get(key)
        if guest is None:
            return None
        return GuestProfile(**guest)

    def _active(self, reservation_id: str) -> dict[str, Any]:
        reservation = self._reservations.get(reservation_id)
        if reservation is None or reservation["status"] == "cancelled":
            raise ReservationError("NOT_FOUND", f"Reservation {reservation_id} not found")
        return reservation

    def _record(self, reservation_id: str) -> ReservationRecord:
        data = self._reservations[reservation_id]
        return ReservationRecord(**{k: data[k] for k in ReservationRecord.model_fields})

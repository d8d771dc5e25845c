"""
Identity preservation across a "new booking" reset.

When the guest starts another booking the draft is wiped, but the name and
phone they already gave must survive. They are looked up, first match per
field wins, in:

    draft -> guest profile -> past confirmation messages
          -> recently touched reservations -> identity confirmed at the gate

The lookup always runs before the draft is cleared.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from concierge.prompts.messages import label_values
from concierge.schemas.conversation_schema import Role
from concierge.schemas.session_schema import Session

logger = logging.getLogger(__name__)


def _label_pattern(key: str) -> re.Pattern:
    labels = "|".join(re.escape(label) for label in label_values(key))
    return re.compile(rf"^\s*(?:{labels})\s*:\s*([^\n]+?)\s*$", re.MULTILINE)


_NAME_LINE_RE = _label_pattern("name")
_PHONE_LINE_RE = _label_pattern("phone")


@dataclass
class PreservedIdentity:
    name: Optional[str] = None
    phone: Optional[str] = None
    sources: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.name is not None and self.phone is not None

    def offer(self, source: str, name: Optional[str], phone: Optional[str]) -> None:
        """Fill whatever is still missing from one source."""
        used = False
        if self.name is None and name:
            self.name = name
            used = True
        if self.phone is None and phone:
            self.phone = phone
            used = True
        if used:
            self.sources.append(source)


def scan_confirmations(session: Session) -> tuple[Optional[str], Optional[str]]:
    """Name and phone from the most recent booking confirmation in the transcript."""
    for turn in reversed(session.turns):
        if turn.role != Role.ASSISTANT:
            continue
        name = _NAME_LINE_RE.search(turn.text)
        phone = _PHONE_LINE_RE.search(turn.text)
        if name or phone:
            return (name.group(1) if name else None, phone.group(1) if phone else None)
    return None, None


class IdentityPreserver:
    """Finds the guest's identity and re-seeds it after a draft reset."""

    def extract(self, session: Session) -> PreservedIdentity:
        identity = PreservedIdentity()

        identity.offer("draft", session.draft.name, session.draft.phone)
        if identity.complete:
            return identity

        profile = session.guest_profile
        if profile is not None:
            identity.offer("guest_profile", profile.name, profile.phone)
            if identity.complete:
                return identity

        identity.offer("transcript", *scan_confirmations(session))
        if identity.complete:
            return identity

        for touched in reversed(session.recently_touched):
            identity.offer("recent_reservation", touched.name, touched.phone)
            if identity.complete:
                return identity

        confirmed = session.confirmed_identity
        if confirmed is not None:
            identity.offer("confirmed_identity", confirmed.name, confirmed.phone)
        return identity

    def reset_for_new_booking(self, session: Session, reason: str) -> PreservedIdentity:
        """Clear the draft and booking-scoped state, keeping only name and phone."""
        identity = self.extract(session)

        session.draft.clear()
        session.draft.merge({"name": identity.name, "phone": identity.phone})

        session.suggestions = []
        session.offered_suggestion = None
        session.declined_suggestions = []
        session.availability_failure = None
        session.time_clarification_pending = False
        session.declined_draft_signature = None
        session.booked_draft_signature = None

        if session.draft.name != identity.name or session.draft.phone != identity.phone:
            logger.error(
                "Identity restore mismatch after reset: expected (%r, %r), got (%r, %r)",
                identity.name, identity.phone, session.draft.name, session.draft.phone,
            )
        logger.info(
            "Draft reset for new booking (%s); identity from %s",
            reason, identity.sources or "nowhere",
        )
        return identity

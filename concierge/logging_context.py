"""Per-turn logging context: which session, which persona, which turn.

Records emitted while a guest message is being handled carry
``session_id``, ``persona`` and ``turn`` attributes, so a formatter can
print ``[%(session_id)s/%(persona)s #%(turn)s]`` and one conversation can
be read straight out of an interleaved log.

Usage:
    from concierge.logging_context import bind_turn, get_session_logger

    logger = get_session_logger(__name__)
    bind_turn("web-3f9c", persona="new_booking", turn=2)
    logger.info("Extracted fields")  # record.turn == 2
"""

import logging
from contextvars import ContextVar
from typing import Optional

NO_SESSION = "NO_SESSION"

_session_id: ContextVar[str] = ContextVar("session_id", default=NO_SESSION)
_persona: ContextVar[str] = ContextVar("persona", default="-")
_turn: ContextVar[int] = ContextVar("turn", default=0)


def set_session_id(session_id: str) -> None:
    """Start a new turn context for ``session_id``; persona and turn reset."""
    _session_id.set(session_id)
    _persona.set("-")
    _turn.set(0)


def get_session_id() -> str:
    return _session_id.get()


def bind_turn(session_id: str, persona: Optional[str] = None, turn: Optional[int] = None) -> None:
    """Bind the session plus whatever is already known about the turn."""
    set_session_id(session_id)
    if persona is not None:
        set_persona(persona)
    if turn is not None:
        _turn.set(turn)


def set_persona(persona: str) -> None:
    """Update the persona mid-turn, e.g. after a handoff."""
    _persona.set(persona)


def current_context() -> dict[str, object]:
    return {"session_id": _session_id.get(), "persona": _persona.get(), "turn": _turn.get()}


class SessionIdFilter(logging.Filter):
    """Stamps session id, persona and turn number onto each record.

    Attributes already set through ``extra=`` are left alone.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in current_context().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def get_session_logger(name: str) -> logging.Logger:
    """Return a logger with the SessionIdFilter attached."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, SessionIdFilter) for f in logger.filters):
        logger.addFilter(SessionIdFilter())
    return logger

"""
Contexts handed to backend actions.

``TurnContext`` is plain data and safe to persist with the session.
``ExecutionContext`` adds the live session and backend; it exists only while
actions run and is detached afterwards, so nothing stored ever points back
at the session that contains it.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from pydantic import BaseModel

from concierge.schemas.conversation_schema import Persona
from concierge.schemas.session_schema import Session
from concierge.tools.backend import ReservationBackend


class TurnContext(BaseModel):
    session_id: str
    tenant_id: str
    language: str
    timezone: str
    turn_number: int
    persona: Persona

    @classmethod
    def for_session(cls, session: Session) -> "TurnContext":
        return cls(
            session_id=session.session_id,
            tenant_id=session.tenant_id,
            language=session.language.code,
            timezone=session.timezone,
            turn_number=session.turn_count + 1,
            persona=session.current_persona,
        )

    @contextmanager
    def attached(
        self, session: Session, backend: ReservationBackend
    ) -> Iterator["ExecutionContext"]:
        """Bind the live session for the duration of an action run."""
        execution = ExecutionContext(turn=self, session=session, backend=backend)
        try:
            yield execution
        finally:
            execution.detach()


@dataclass
class ExecutionContext:
    turn: TurnContext
    session: Optional[Session]
    backend: Optional[ReservationBackend]

    @property
    def live_session(self) -> Session:
        if self.session is None:
            raise RuntimeError("Execution context used after it was detached")
        return self.session

    def detach(self) -> None:
        self.session = None
        self.backend = None

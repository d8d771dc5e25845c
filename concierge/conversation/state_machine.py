"""
Finite state machine for the confirmation / clarification gate.

Three states and explicit transitions with triggers. Every side-effecting
action passes through this graph, so a create, modify, or cancel can only
run after the guest has said yes.

Usage:
    sm = GateStateMachine()
    state = sm.transition(GateStatus.IDLE, GateTrigger.CONFIRMATION_REQUESTED)
    assert state == GateStatus.AWAITING_CONFIRMATION
"""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class GateStatus(str, Enum):
    """All possible gate states. Values match the session's gate ``kind``."""
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_IDENTITY_CLARIFICATION = "awaiting_identity_clarification"


class GateTrigger(str, Enum):
    """Events that cause gate transitions."""
    CONFIRMATION_REQUESTED = "confirmation_requested"
    AFFIRMED = "affirmed"
    DECLINED = "declined"
    UNCLEAR = "unclear"
    CORRECTED = "corrected"
    NAME_CONFLICT = "name_conflict"
    NAME_RESOLVED = "name_resolved"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Transition:
    """A single valid gate transition."""
    from_state: GateStatus
    to_state: GateStatus
    trigger: GateTrigger


class InvalidGateTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


class GateBusyError(InvalidGateTransitionError):
    """Raised when a second question would be opened while one is pending."""


class GateStateMachine:
    """
    Transition table for the gate.

    The gate state itself lives on the session so it persists between
    turns; this class only validates moves. It holds no per-session state,
    so one instance is shared by every conversation.
    """

    TRANSITIONS: list[Transition] = [
        # --- Confirmation ---
        Transition(GateStatus.IDLE, GateStatus.AWAITING_CONFIRMATION,
                   GateTrigger.CONFIRMATION_REQUESTED),
        Transition(GateStatus.AWAITING_CONFIRMATION, GateStatus.IDLE,
                   GateTrigger.AFFIRMED),
        Transition(GateStatus.AWAITING_CONFIRMATION, GateStatus.IDLE,
                   GateTrigger.DECLINED),
        Transition(GateStatus.AWAITING_CONFIRMATION, GateStatus.AWAITING_CONFIRMATION,
                   GateTrigger.UNCLEAR),
        Transition(GateStatus.AWAITING_CONFIRMATION, GateStatus.AWAITING_CONFIRMATION,
                   GateTrigger.CORRECTED),
        Transition(GateStatus.AWAITING_CONFIRMATION, GateStatus.IDLE,
                   GateTrigger.ABANDONED),

        # --- Identity clarification ---
        Transition(GateStatus.IDLE, GateStatus.AWAITING_IDENTITY_CLARIFICATION,
                   GateTrigger.NAME_CONFLICT),
        Transition(GateStatus.AWAITING_IDENTITY_CLARIFICATION, GateStatus.IDLE,
                   GateTrigger.NAME_RESOLVED),
        Transition(GateStatus.AWAITING_IDENTITY_CLARIFICATION,
                   GateStatus.AWAITING_IDENTITY_CLARIFICATION, GateTrigger.UNCLEAR),
        Transition(GateStatus.AWAITING_IDENTITY_CLARIFICATION, GateStatus.IDLE,
                   GateTrigger.ABANDONED),
    ]

    def transition(self, current: GateStatus, trigger: GateTrigger) -> GateStatus:
        """
        Validate a gate transition.

        Args:
            current: The gate state before the event.
            trigger: The event triggering the transition.

        Returns:
            The new gate state.

        Raises:
            InvalidGateTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_state == current and t.trigger == trigger:
                logger.debug(
                    "Gate transition: %s -> %s (trigger: %s)",
                    current.value, t.to_state.value, trigger.value,
                )
                return t.to_state

        valid = [t.value for t in self.get_valid_triggers(current)]
        error_cls = GateBusyError if current != GateStatus.IDLE and trigger in (
            GateTrigger.CONFIRMATION_REQUESTED, GateTrigger.NAME_CONFLICT
        ) else InvalidGateTransitionError
        raise error_cls(
            f"No valid transition from '{current.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def get_valid_triggers(self, current: GateStatus) -> list[GateTrigger]:
        """Return all triggers valid from the given state."""
        return [t.trigger for t in self.TRANSITIONS if t.from_state == current]

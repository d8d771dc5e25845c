from concierge.conversation.extractor import ExtractionResult, FieldExtractor
from concierge.conversation.gate import ConfirmationDecision, ConfirmationGate
from concierge.conversation.guardrails import GuardrailPipeline, RateLimiter
from concierge.conversation.identity import IdentityPreserver, PreservedIdentity
from concierge.conversation.language import LanguageDetection, LanguageDetector
from concierge.conversation.overseer import Overseer, OverseerDecision
from concierge.conversation.slot_manager import SlotValidator
from concierge.conversation.state_machine import (
    GateStateMachine,
    GateStatus,
    GateTrigger,
    InvalidGateTransitionError,
)

__all__ = [
    "FieldExtractor", "ExtractionResult",
    "LanguageDetector", "LanguageDetection",
    "Overseer", "OverseerDecision",
    "ConfirmationGate", "ConfirmationDecision",
    "GateStateMachine", "GateStatus", "GateTrigger", "InvalidGateTransitionError",
    "IdentityPreserver", "PreservedIdentity",
    "SlotValidator",
    "GuardrailPipeline", "RateLimiter",
]

from concierge.agents.availability_agent import AvailabilityAgent
from concierge.agents.base import PersonaAgent, PersonaResponse
from concierge.agents.booking_agent import NewBookingAgent
from concierge.agents.neutral_agent import NeutralAgent
from concierge.agents.registry import (
    create_agent,
    create_agents,
    get_registered_agents,
    register_agent,
)
from concierge.agents.reservations_agent import ExistingBookingAgent

__all__ = [
    "PersonaAgent", "PersonaResponse",
    "NewBookingAgent", "ExistingBookingAgent", "NeutralAgent", "AvailabilityAgent",
    "create_agent", "create_agents", "register_agent", "get_registered_agents",
]

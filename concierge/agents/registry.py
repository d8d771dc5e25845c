"""
Persona registry: maps each ``Persona`` to the agent class that voices it.

The orchestrator asks for a full set of agents at startup; a persona
without an agent, or an agent answering for the wrong persona, fails
there rather than on the first handoff into it.
"""

import logging
from typing import Union

from concierge.agents.base import PersonaAgent
from concierge.config import AppConfig, settings
from concierge.schemas.conversation_schema import Persona

logger = logging.getLogger(__name__)

_PERSONA_AGENTS: dict[Persona, type[PersonaAgent]] = {}


def _persona(name: Union[str, Persona]) -> Persona:
    try:
        return Persona(name)
    except ValueError:
        known = [p.value for p in _PERSONA_AGENTS]
        raise KeyError(f"Agent '{name}' not registered. Available: {known}") from None


def register_agent(persona: Union[str, Persona], agent_cls: type[PersonaAgent]) -> None:
    """Register the agent class for a persona, replacing any earlier one."""
    persona = Persona(persona)
    if agent_cls.persona != persona:
        raise ValueError(
            f"{agent_cls.__name__} speaks as '{agent_cls.persona.value}', not '{persona.value}'"
        )
    _PERSONA_AGENTS[persona] = agent_cls
    logger.debug("Agent registered: %s -> %s", persona.value, agent_cls.__name__)


def create_agent(persona: Union[str, Persona], config: AppConfig = settings) -> PersonaAgent:
    """Create the agent for a persona.

    Raises:
        KeyError: If no agent is registered for it.
    """
    key = _persona(persona)
    if key not in _PERSONA_AGENTS:
        known = [p.value for p in _PERSONA_AGENTS]
        raise KeyError(f"Agent '{key.value}' not registered. Available: {known}")
    return _PERSONA_AGENTS[key](config)


def create_agents(config: AppConfig = settings) -> dict[Persona, PersonaAgent]:
    """One agent per persona.

    Raises:
        KeyError: If some persona has no registered agent.
    """
    missing = [p.value for p in Persona if p not in _PERSONA_AGENTS]
    if missing:
        raise KeyError(f"No agent registered for: {missing}")
    return {persona: create_agent(persona, config) for persona in Persona}


def get_registered_agents() -> list[str]:
    return [p.value for p in _PERSONA_AGENTS]


def _auto_register() -> None:
    from concierge.agents.availability_agent import AvailabilityAgent
    from concierge.agents.booking_agent import NewBookingAgent
    from concierge.agents.neutral_agent import NeutralAgent
    from concierge.agents.reservations_agent import ExistingBookingAgent

    for agent_cls in (NewBookingAgent, ExistingBookingAgent, NeutralAgent, AvailabilityAgent):
        register_agent(agent_cls.persona, agent_cls)


_auto_register()

"""Process-wide agent context shared by the telemetry loop and routes."""

from dataclasses import dataclass, field

from kumulus_agent.core.config import Settings, get_settings
from kumulus_agent.models.agent import AgentState
from kumulus_agent.services.identity import IdentityService


@dataclass
class AgentContext:
    """Settings, signing identity and trust state of one agent process.

    Passed explicitly to the registration state machine and the telemetry
    service so tests can build isolated instances.
    """

    settings: Settings
    identity: IdentityService
    state: AgentState = field(default_factory=AgentState)

    @classmethod
    def create(cls, settings: Settings | None = None) -> "AgentContext":
        settings = settings or get_settings()
        return cls(settings=settings, identity=IdentityService(settings))


# Global context instance
_agent_context: AgentContext | None = None


def get_agent_context() -> AgentContext:
    """Get the global AgentContext instance."""
    global _agent_context
    if _agent_context is None:
        _agent_context = AgentContext.create()
    return _agent_context

"""Agent trust state tracked against the control plane."""

from pydantic import BaseModel, Field

from kumulus_agent.models.common import AgentPhase


class AgentState(BaseModel):
    """Registration/validation flags for this agent.

    Written only by the registration state machine; read by the telemetry
    loop and the readiness probe.
    """

    is_registered: bool = Field(default=False, alias="isRegistered")
    is_validated: bool = Field(default=False, alias="isValidated")
    ip_address: str = Field(default="", alias="ipAddress")

    class Config:
        populate_by_name = True

    @property
    def phase(self) -> AgentPhase:
        """Collapse the two flags into the trust phase."""
        if self.is_validated:
            return AgentPhase.REGISTERED_VALIDATED
        if self.is_registered:
            return AgentPhase.REGISTERED_UNVALIDATED
        return AgentPhase.UNREGISTERED

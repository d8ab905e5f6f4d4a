"""Pydantic models for tenant environments and agent telemetry."""

from kumulus_agent.models.agent import AgentState
from kumulus_agent.models.common import AgentPhase, DockerStatus, EnvironmentStatus
from kumulus_agent.models.environment import EnvironmentRequest, TenantEnvironment
from kumulus_agent.models.telemetry import HealthReport, SignedEnvelope

__all__ = [
    "AgentPhase",
    "AgentState",
    "DockerStatus",
    "EnvironmentRequest",
    "EnvironmentStatus",
    "HealthReport",
    "SignedEnvelope",
    "TenantEnvironment",
]

"""Service layer for environment lifecycle and provider telemetry."""

from kumulus_agent.services.context import AgentContext, get_agent_context
from kumulus_agent.services.control_plane import ControlPlaneClient
from kumulus_agent.services.environment import (
    EnvironmentManager,
    get_environment_manager,
)
from kumulus_agent.services.health import HealthCollector, get_health_collector
from kumulus_agent.services.identity import (
    AgentIdentity,
    IdentityService,
    derive_identity,
    generate_seed_phrase,
    verify_signature,
)
from kumulus_agent.services.image_builder import ImageBuilder, get_image_builder
from kumulus_agent.services.ports import PortAllocator, get_port_allocator
from kumulus_agent.services.registration import RegistrationStateMachine
from kumulus_agent.services.telemetry import (
    IntervalTicker,
    TelemetryController,
    TelemetryService,
    get_telemetry_controller,
)

__all__ = [
    # Agent context
    "AgentContext",
    "get_agent_context",
    # Control plane client
    "ControlPlaneClient",
    # Environment manager
    "EnvironmentManager",
    "get_environment_manager",
    # Health collector
    "HealthCollector",
    "get_health_collector",
    # Identity
    "AgentIdentity",
    "IdentityService",
    "derive_identity",
    "generate_seed_phrase",
    "verify_signature",
    # Image builder
    "ImageBuilder",
    "get_image_builder",
    # Port allocator
    "PortAllocator",
    "get_port_allocator",
    # Registration
    "RegistrationStateMachine",
    # Telemetry loop
    "IntervalTicker",
    "TelemetryController",
    "TelemetryService",
    "get_telemetry_controller",
]

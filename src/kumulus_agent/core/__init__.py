"""Core modules for configuration, errors, subprocess execution, and tracing."""

from kumulus_agent.core.config import Settings, get_settings
from kumulus_agent.core.errors import (
    AgentError,
    ExternalProcessError,
    IdentityError,
    NetworkError,
    NoPortAvailableError,
    ValidationError,
)
from kumulus_agent.core.executor import CommandExecutor, CommandResult, get_command_executor
from kumulus_agent.core.tracing import get_tracer, resource_attributes, setup_tracing

__all__ = [
    "AgentError",
    "CommandExecutor",
    "CommandResult",
    "ExternalProcessError",
    "IdentityError",
    "NetworkError",
    "NoPortAvailableError",
    "Settings",
    "ValidationError",
    "get_command_executor",
    "get_settings",
    "get_tracer",
    "resource_attributes",
    "setup_tracing",
]

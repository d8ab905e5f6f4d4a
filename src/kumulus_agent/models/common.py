"""Common enums and types used across models."""

from enum import Enum


class EnvironmentStatus(str, Enum):
    """Status of a tenant environment in its lifecycle.

    State machine transitions:
        BUILDING -> RUNNING (image built and container started)
        RUNNING -> STOPPED (stop requested)
        STOPPED -> RUNNING (start requested)
        RUNNING -> DESTROYED (delete requested)
        STOPPED -> DESTROYED (delete requested)

    BUILDING is only held inside a Create call; a Create that fails leaves
    no environment behind.
    """

    BUILDING = "Building"
    RUNNING = "Running"
    STOPPED = "Stopped"
    DESTROYED = "Destroyed"


class DockerStatus(str, Enum):
    """Container-engine health as seen from the host."""

    RUNNING = "running"
    NOT_RUNNING = "not running"
    UNKNOWN = "unknown"


class AgentPhase(str, Enum):
    """Trust phase of this agent with the control plane."""

    UNREGISTERED = "unregistered"
    REGISTERED_UNVALIDATED = "registered_unvalidated"
    REGISTERED_VALIDATED = "registered_validated"

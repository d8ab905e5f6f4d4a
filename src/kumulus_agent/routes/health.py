"""Health check endpoints for process supervisors and monitoring."""

from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from kumulus_agent import __version__
from kumulus_agent.core.config import Settings, get_settings
from kumulus_agent.core.errors import IdentityError
from kumulus_agent.services.context import AgentContext, get_agent_context

SettingsDep = Annotated[Settings, Depends(get_settings)]
AgentContextDep = Annotated[AgentContext, Depends(get_agent_context)]

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""

    status: str
    timestamp: datetime
    checks: dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: SettingsDep) -> HealthResponse:
    """Liveness check; returns as long as the process serves requests."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
        environment=settings.environment,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(context: AgentContextDep) -> ReadinessResponse:
    """Readiness check.

    The agent is ready once it can sign telemetry. Registration and
    validation are reported for visibility but do not gate readiness, since
    the control API works for unregistered providers too.
    """
    checks: dict[str, Any] = {}

    try:
        address = context.identity.address
        checks["identity"] = {"status": "ok", "address": address}
    except IdentityError as e:
        checks["identity"] = {"status": "error", "error": str(e)}

    state = context.state
    checks["agent"] = {
        "status": "ok",
        "phase": state.phase.value,
        **state.model_dump(by_alias=True),
    }

    all_ok = all(
        check.get("status") == "ok" for check in checks.values() if isinstance(check, dict)
    )

    return ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(UTC),
        checks=checks,
    )


@router.get("/startup")
async def startup_check() -> dict[str, str]:
    """Startup check; returns once the application has started."""
    return {"status": "started"}

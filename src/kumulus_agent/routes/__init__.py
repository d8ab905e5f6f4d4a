"""API route modules."""

from kumulus_agent.routes.health import router as health_router
from kumulus_agent.routes.vms import router as vms_router

__all__ = [
    "health_router",
    "vms_router",
]

"""Main FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from kumulus_agent import __version__
from kumulus_agent.core.config import get_settings
from kumulus_agent.core.errors import IdentityError
from kumulus_agent.core.tracing import setup_tracing
from kumulus_agent.routes import health_router, vms_router
from kumulus_agent.services.context import get_agent_context
from kumulus_agent.services.telemetry import get_telemetry_controller

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    telemetry_controller = get_telemetry_controller()

    # Startup
    logger.info(f"Starting {settings.app_name} in {settings.environment} mode")
    logger.info(f"Container engine: {settings.container_engine}")

    # The API serves requests while the handshake runs in the background
    await telemetry_controller.start()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await telemetry_controller.stop()


def provider_address_for_tracing() -> str | None:
    """Signing address of this agent, or None if no identity is configured."""
    try:
        return get_agent_context().identity.address
    except IdentityError as e:
        logger.warning(f"Tracing without provider address: {e}")
        return None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Provider agent for Kumulus - provision SSH-accessible containers "
        "and report signed host telemetry",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Setup OpenTelemetry (the address is only derived when tracing is on)
    if settings.otel_enabled:
        setup_tracing(app, settings, provider_address_for_tracing())

    # Include routers
    app.include_router(health_router)
    app.include_router(vms_router)

    return app


# Create app instance
app = create_app()


def run() -> None:
    """Serve the agent with uvicorn (``kumulus-agent`` console script)."""
    settings = get_settings()
    uvicorn.run(
        "kumulus_agent.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()

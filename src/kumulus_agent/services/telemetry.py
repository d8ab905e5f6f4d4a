"""Telemetry loop: signed health reports gated by control-plane validation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from kumulus_agent.core.errors import IdentityError, NetworkError
from kumulus_agent.core.tracing import get_tracer
from kumulus_agent.services.context import AgentContext, get_agent_context
from kumulus_agent.services.control_plane import ControlPlaneClient
from kumulus_agent.services.health import HealthCollector, get_health_collector
from kumulus_agent.services.registration import RegistrationStateMachine

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

TickCallback = Callable[[], Awaitable[None]]


class Ticker(Protocol):
    """Fires a callback on a fixed cadence."""

    def on_tick(self, callback: TickCallback, interval: float) -> None: ...

    async def stop(self) -> None: ...


class IntervalTicker:
    """Ticker backed by an asyncio task.

    The callback runs after every ``interval`` seconds; the first call comes
    one interval after ``on_tick``. A callback error is logged and the next
    tick still fires.
    """

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_tick(self, callback: TickCallback, interval: float) -> None:
        if self.is_running:
            logger.warning("Ticker is already running")
            return
        self._task = asyncio.create_task(self._run(callback, interval))

    async def _run(self, callback: TickCallback, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await callback()
            except Exception as e:
                logger.error(f"Error in scheduled tick: {e}")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None


class TelemetryService:
    """Startup handshake and per-tick work of the telemetry loop.

    Startup: derive identity -> check registration -> if registered,
    announce the public IP and send one health report.

    Tick: if validated, send one signed health report; otherwise re-poll
    validation and skip reporting. The choice is made fresh on every tick.

    Nothing here raises: failures are logged so a control-plane outage
    degrades to "no reports sent".

    Example:
        ```python
        service = TelemetryService(context)
        await service.startup()
        await service.tick()
        ```
    """

    def __init__(
        self,
        context: AgentContext,
        state_machine: RegistrationStateMachine | None = None,
        collector: HealthCollector | None = None,
        client: ControlPlaneClient | None = None,
    ) -> None:
        """Initialize the TelemetryService.

        Args:
            context: Agent context (settings, identity, state)
            state_machine: Optional RegistrationStateMachine instance
            collector: Optional HealthCollector instance
            client: Optional ControlPlaneClient instance
        """
        self.context = context
        self.client = client or ControlPlaneClient(context.settings)
        self.state_machine = state_machine or RegistrationStateMachine(context, self.client)
        self.collector = collector or get_health_collector(context.settings)

    async def startup(self) -> None:
        try:
            self.context.identity.get_identity()
        except IdentityError as e:
            logger.error(f"Wallet setup failed, signing unavailable: {e}")
            return

        await self.state_machine.check_registration()
        if not self.context.state.is_registered:
            logger.info("Provider is not registered yet, skipping initial reports")
            return

        await self.announce_ip_address()
        await self.send_health_report()

    async def tick(self) -> None:
        with tracer.start_as_current_span("telemetry.tick") as span:
            validated = self.context.state.is_validated
            span.set_attribute("agent.validated", validated)

            if validated:
                logger.info("Provider is validated. Running health check...")
                await self.send_health_report()
            else:
                logger.info("Provider is NOT validated. Skipping health check.")
                await self.state_machine.check_validation()

    async def send_health_report(self) -> bool:
        """Collect, sign and post one health report.

        Returns:
            True if the control plane accepted the report
        """
        report = await self.collector.collect()
        try:
            envelope = self.context.identity.sign_envelope(report.to_message())
            await self.client.post_envelope(envelope)
        except IdentityError as e:
            logger.error(f"Cannot sign health check: {e}")
            return False
        except NetworkError as e:
            logger.error(f"Error sending health check: {e}")
            return False

        logger.info("Health check sent successfully")
        return True

    async def announce_ip_address(self) -> bool:
        """Resolve, sign and post this host's public IP address.

        Returns:
            True if the control plane accepted the announcement
        """
        try:
            ip_address = await self.client.fetch_public_ip()
            self.state_machine.record_ip_address(ip_address)
            envelope = self.context.identity.sign_envelope(ip_address)
            await self.client.post_envelope(envelope)
        except IdentityError as e:
            logger.error(f"Cannot sign provider IP address: {e}")
            return False
        except NetworkError as e:
            logger.error(f"Error sending provider IP address: {e}")
            return False

        logger.info("Provider IP address sent successfully")
        return True


class TelemetryController:
    """Runs the telemetry startup handshake and then ticks on a fixed cadence.

    Example:
        ```python
        controller = TelemetryController(service)
        await controller.start()  # handshake in the background, then ticks
        # ... application runs ...
        await controller.stop()
        ```
    """

    def __init__(
        self,
        service: TelemetryService,
        ticker: Ticker | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            service: TelemetryService doing the per-tick work
            ticker: Optional Ticker (defaults to an IntervalTicker)
        """
        self.service = service
        self.settings = service.context.settings
        self.ticker = ticker or IntervalTicker()
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def _startup_then_tick(self) -> None:
        try:
            await self.service.startup()
        except Exception as e:
            logger.error(f"Error in telemetry startup: {e}")

        if self._running:
            interval = self.settings.telemetry_interval_seconds
            self.ticker.on_tick(self.service.tick, interval)
            logger.info(f"Telemetry loop started, ticking every {interval} seconds")

    async def start(self) -> None:
        """Start the telemetry loop.

        Does nothing if telemetry is disabled in settings or already running.
        """
        if not self.settings.telemetry_enabled:
            logger.info("Telemetry loop is disabled in settings")
            return

        if self._running:
            logger.warning("Telemetry loop is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._startup_then_tick())

    async def stop(self) -> None:
        """Stop the telemetry loop; an in-flight handshake is cancelled."""
        if not self._running:
            return

        self._running = False

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        await self.ticker.stop()
        logger.info("Telemetry loop stopped")


# Global controller instance
_telemetry_controller: TelemetryController | None = None


def get_telemetry_controller() -> TelemetryController:
    """Get the global TelemetryController instance."""
    global _telemetry_controller
    if _telemetry_controller is None:
        _telemetry_controller = TelemetryController(TelemetryService(get_agent_context()))
    return _telemetry_controller

"""Tests for TelemetryService, IntervalTicker and TelemetryController."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from kumulus_agent.core.config import Settings
from kumulus_agent.core.errors import NetworkError
from kumulus_agent.models.telemetry import HealthReport
from kumulus_agent.services.context import AgentContext
from kumulus_agent.services.health import get_health_collector
from kumulus_agent.services.identity import verify_signature
from kumulus_agent.services.telemetry import (
    IntervalTicker,
    TelemetryController,
    TelemetryService,
)


@pytest.fixture
def settings(mnemonic: str) -> Settings:
    """Create test settings with a fast tick."""
    return Settings(
        mnemonic=mnemonic,
        telemetry_enabled=True,
        telemetry_interval_seconds=1,
    )


@pytest.fixture
def context(settings: Settings) -> AgentContext:
    """Create an isolated agent context."""
    return AgentContext.create(settings)


@pytest.fixture
def client() -> MagicMock:
    """Create a mock control-plane client."""
    client = MagicMock()
    client.fetch_public_ip = AsyncMock(return_value="203.0.113.7")
    client.post_envelope = AsyncMock()
    return client


@pytest.fixture
def collector() -> MagicMock:
    """Create a mock health collector."""
    collector = MagicMock()
    collector.collect = AsyncMock(return_value=HealthReport.captured_now(cpu_usage=4.3))
    return collector


@pytest.fixture
def state_machine(context: AgentContext) -> MagicMock:
    """Create a mock state machine that records the IP on the real state."""
    machine = MagicMock()
    machine.check_registration = AsyncMock(return_value=False)
    machine.check_validation = AsyncMock(return_value=False)
    machine.record_ip_address = MagicMock(
        side_effect=lambda ip: setattr(context.state, "ip_address", ip)
    )
    return machine


@pytest.fixture
def service(
    context: AgentContext,
    state_machine: MagicMock,
    collector: MagicMock,
    client: MagicMock,
) -> TelemetryService:
    """Create a TelemetryService with mocked collaborators."""
    return TelemetryService(
        context,
        state_machine=state_machine,
        collector=collector,
        client=client,
    )


class TestTick:
    """Tests for the per-tick gate."""

    @pytest.mark.asyncio
    async def test_unvalidated_tick_polls_validation(
        self,
        service: TelemetryService,
        state_machine: MagicMock,
        client: MagicMock,
    ):
        """Test that an unvalidated agent re-polls and sends nothing."""
        await service.tick()

        state_machine.check_validation.assert_awaited_once()
        client.post_envelope.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validated_tick_sends_report(
        self,
        service: TelemetryService,
        context: AgentContext,
        state_machine: MagicMock,
        client: MagicMock,
    ):
        """Test that a validated agent sends one signed report per tick."""
        context.state.is_registered = True
        context.state.is_validated = True

        await service.tick()

        state_machine.check_validation.assert_not_awaited()
        client.post_envelope.assert_awaited_once()
        envelope = client.post_envelope.await_args.args[0]
        assert '"cpu_usage":4.3' in envelope.message
        assert envelope.address == context.identity.address
        assert verify_signature(envelope.message, envelope.signature, envelope.address)

    @pytest.mark.asyncio
    async def test_gate_is_read_every_tick(
        self,
        service: TelemetryService,
        context: AgentContext,
        client: MagicMock,
    ):
        """Test that a revoked validation stops reporting on the next tick."""
        context.state.is_validated = True
        await service.tick()

        context.state.is_validated = False
        await service.tick()

        assert client.post_envelope.await_count == 1

    @pytest.mark.asyncio
    async def test_send_failure_is_logged(
        self,
        service: TelemetryService,
        context: AgentContext,
        client: MagicMock,
    ):
        """Test that a rejected report does not raise."""
        context.state.is_validated = True
        client.post_envelope.side_effect = NetworkError("HTTP error! status: 500", 500)

        assert await service.send_health_report() is False


class TestStartup:
    """Tests for the startup handshake."""

    @pytest.mark.asyncio
    async def test_unregistered_sends_nothing(
        self,
        service: TelemetryService,
        state_machine: MagicMock,
        client: MagicMock,
    ):
        """Test that an unregistered agent only checks registration."""
        await service.startup()

        state_machine.check_registration.assert_awaited_once()
        client.fetch_public_ip.assert_not_awaited()
        client.post_envelope.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_registered_announces_ip_then_reports(
        self,
        service: TelemetryService,
        context: AgentContext,
        state_machine: MagicMock,
        client: MagicMock,
    ):
        """Test that a registered agent sends its IP and one report."""

        async def register() -> bool:
            context.state.is_registered = True
            return True

        state_machine.check_registration.side_effect = register

        await service.startup()

        assert client.post_envelope.await_count == 2
        ip_envelope = client.post_envelope.await_args_list[0].args[0]
        report_envelope = client.post_envelope.await_args_list[1].args[0]
        assert ip_envelope.message == "203.0.113.7"
        assert "cpu_usage" in report_envelope.message
        assert context.state.ip_address == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_ip_failure_still_reports(
        self,
        service: TelemetryService,
        context: AgentContext,
        state_machine: MagicMock,
        client: MagicMock,
    ):
        """Test that a failed IP lookup does not block the health report."""
        context.state.is_registered = True
        state_machine.check_registration.return_value = True
        client.fetch_public_ip.side_effect = NetworkError("Timeout calling https://ident.me")

        await service.startup()

        client.post_envelope.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_identity_stops_startup(
        self,
        state_machine: MagicMock,
        collector: MagicMock,
        client: MagicMock,
    ):
        """Test that startup ends quietly without a seed phrase."""
        context = AgentContext.create(Settings(mnemonic=None))
        service = TelemetryService(
            context, state_machine=state_machine, collector=collector, client=client
        )

        await service.startup()

        state_machine.check_registration.assert_not_awaited()
        client.post_envelope.assert_not_awaited()


class TestIntervalTicker:
    """Tests for the asyncio ticker."""

    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self):
        """Test that the callback fires repeatedly and stops on request."""
        calls: list[int] = []

        async def callback() -> None:
            calls.append(1)

        ticker = IntervalTicker()
        ticker.on_tick(callback, 0.01)
        assert ticker.is_running

        await asyncio.sleep(0.1)
        await ticker.stop()

        assert not ticker.is_running
        count = len(calls)
        assert count >= 2

        await asyncio.sleep(0.05)
        assert len(calls) == count

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_ticking(self):
        """Test that a failing tick is logged and the next one still fires."""
        calls: list[int] = []

        async def callback() -> None:
            calls.append(1)
            raise RuntimeError("boom")

        ticker = IntervalTicker()
        ticker.on_tick(callback, 0.01)
        await asyncio.sleep(0.1)
        await ticker.stop()

        assert len(calls) >= 2


class TestTelemetryController:
    """Tests for starting and stopping the loop."""

    @pytest.mark.asyncio
    async def test_start_runs_startup_then_ticks(self, service: TelemetryService):
        """Test that start runs the handshake and schedules ticks."""
        ticker = MagicMock()
        ticker.stop = AsyncMock()
        service.startup = AsyncMock()
        controller = TelemetryController(service, ticker=ticker)

        await controller.start()
        assert controller.is_running
        await asyncio.sleep(0.01)

        service.startup.assert_awaited_once()
        ticker.on_tick.assert_called_once_with(service.tick, 1)

        await controller.stop()
        assert not controller.is_running
        ticker.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_startup_error_still_ticks(self, service: TelemetryService):
        """Test that an unexpected startup error does not prevent ticking."""
        ticker = MagicMock()
        ticker.stop = AsyncMock()
        service.startup = AsyncMock(side_effect=RuntimeError("boom"))
        controller = TelemetryController(service, ticker=ticker)

        await controller.start()
        await asyncio.sleep(0.01)

        ticker.on_tick.assert_called_once()
        await controller.stop()

    @pytest.mark.asyncio
    async def test_disabled_does_not_start(self, context: AgentContext, collector, client):
        """Test that telemetry_enabled=False keeps the loop off."""
        context.settings = Settings(telemetry_enabled=False)
        service = TelemetryService(context, collector=collector, client=client)
        controller = TelemetryController(service)

        await controller.start()

        assert not controller.is_running

    @pytest.mark.asyncio
    async def test_double_start(self, service: TelemetryService):
        """Test that a second start is ignored."""
        ticker = MagicMock()
        ticker.stop = AsyncMock()
        service.startup = AsyncMock()
        controller = TelemetryController(service, ticker=ticker)

        await controller.start()
        await controller.start()
        await asyncio.sleep(0.01)

        service.startup.assert_awaited_once()
        await controller.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, service: TelemetryService):
        """Test that stop without start is a no-op."""
        controller = TelemetryController(service)
        await controller.stop()
        assert not controller.is_running


class TestDefaultCollaborators:
    """Tests for the collaborators a TelemetryService builds by itself."""

    @pytest.fixture(autouse=True)
    def fresh_health_collector(self):
        """Reset the global health collector around each test."""
        import kumulus_agent.services.health as health_module

        health_module._health_collector = None
        yield
        health_module._health_collector = None

    def test_uses_global_health_collector(self, context: AgentContext, client: MagicMock):
        """Test that the service shares the process-wide collector."""
        service = TelemetryService(context, client=client)

        assert service.collector is get_health_collector()
        assert service.collector.settings is context.settings

"""Tests for the control-plane client and the registration state machine."""

import json

import httpx
import pytest

from kumulus_agent.core.config import Settings
from kumulus_agent.core.errors import NetworkError
from kumulus_agent.models.common import AgentPhase
from kumulus_agent.services.context import AgentContext
from kumulus_agent.services.control_plane import ControlPlaneClient
from kumulus_agent.services.identity import verify_signature
from kumulus_agent.services.registration import RegistrationStateMachine

CONTROL_PLANE = "https://control.example.test/kumulus"


class FakeControlPlane:
    """Routes requests for an httpx.MockTransport."""

    def __init__(self) -> None:
        self.provider_status = 200
        self.provider_body: object = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.startswith("/kumulus/providers/"):
            return httpx.Response(self.provider_status, json=self.provider_body)
        if request.url.path == "/kumulus/healthstats":
            return httpx.Response(200, json={"ok": True})
        if request.url.host == "ip.example.test":
            return httpx.Response(200, text="203.0.113.7\n")
        return httpx.Response(404)


@pytest.fixture
def control_plane() -> FakeControlPlane:
    """Create a fake control plane."""
    return FakeControlPlane()


@pytest.fixture
def settings(mnemonic: str) -> Settings:
    """Create settings pointing at the fake control plane."""
    return Settings(
        mnemonic=mnemonic,
        control_plane_url=CONTROL_PLANE,
        ip_lookup_url="https://ip.example.test",
    )


@pytest.fixture
def client(settings: Settings, control_plane: FakeControlPlane) -> ControlPlaneClient:
    """Create a client backed by the fake control plane."""
    return ControlPlaneClient(settings, transport=httpx.MockTransport(control_plane.handler))


@pytest.fixture
def context(settings: Settings) -> AgentContext:
    """Create an isolated agent context."""
    return AgentContext.create(settings)


@pytest.fixture
def machine(context: AgentContext, client: ControlPlaneClient) -> RegistrationStateMachine:
    """Create a state machine using the fake control plane."""
    return RegistrationStateMachine(context, client)


class TestControlPlaneClient:
    """Tests for the HTTP client."""

    @pytest.mark.asyncio
    async def test_get_provider_url(
        self, client: ControlPlaneClient, control_plane: FakeControlPlane
    ):
        """Test that lookups are keyed by address under /providers."""
        control_plane.provider_body = {"address": "0xabc"}

        data = await client.get_provider("0xabc")

        assert data == {"address": "0xabc"}
        assert str(control_plane.requests[0].url) == f"{CONTROL_PLANE}/providers/0xabc"

    @pytest.mark.asyncio
    async def test_get_provider_non_object(
        self, client: ControlPlaneClient, control_plane: FakeControlPlane
    ):
        """Test that a non-object body reads as an empty record."""
        control_plane.provider_body = ["unexpected"]

        assert await client.get_provider("0xabc") == {}

    @pytest.mark.asyncio
    async def test_non_2xx_raises(
        self, client: ControlPlaneClient, control_plane: FakeControlPlane
    ):
        """Test that an error status raises NetworkError with the code."""
        control_plane.provider_status = 503

        with pytest.raises(NetworkError) as exc_info:
            await client.get_provider("0xabc")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, settings: Settings):
        """Test that connection failures raise NetworkError."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = ControlPlaneClient(settings, transport=httpx.MockTransport(refuse))

        with pytest.raises(NetworkError, match="Connection failed"):
            await client.get_provider("0xabc")

    @pytest.mark.asyncio
    async def test_fetch_public_ip(self, client: ControlPlaneClient):
        """Test that the IP lookup body is stripped."""
        assert await client.fetch_public_ip() == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_post_envelope(
        self,
        client: ControlPlaneClient,
        control_plane: FakeControlPlane,
        context: AgentContext,
    ):
        """Test that envelopes are posted as JSON to /healthstats."""
        envelope = context.identity.sign_envelope("hello")

        await client.post_envelope(envelope)

        request = control_plane.requests[0]
        body = json.loads(request.content)
        assert request.method == "POST"
        assert str(request.url) == f"{CONTROL_PLANE}/healthstats"
        assert body["message"] == "hello"
        assert verify_signature(body["message"], body["signature"], body["address"])


class TestRegistrationStateMachine:
    """Tests for registration and validation polling."""

    @pytest.mark.asyncio
    async def test_starts_unregistered(self, machine: RegistrationStateMachine):
        """Test the initial phase."""
        assert machine.phase == AgentPhase.UNREGISTERED

    @pytest.mark.asyncio
    async def test_registration_found(
        self,
        machine: RegistrationStateMachine,
        control_plane: FakeControlPlane,
        context: AgentContext,
    ):
        """Test that a record with an address marks the agent registered."""
        control_plane.provider_body = {"address": context.identity.address}

        assert await machine.check_registration() is True
        assert machine.phase == AgentPhase.REGISTERED_UNVALIDATED
        assert control_plane.requests[0].url.path.endswith(context.identity.address)

    @pytest.mark.asyncio
    async def test_registration_not_found(
        self, machine: RegistrationStateMachine, control_plane: FakeControlPlane
    ):
        """Test that a record without an address leaves the agent unregistered."""
        control_plane.provider_body = {"message": "not found"}

        assert await machine.check_registration() is False

    @pytest.mark.asyncio
    async def test_validation_found(
        self, machine: RegistrationStateMachine, control_plane: FakeControlPlane
    ):
        """Test that validation moves the agent to the validated phase."""
        control_plane.provider_body = {"address": "0xabc"}

        await machine.check_registration()
        assert await machine.check_validation() is True
        assert machine.phase == AgentPhase.REGISTERED_VALIDATED

    @pytest.mark.asyncio
    async def test_successful_poll_can_revoke(
        self, machine: RegistrationStateMachine, control_plane: FakeControlPlane
    ):
        """Test that a later answer without an address clears the flag."""
        control_plane.provider_body = {"address": "0xabc"}
        await machine.check_validation()

        control_plane.provider_body = {}
        assert await machine.check_validation() is False

    @pytest.mark.asyncio
    async def test_failed_poll_keeps_last_value(
        self, machine: RegistrationStateMachine, control_plane: FakeControlPlane
    ):
        """Test that a non-2xx answer leaves the flag unchanged."""
        control_plane.provider_body = {"address": "0xabc"}
        await machine.check_registration()

        control_plane.provider_status = 500
        assert await machine.check_registration() is True

    @pytest.mark.asyncio
    async def test_missing_identity_skips_poll(
        self, control_plane: FakeControlPlane, client: ControlPlaneClient
    ):
        """Test that without a seed phrase no lookup is attempted."""
        context = AgentContext.create(Settings(mnemonic=None, control_plane_url=CONTROL_PLANE))
        machine = RegistrationStateMachine(context, client)

        assert await machine.check_registration() is False
        assert control_plane.requests == []

    def test_record_ip_address(self, machine: RegistrationStateMachine, context: AgentContext):
        """Test that the announced IP is kept on the agent state."""
        machine.record_ip_address("203.0.113.7")
        assert context.state.ip_address == "203.0.113.7"

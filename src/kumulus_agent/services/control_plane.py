"""HTTP client for the Kumulus control plane."""

import logging
from typing import Any

import httpx

from kumulus_agent.core.config import Settings, get_settings
from kumulus_agent.core.errors import NetworkError
from kumulus_agent.models.telemetry import SignedEnvelope

logger = logging.getLogger(__name__)


class ControlPlaneClient:
    """Talks to the control plane and the public-IP lookup service.

    Every method raises NetworkError for transport failures and non-2xx
    answers; callers decide whether to log or surface it.

    Example:
        ```python
        client = ControlPlaneClient(settings)
        provider = await client.get_provider(address)
        await client.post_envelope(envelope)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Application settings (uses default if not provided)
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.settings = settings or get_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            transport=self._transport,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout calling {url}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Connection failed to {url}: {e}") from e

        if not response.is_success:
            raise NetworkError(
                f"HTTP error! status: {response.status_code}, body: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def get_provider(self, address: str) -> dict[str, Any]:
        """Look up the provider record for a signing address.

        Returns:
            Decoded JSON object (empty if the body is not an object)

        Raises:
            NetworkError: If the lookup fails or answers non-2xx
        """
        url = f"{self.settings.provider_lookup_url}/{address}"
        response = await self._request("GET", url)
        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON from {url}") from e
        return data if isinstance(data, dict) else {}

    async def post_envelope(self, envelope: SignedEnvelope) -> None:
        """Post a signed envelope to the health-stats endpoint.

        Raises:
            NetworkError: If the post fails or answers non-2xx
        """
        await self._request(
            "POST",
            self.settings.health_report_url,
            json=envelope.model_dump(),
        )

    async def fetch_public_ip(self) -> str:
        """Resolve this host's public IP address.

        Raises:
            NetworkError: If the lookup fails or returns an empty body
        """
        response = await self._request("GET", self.settings.ip_lookup_url)
        ip_address = response.text.strip()
        if not ip_address:
            raise NetworkError(f"Empty response from {self.settings.ip_lookup_url}")
        return ip_address

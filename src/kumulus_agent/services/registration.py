"""Registration/validation state machine for the provider agent."""

import logging

from kumulus_agent.core.errors import IdentityError, NetworkError
from kumulus_agent.models.common import AgentPhase
from kumulus_agent.services.context import AgentContext
from kumulus_agent.services.control_plane import ControlPlaneClient

logger = logging.getLogger(__name__)


class RegistrationStateMachine:
    """Tracks whether the control plane knows and trusts this agent.

    States (see AgentPhase):
        UNREGISTERED -> REGISTERED_UNVALIDATED (registration poll finds the provider)
        REGISTERED_UNVALIDATED -> REGISTERED_VALIDATED (validation poll finds it)
        any -> any earlier state (a later poll no longer finds it)

    Both polls query the provider lookup keyed by the agent's signing
    address. A successful poll overwrites the flag with whether the answer
    carries a non-empty ``address``. A failed poll (transport error, non-2xx,
    no identity) is logged and leaves the flag at its last known value.

    Example:
        ```python
        machine = RegistrationStateMachine(context, client)
        await machine.check_registration()
        if context.state.is_registered:
            ...
        ```
    """

    def __init__(self, context: AgentContext, client: ControlPlaneClient | None = None) -> None:
        """Initialize the state machine.

        Args:
            context: Agent context whose state this machine owns
            client: Optional ControlPlaneClient instance
        """
        self.context = context
        self.client = client or ControlPlaneClient(context.settings)

    @property
    def phase(self) -> AgentPhase:
        return self.context.state.phase

    def record_ip_address(self, ip_address: str) -> None:
        """Remember the public IP last announced to the control plane."""
        self.context.state.ip_address = ip_address

    async def _lookup(self, purpose: str) -> bool | None:
        """Poll the provider lookup.

        Returns:
            Whether the provider record carries an address, or None if the
            poll failed
        """
        try:
            address = self.context.identity.address
            data = await self.client.get_provider(address)
        except IdentityError as e:
            logger.error(f"Cannot check provider {purpose}: {e}")
            return None
        except NetworkError as e:
            logger.error(f"Provider {purpose} check failed: {e}")
            return None

        return bool(data.get("address"))

    async def check_registration(self) -> bool:
        """Refresh ``is_registered`` from the control plane.

        Returns:
            The registration flag after the poll
        """
        found = await self._lookup("registration")
        if found is not None:
            self.context.state.is_registered = found
            logger.info(
                "Provider registration status: "
                f"{'registered' if found else 'not registered'}"
            )
        return self.context.state.is_registered

    async def check_validation(self) -> bool:
        """Refresh ``is_validated`` from the control plane.

        Returns:
            The validation flag after the poll
        """
        found = await self._lookup("validation")
        if found is not None:
            self.context.state.is_validated = found
            logger.info(
                f"Provider validation status: {'validated' if found else 'not validated'}"
            )
        return self.context.state.is_validated

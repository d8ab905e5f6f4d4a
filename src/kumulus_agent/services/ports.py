"""SSH port allocation for tenant environments."""

import logging
import socket
from collections.abc import Callable

from kumulus_agent.core.config import Settings, get_settings
from kumulus_agent.core.errors import NoPortAvailableError

logger = logging.getLogger(__name__)


def is_port_free(port: int, host: str = "0.0.0.0") -> bool:
    """Check whether a TCP port can be bound right now.

    The socket is released immediately, so the answer is only good for the
    instant of the probe.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class PortAllocator:
    """Finds a free host port for a new environment's SSH daemon.

    Ports are probed linearly from ``start`` for ``count`` ports. Ports handed
    out by this allocator stay reserved in-process until released, so two
    overlapping Create calls never receive the same port. Processes outside
    the agent can still grab a probed port before the container binds it.

    Example:
        ```python
        allocator = PortAllocator(start=2222, count=100)
        port = allocator.allocate()
        try:
            ...  # start the container on ``port``
        finally:
            allocator.release(port)
        ```
    """

    def __init__(
        self,
        start: int = 2222,
        count: int = 100,
        probe: Callable[[int], bool] = is_port_free,
    ) -> None:
        """Initialize the allocator.

        Args:
            start: First port of the range
            count: Number of ports in the range
            probe: Returns True if the given port is free
        """
        self.start = start
        self.count = count
        self._probe = probe
        self._reserved: set[int] = set()

    @property
    def port_range(self) -> range:
        return range(self.start, self.start + self.count)

    @property
    def reserved(self) -> frozenset[int]:
        return frozenset(self._reserved)

    def find_free_port(self) -> int:
        """Return the first free, unreserved port without reserving it.

        Raises:
            NoPortAvailableError: If every port in the range is taken
        """
        for port in self.port_range:
            if port in self._reserved:
                continue
            if self._probe(port):
                return port
        raise NoPortAvailableError(
            f"No available ports for SSH in {self.start}-{self.start + self.count - 1}"
        )

    def allocate(self) -> int:
        """Find a free port and reserve it until ``release`` is called.

        Raises:
            NoPortAvailableError: If every port in the range is taken
        """
        port = self.find_free_port()
        self._reserved.add(port)
        logger.info(f"Allocated SSH port {port}")
        return port

    def release(self, port: int) -> None:
        """Drop the in-process reservation on ``port``."""
        self._reserved.discard(port)


# Global allocator instance
_port_allocator: PortAllocator | None = None


def get_port_allocator(settings: Settings | None = None) -> PortAllocator:
    """Get the global PortAllocator instance."""
    global _port_allocator
    if _port_allocator is None:
        settings = settings or get_settings()
        _port_allocator = PortAllocator(
            start=settings.ssh_port_start,
            count=settings.ssh_port_range,
        )
    return _port_allocator

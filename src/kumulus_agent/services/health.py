"""Host health sampling for signed telemetry reports."""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from kumulus_agent.core.config import Settings, get_settings
from kumulus_agent.core.executor import CommandExecutor, get_command_executor
from kumulus_agent.models.common import DockerStatus
from kumulus_agent.models.telemetry import HealthReport

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DECIMAL = re.compile(r"(\d+\.\d+)")


@dataclass
class DockerHealth:
    """Container-engine health counters."""

    status: DockerStatus
    running_containers: int = 0
    unhealthy_containers: int = 0


def parse_cpu_usage(top_output: str) -> float | None:
    """Sum user and system CPU from the ``Cpu(s)`` line of ``top -bn1``."""
    for line in top_output.splitlines():
        if "Cpu(s)" in line:
            matches = _DECIMAL.findall(line)
            if len(matches) >= 2:
                return float(matches[0]) + float(matches[1])
            return None
    return None


def parse_memory_free(free_output: str) -> str | None:
    """Read the ``free`` column of the ``Mem:`` row of ``free -m``."""
    lines = free_output.splitlines()
    if len(lines) > 1:
        values = lines[1].split()
        if len(values) > 3:
            return f"{values[3]} MB"
    return None


def parse_disk_free(df_output: str) -> str | None:
    """Read the available-space column of ``df -h /``."""
    lines = df_output.splitlines()
    if len(lines) > 1:
        values = lines[1].split()
        if len(values) > 3:
            return values[3]
    return None


def count_lines(output: str) -> int:
    """Count non-empty lines, e.g. container ids printed one per line."""
    return len([line for line in output.strip().splitlines() if line.strip()])


class HealthCollector:
    """Samples CPU, memory, disk and container-engine health from the host.

    Each probe is independent: a failed probe leaves its field at the
    default (``0``, ``"0 MB"``, ``"0 GB"``) instead of aborting the report.

    Example:
        ```python
        collector = HealthCollector()
        report = await collector.collect()
        print(report.to_message())
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        """Initialize the HealthCollector.

        Args:
            settings: Application settings (uses default if not provided)
            executor: Optional CommandExecutor instance
        """
        self.settings = settings or get_settings()
        self._executor = executor

    @property
    def executor(self) -> CommandExecutor:
        if self._executor is None:
            self._executor = get_command_executor()
        return self._executor

    async def collect(self) -> HealthReport:
        """Collect one health report.

        Returns:
            HealthReport stamped at construction time
        """
        values: dict[str, object] = {}

        cpu_usage = await self._sample("CPU usage", "top", ["-bn1"], parse_cpu_usage)
        if cpu_usage is not None:
            values["cpu_usage"] = cpu_usage

        memory_free = await self._sample("memory stats", "free", ["-m"], parse_memory_free)
        if memory_free is not None:
            values["memory_free"] = memory_free

        disk_free = await self._sample("disk space", "df", ["-h", "/"], parse_disk_free)
        if disk_free is not None:
            values["disk_free"] = disk_free

        docker = await self.check_docker()
        values["docker_status"] = docker.status
        values["running_containers"] = docker.running_containers
        values["unhealthy_containers"] = docker.unhealthy_containers

        return HealthReport.captured_now(**values)

    async def _sample(
        self,
        label: str,
        command: str,
        args: list[str],
        parser: Callable[[str], T | None],
    ) -> T | None:
        try:
            result = await self.executor.run(command, args)
            if not result.ok:
                logger.error(f"Failed to get {label}: {result.stderr.strip()}")
                return None
            value = parser(result.stdout)
            if value is None:
                logger.warning(f"Could not parse {label} from {command} output")
            return value
        except Exception as e:
            logger.error(f"Error collecting {label}: {e}")
            return None

    async def check_docker(self) -> DockerHealth:
        """Count running and unhealthy containers.

        Returns:
            ``not running`` if the engine cannot be queried, ``unknown`` if
            anything else goes wrong while querying it
        """
        engine = self.settings.container_engine
        try:
            ps_result = await self.executor.run(engine, ["ps", "--format", "{{.ID}}"])
            if not ps_result.ok:
                logger.error(f"Docker ps command failed: {ps_result.stderr.strip()}")
                return DockerHealth(status=DockerStatus.NOT_RUNNING)

            running = count_lines(ps_result.stdout)

            unhealthy_result = await self.executor.run(
                engine, ["ps", "--filter", "health=unhealthy", "--format", "{{.ID}}"]
            )
            unhealthy = count_lines(unhealthy_result.stdout) if unhealthy_result.ok else 0

            return DockerHealth(
                status=DockerStatus.RUNNING,
                running_containers=running,
                unhealthy_containers=unhealthy,
            )
        except Exception as e:
            logger.error(f"Error checking Docker status: {e}")
            return DockerHealth(status=DockerStatus.UNKNOWN)


# Global collector instance
_health_collector: HealthCollector | None = None


def get_health_collector(settings: Settings | None = None) -> HealthCollector:
    """Get the global HealthCollector instance."""
    global _health_collector
    if _health_collector is None:
        _health_collector = HealthCollector(settings)
    return _health_collector

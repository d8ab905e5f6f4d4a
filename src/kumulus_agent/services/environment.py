"""EnvironmentManager for provisioning and controlling tenant environments."""

import logging
import re
import tempfile
from pathlib import Path
from uuid import uuid4

from kumulus_agent.core.config import Settings, get_settings
from kumulus_agent.core.errors import ExternalProcessError, ValidationError
from kumulus_agent.core.executor import CommandExecutor, CommandResult, get_command_executor
from kumulus_agent.core.tracing import get_tracer
from kumulus_agent.models.common import EnvironmentStatus
from kumulus_agent.models.environment import EnvironmentRequest, TenantEnvironment
from kumulus_agent.services.image_builder import ImageBuilder, get_image_builder
from kumulus_agent.services.ports import PortAllocator, get_port_allocator

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Container names accepted by the engine; also keeps ids from parsing as flags.
ENV_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

RUNNING_STATES = frozenset({"running", "restarting"})


def validate_env_id(env_id: str | None) -> str:
    """Check that ``env_id`` is usable as a container name.

    Raises:
        ValidationError: If the id is missing or malformed
    """
    if not env_id:
        raise ValidationError("Missing required parameter: vmId", field="vmId")
    if not isinstance(env_id, str) or not ENV_ID_PATTERN.fullmatch(env_id):
        raise ValidationError(f"Invalid vmId: {env_id}", field="vmId")
    return env_id


class EnvironmentManager:
    """Drives the container engine through a tenant environment's lifecycle.

    Holds no records between requests: the environment id is the container
    name and the engine is the source of truth for status.

    Lifecycle:
        Create: render spec -> build image -> allocate port -> run container
        Stop / Start / Delete: best-effort engine calls
        Status: derived from the engine's view of the container
        Logs: the container's captured standard output

    Stop, Start, Logs and Delete log engine failures and report success
    unless ``strict_lifecycle_errors`` is set, in which case they raise
    ExternalProcessError.

    Example:
        ```python
        manager = get_environment_manager()

        env = await manager.create_environment(request)
        await manager.stop_environment(env.id)
        await manager.start_environment(env.id)
        status = await manager.get_status(env.id)
        await manager.delete_environment(env.id)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        executor: CommandExecutor | None = None,
        port_allocator: PortAllocator | None = None,
        image_builder: ImageBuilder | None = None,
    ) -> None:
        """Initialize the EnvironmentManager.

        Args:
            settings: Application settings (uses default if not provided)
            executor: Optional CommandExecutor instance
            port_allocator: Optional PortAllocator instance
            image_builder: Optional ImageBuilder instance
        """
        self.settings = settings or get_settings()
        self._executor = executor
        self._port_allocator = port_allocator
        self._image_builder = image_builder

    # -------------------------------------------------------------------------
    # Lazy Initialization Properties
    # -------------------------------------------------------------------------

    @property
    def executor(self) -> CommandExecutor:
        if self._executor is None:
            self._executor = get_command_executor()
        return self._executor

    @property
    def port_allocator(self) -> PortAllocator:
        if self._port_allocator is None:
            self._port_allocator = get_port_allocator(self.settings)
        return self._port_allocator

    @property
    def image_builder(self) -> ImageBuilder:
        if self._image_builder is None:
            self._image_builder = get_image_builder()
        return self._image_builder

    @property
    def engine(self) -> str:
        return self.settings.container_engine

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create_environment(self, request: EnvironmentRequest) -> TenantEnvironment:
        """Build and start a new tenant environment.

        A failure at the run step leaves the built image behind.

        Args:
            request: Validated environment request

        Returns:
            The running TenantEnvironment

        Raises:
            ValidationError: If the username or key is rejected (nothing is run)
            ExternalProcessError: If the image build or container start fails
            NoPortAvailableError: If the SSH port range is exhausted
        """
        env_id = str(uuid4())
        image_name = self.image_builder.image_name(env_id)
        dockerfile_content = self.image_builder.render_build_spec(
            request.username, request.ssh_key
        )

        logger.info(f"Creating environment {env_id} for user {request.username}")

        with tracer.start_as_current_span("environment.create") as span:
            span.set_attribute("environment.id", env_id)

            await self._build_image(env_id, image_name, dockerfile_content)

            ssh_port = self.port_allocator.allocate()
            try:
                await self._run_container(env_id, image_name, ssh_port, request)
            finally:
                self.port_allocator.release(ssh_port)

            span.set_attribute("environment.ssh_port", ssh_port)

        logger.info(f"Environment {env_id} running on SSH port {ssh_port}")
        return TenantEnvironment(
            id=env_id,
            imageName=image_name,
            sshPort=ssh_port,
            owner=request.username,
            status=EnvironmentStatus.RUNNING,
        )

    async def _build_image(self, env_id: str, image_name: str, dockerfile_content: str) -> None:
        """Write the build spec into a private build context and build it."""
        with tempfile.TemporaryDirectory(prefix=f"kumulus-{env_id}-") as build_dir:
            dockerfile_path = Path(build_dir) / "Dockerfile"
            dockerfile_path.write_text(dockerfile_content)
            logger.debug(f"Build spec written to {dockerfile_path}")

            result = await self.executor.run(
                self.engine,
                ["build", "-t", image_name, "-f", str(dockerfile_path), build_dir],
            )

        logger.info(f"Build command exit code: {result.code}")
        if not result.ok:
            self._log_failure("build", result)
            raise ExternalProcessError(
                "Failed to build Docker image",
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=result.code,
            )

    async def _run_container(
        self,
        env_id: str,
        image_name: str,
        ssh_port: int,
        request: EnvironmentRequest,
    ) -> None:
        """Start the container with the requested limits and SSH mapping."""
        args = [
            "run",
            "-d",
            f"--cpus={request.cpu:g}",
            f"--memory={request.memory}",
        ]
        if self.settings.apply_disk_limit:
            args += ["--storage-opt", f"size={request.disk}"]
        args += [
            "-p",
            f"{ssh_port}:{self.settings.container_ssh_port}",
            "--name",
            env_id,
            image_name,
        ]

        result = await self.executor.run(self.engine, args)

        logger.info(f"Run command exit code: {result.code}")
        if not result.ok:
            self._log_failure("run", result)
            raise ExternalProcessError(
                "Failed to start Docker container",
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=result.code,
            )

    # -------------------------------------------------------------------------
    # Lifecycle Control
    # -------------------------------------------------------------------------

    async def stop_environment(self, env_id: str) -> CommandResult:
        """Stop a running environment (RUNNING -> STOPPED)."""
        env_id = validate_env_id(env_id)
        return await self._best_effort("stop", [env_id], "Failed to stop VM")

    async def start_environment(self, env_id: str) -> CommandResult:
        """Start a stopped environment (STOPPED -> RUNNING)."""
        env_id = validate_env_id(env_id)
        return await self._best_effort("start", [env_id], "Failed to start VM")

    async def delete_environment(self, env_id: str) -> CommandResult:
        """Force-remove an environment (-> DESTROYED)."""
        env_id = validate_env_id(env_id)
        return await self._best_effort("rm", ["-f", env_id], "Failed to delete VM")

    async def get_logs(self, env_id: str) -> str:
        """Return the container's captured standard output."""
        env_id = validate_env_id(env_id)
        result = await self._best_effort("logs", [env_id], "Failed to retrieve VM logs")
        return result.stdout

    async def get_status(self, env_id: str) -> EnvironmentStatus:
        """Look the container up by exact name and map its engine state.

        A container that no longer exists is reported as DESTROYED.

        Raises:
            ExternalProcessError: If the engine lookup itself fails
        """
        env_id = validate_env_id(env_id)
        result = await self.executor.run(
            self.engine,
            ["ps", "-a", "--filter", f"name=^/{env_id}$", "--format", "{{.State}}"],
        )

        logger.info(f"Status command exit code: {result.code}")
        if not result.ok:
            self._log_failure("ps", result)
            raise ExternalProcessError(
                "Failed to retrieve VM status",
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=result.code,
            )

        states = [line.strip().lower() for line in result.stdout.splitlines() if line.strip()]
        if not states:
            return EnvironmentStatus.DESTROYED
        if states[0] in RUNNING_STATES:
            return EnvironmentStatus.RUNNING
        return EnvironmentStatus.STOPPED

    async def _best_effort(self, action: str, args: list[str], message: str) -> CommandResult:
        result = await self.executor.run(self.engine, [action, *args])

        logger.info(f"{action.capitalize()} command exit code: {result.code}")
        if not result.ok:
            self._log_failure(action, result)
            if self.settings.strict_lifecycle_errors:
                raise ExternalProcessError(
                    message,
                    stdout=result.stdout,
                    stderr=result.stderr,
                    exit_code=result.code,
                )
        return result

    def _log_failure(self, action: str, result: CommandResult) -> None:
        logger.error(f"Docker {action} failed")
        logger.error(f"{action} stderr: {result.stderr}")
        logger.error(f"{action} stdout: {result.stdout}")


# Global manager instance
_environment_manager: EnvironmentManager | None = None


def get_environment_manager() -> EnvironmentManager:
    """Get the global EnvironmentManager instance."""
    global _environment_manager
    if _environment_manager is None:
        _environment_manager = EnvironmentManager()
    return _environment_manager

"""Subprocess executor used for every container-engine and host command."""

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of one external command."""

    code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.code == 0


class CommandExecutor:
    """Runs external commands without a shell and captures their output.

    A non-zero exit is reported through ``CommandResult.code`` rather than
    raised. A command that cannot be started at all (missing binary,
    permission denied) is reported as ``code=1`` with the error text in
    ``stderr``, so callers only ever branch on the exit code.

    No timeout is applied: a hung command suspends the awaiting task until
    it exits.

    Example:
        ```python
        executor = CommandExecutor()
        result = await executor.run("docker", ["ps", "-q"])
        if result.ok:
            print(result.stdout)
        ```
    """

    async def run(self, command: str, args: list[str] | None = None) -> CommandResult:
        """Run ``command`` with ``args`` and wait for it to exit.

        Args:
            command: Executable name or path
            args: Arguments passed as separate argv entries

        Returns:
            CommandResult with the exit code and decoded output streams
        """
        argv = [command, *(args or [])]
        logger.info(f"Running command: {' '.join(argv)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except OSError as e:
            logger.error(f"Command execution failed: {e}")
            return CommandResult(code=1, stdout="", stderr=str(e))

        code = process.returncode if process.returncode is not None else 1
        logger.debug(f"Command {command} exited with code {code}")
        return CommandResult(
            code=code,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )


# Global executor instance
_command_executor: CommandExecutor | None = None


def get_command_executor() -> CommandExecutor:
    """Get the global CommandExecutor instance."""
    global _command_executor
    if _command_executor is None:
        _command_executor = CommandExecutor()
    return _command_executor

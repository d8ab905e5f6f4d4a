"""Pytest configuration for kumulus-agent tests."""

from collections.abc import Callable

import pytest

from kumulus_agent.core.executor import CommandResult

ResultFactory = Callable[[str, list[str]], CommandResult]


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "live_engine: marks tests that require a running container engine",
    )


class FakeExecutor:
    """CommandExecutor stand-in that records calls and replays canned results.

    Results are keyed by the first argument after the command (``build``,
    ``run``, ``ps`` ...) or by the command itself for host probes (``top``,
    ``free``, ``df``). Unknown calls succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []
        self.results: dict[str, CommandResult | ResultFactory] = {}

    def set_result(
        self,
        key: str,
        code: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.results[key] = CommandResult(code=code, stdout=stdout, stderr=stderr)

    def set_factory(self, key: str, factory: ResultFactory) -> None:
        self.results[key] = factory

    async def run(self, command: str, args: list[str] | None = None) -> CommandResult:
        args = list(args or [])
        self.calls.append((command, args))
        key = args[0] if command == "docker" and args else command
        result = self.results.get(key)
        if result is None:
            return CommandResult(code=0, stdout="", stderr="")
        if callable(result):
            return result(command, args)
        return result

    def actions(self) -> list[str]:
        """Engine sub-commands in call order."""
        return [args[0] for command, args in self.calls if command == "docker" and args]


@pytest.fixture
def fake_executor() -> FakeExecutor:
    """Create a recording executor."""
    return FakeExecutor()


@pytest.fixture
def mnemonic() -> str:
    """A well-formed 12-word seed phrase."""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )

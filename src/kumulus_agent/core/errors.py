"""Error taxonomy shared by the lifecycle manager and the telemetry loop."""


class AgentError(Exception):
    """Base class for errors raised by the agent."""

    pass


class ValidationError(AgentError):
    """Raised when a request field is missing or malformed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize validation error.

        Args:
            message: Error message
            field: Name of the offending field, if known
        """
        super().__init__(message)
        self.message = message
        self.field = field


class ExternalProcessError(AgentError):
    """Raised when the container engine exits with a non-zero status."""

    def __init__(
        self,
        message: str,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 1,
    ) -> None:
        """Initialize external process error.

        Args:
            message: Error message
            stdout: Captured standard output of the failing step
            stderr: Captured standard error of the failing step
            exit_code: Exit code of the failing step
        """
        super().__init__(message)
        self.message = message
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code

    @property
    def details(self) -> dict[str, str]:
        """Diagnostic payload returned to API callers."""
        return {"stdout": self.stdout, "stderr": self.stderr}


class IdentityError(AgentError):
    """Raised when signing is unavailable (missing or malformed seed phrase)."""

    pass


class NetworkError(AgentError):
    """Raised when the control plane is unreachable or answers non-2xx."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NoPortAvailableError(AgentError):
    """Raised when every port in the SSH range is taken."""

    pass

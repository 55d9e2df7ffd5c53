"""Error taxonomy for the installer.

Every failure that reaches the sequencer is a ``SetupError`` tagged with an
``ErrorKind`` and, where known, the command, exit code and stage involved.
"""

from enum import Enum
from typing import Optional, Sequence


class ErrorKind(Enum):
    DEPENDENCY = "dependency"
    PERMISSION = "permission"
    NETWORK = "network"
    FILESYSTEM = "filesystem"
    CONFIGURATION = "configuration"
    RUNTIME_FAILURE = "runtime-failure"


# Process exit status used when no command exit code is available.
EXIT_CODES = {
    ErrorKind.RUNTIME_FAILURE: 1,
    ErrorKind.CONFIGURATION: 2,
    ErrorKind.DEPENDENCY: 3,
    ErrorKind.PERMISSION: 4,
    ErrorKind.NETWORK: 5,
    ErrorKind.FILESYSTEM: 6,
}


class SetupError(Exception):
    """Base exception for setup errors."""

    kind: ErrorKind = ErrorKind.RUNTIME_FAILURE

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        exit_code: Optional[int] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.command = list(command) if command else None
        self.exit_code = exit_code
        self.stage = stage

    @property
    def command_line(self) -> str:
        return " ".join(self.command) if self.command else ""

    @property
    def process_exit_code(self) -> int:
        """Exit status for the process: the command's own code when known."""
        if self.exit_code and self.exit_code < 0:
            return 128 + abs(self.exit_code)
        if self.exit_code:
            return self.exit_code
        return EXIT_CODES[self.kind]

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class DependencyError(SetupError):
    """Raised when a required command or package is missing."""

    kind = ErrorKind.DEPENDENCY


class PermissionDeniedError(SetupError):
    """Raised when not running as root or an operation is refused."""

    kind = ErrorKind.PERMISSION


class NetworkError(SetupError):
    """Raised when a registry, mirror or DNS lookup cannot be reached."""

    kind = ErrorKind.NETWORK


class FilesystemError(SetupError):
    """Raised for insufficient disk space or missing directories."""

    kind = ErrorKind.FILESYSTEM


class ConfigurationError(SetupError):
    """Raised when a user-supplied value fails validation."""

    kind = ErrorKind.CONFIGURATION


class ExecutionError(SetupError):
    """Raised when a wrapped command fails in a non-transient way."""

    kind = ErrorKind.RUNTIME_FAILURE


class RetryExhaustedError(ExecutionError):
    """Raised when every attempt allowed by a retry policy failed transiently."""

    def __init__(self, message: str, attempts: int, **kwargs) -> None:
        super().__init__(f"{message} (exhausted retries after {attempts} attempts)", **kwargs)
        self.attempts = attempts


class TransactionError(SetupError):
    """Raised on misuse of a transaction, e.g. committing a failed one."""

    kind = ErrorKind.RUNTIME_FAILURE

"""
Command execution with tri-state outcome classification.

Commands run with their output captured for logging and never echoed to the
console. The executor does not raise on command failure; callers decide
what a failure means through ``Outcome.raise_for_status`` or a retry policy.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Sequence

from msi.audit import EXEC, AuditLog
from msi.errors import (
    DependencyError,
    ExecutionError,
    NetworkError,
    PermissionDeniedError,
    SetupError,
)

logger = logging.getLogger(__name__)

# Exit codes that no amount of retrying will fix.
ALWAYS_FATAL = frozenset({126, 127, 13})
# Timeouts and connectivity failures (curl 6/7/28/35/56, timeout(1) 124).
CONNECTIVITY = frozenset({6, 7, 28, 35, 56})
TIMEOUT = 124
ALWAYS_TRANSIENT = CONNECTIVITY | {TIMEOUT}

STDERR_EXCERPT = 400


class OutcomeKind(Enum):
    SUCCESS = "success"
    TRANSIENT = "transient-failure"
    FATAL = "fatal-failure"


def classify_exit_code(exit_code: int, retryable: bool = False) -> OutcomeKind:
    """Map an exit code to an outcome kind."""
    if exit_code == 0:
        return OutcomeKind.SUCCESS
    if exit_code in ALWAYS_FATAL:
        return OutcomeKind.FATAL
    if exit_code in ALWAYS_TRANSIENT or retryable:
        return OutcomeKind.TRANSIENT
    return OutcomeKind.FATAL


@dataclass
class Outcome:
    """Result of one command invocation."""

    command: Sequence[str]
    kind: OutcomeKind
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def transient(self) -> bool:
        return self.kind is OutcomeKind.TRANSIENT

    @property
    def stderr_excerpt(self) -> str:
        text = self.stderr.strip()
        return text[-STDERR_EXCERPT:] if len(text) > STDERR_EXCERPT else text

    def error(self, stage: Optional[str] = None, message: Optional[str] = None) -> SetupError:
        """Build the tagged error for this failure."""
        cmd_str = " ".join(self.command)
        text = message or f"Command failed (code {self.exit_code}): {cmd_str}"
        if self.stderr_excerpt:
            text += f": {self.stderr_excerpt}"
        if self.exit_code in (126, 127):
            cls = DependencyError
        elif self.exit_code == 13:
            cls = PermissionDeniedError
        elif self.exit_code in ALWAYS_TRANSIENT:
            cls = NetworkError
        else:
            cls = ExecutionError
        return cls(text, command=self.command, exit_code=self.exit_code, stage=stage)

    def raise_for_status(self, stage: Optional[str] = None, message: Optional[str] = None) -> "Outcome":
        if not self.ok:
            raise self.error(stage, message)
        return self


Runner = Callable[..., subprocess.CompletedProcess]


class CommandExecutor:
    """Run external commands and classify their outcome."""

    def __init__(
        self,
        audit: AuditLog,
        runner: Runner = subprocess.run,
        timeout: Optional[int] = None,
    ) -> None:
        self.audit = audit
        self.runner = runner
        self.timeout = timeout

    def run(
        self,
        cmd: Sequence[str],
        timeout: Optional[int] = None,
        retryable: bool = False,
        input: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        redact: Iterable[str] = (),
    ) -> Outcome:
        """
        Execute one command with captured output.

        Args:
            cmd: Command and arguments
            timeout: Seconds before the command is killed (defaults to the executor's)
            retryable: Treat otherwise-fatal exit codes as transient
            input: Text passed on stdin
            env: Extra environment variables merged into the current environment
            redact: Argument values replaced by ``***`` in logs

        Returns:
            Outcome of the invocation
        """
        cmd = list(cmd)
        hidden = set(redact)
        cmd_str = " ".join("***" if arg in hidden else arg for arg in cmd)
        logger.debug(f"Executing: {cmd_str}")

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        try:
            result = self.runner(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout or self.timeout,
                input=input,
                env=run_env,
            )
            exit_code = result.returncode
            stdout = result.stdout or ""
            stderr = result.stderr or ""
        except FileNotFoundError as e:
            exit_code, stdout, stderr = 127, "", str(e)
        except PermissionError as e:
            exit_code, stdout, stderr = 126, "", str(e)
        except subprocess.TimeoutExpired:
            exit_code, stdout, stderr = TIMEOUT, "", f"timed out after {timeout or self.timeout}s"

        kind = classify_exit_code(exit_code, retryable)
        outcome = Outcome(cmd, kind, exit_code, stdout, stderr)

        self.audit.write(EXEC, f"{cmd_str} -> {kind.value} ({exit_code})")
        if outcome.ok:
            logger.debug(f"Command succeeded: {cmd_str}")
        else:
            logger.debug(f"Command failed (code {exit_code}): {cmd_str}: {outcome.stderr_excerpt}")
        return outcome

    def succeeds(self, cmd: Sequence[str], **kwargs) -> bool:
        """Query helper: True when the command exits 0."""
        return self.run(cmd, **kwargs).ok

    def check(self, cmd: Sequence[str], stage: Optional[str] = None, **kwargs) -> Outcome:
        """Run a command and raise the tagged error if it fails."""
        return self.run(cmd, **kwargs).raise_for_status(stage)

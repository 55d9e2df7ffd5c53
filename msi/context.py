"""Per-run state passed explicitly to every stage."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from msi.audit import AuditLog
from msi.config import AppConfig, InstallationConfig
from msi.executor import CommandExecutor, Outcome, Runner
from msi.retry import RetryController, RetryPolicy
from msi.transaction import Transaction
from msi.ui import StepIndicator

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


@dataclass
class RunOptions:
    """Command line switches for one run."""

    debug: bool = False
    backup: bool = False
    restore: Optional[str] = None
    skip_docker: bool = False
    unattended: bool = False


@dataclass
class RunContext:
    """
    Owns everything one run touches: configuration, audit log, executor,
    retry controller, the open transaction and the progress indicator factory.
    """

    app: AppConfig
    audit: AuditLog
    executor: CommandExecutor
    retry: RetryController
    options: RunOptions = field(default_factory=RunOptions)
    install: Optional[InstallationConfig] = None
    transaction: Optional[Transaction] = None
    indicator: Callable[[str], StepIndicator] = StepIndicator
    sleep: Callable[[float], None] = time.sleep
    errors: List[str] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        app: AppConfig,
        options: Optional[RunOptions] = None,
        runner: Optional[Runner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "RunContext":
        audit = AuditLog(app.AUDIT_LOG, app.MAX_LOG_SIZE)
        if runner is None:
            executor = CommandExecutor(audit, timeout=app.COMMAND_TIMEOUT)
        else:
            executor = CommandExecutor(audit, runner=runner, timeout=app.COMMAND_TIMEOUT)
        policy = RetryPolicy(max_attempts=app.MAX_RETRIES, delay=app.RETRY_DELAY)
        return cls(
            app=app,
            audit=audit,
            executor=executor,
            retry=RetryController(executor, policy, sleep=sleep),
            options=options or RunOptions(),
            sleep=sleep,
        )

    @property
    def policy(self) -> RetryPolicy:
        return self.retry.default_policy

    def run(self, cmd: Sequence[str], **kwargs) -> Outcome:
        return self.executor.run(cmd, **kwargs)

    def check(self, cmd: Sequence[str], stage: Optional[str] = None, **kwargs) -> Outcome:
        return self.executor.check(cmd, stage=stage, **kwargs)

    def retried(self, cmd: Sequence[str], stage: Optional[str] = None, **kwargs) -> Outcome:
        return self.retry.run_command(cmd, stage=stage, **kwargs)

    def apt(self, *args: str, stage: Optional[str] = None) -> Outcome:
        """Run apt-get non-interactively through the retry controller."""
        return self.retried(["apt-get", *args], stage=stage, env=APT_ENV)

    def record_error(self, message: str) -> None:
        self.errors.append(message)

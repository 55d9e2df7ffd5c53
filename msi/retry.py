"""Bounded retries with a fixed delay."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Optional, Sequence

from msi.errors import RetryExhaustedError
from msi.executor import ALWAYS_FATAL, CommandExecutor, Outcome, OutcomeKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently to retry one step's forward action.

    ``retryable`` marks every non-fatal exit code as transient;
    ``transient_codes`` marks only the listed ones. Missing commands and
    permission errors are never retried.
    """

    max_attempts: int = 3
    delay: float = 5.0
    retryable: bool = True
    transient_codes: FrozenSet[int] = field(default_factory=frozenset)

    def classify(self, outcome: Outcome) -> OutcomeKind:
        if outcome.ok:
            return OutcomeKind.SUCCESS
        if outcome.exit_code in ALWAYS_FATAL:
            return OutcomeKind.FATAL
        if outcome.exit_code in self.transient_codes:
            return OutcomeKind.TRANSIENT
        return outcome.kind


NO_RETRY = RetryPolicy(max_attempts=1, delay=0, retryable=False)


class RetryController:
    """Apply a RetryPolicy to an action that produces an Outcome."""

    def __init__(
        self,
        executor: CommandExecutor,
        default_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.executor = executor
        self.default_policy = default_policy or RetryPolicy()
        self.sleep = sleep

    def run(
        self,
        action: Callable[[], Outcome],
        policy: Optional[RetryPolicy] = None,
        description: str = "Operation",
        stage: Optional[str] = None,
    ) -> Outcome:
        """
        Invoke ``action`` until it succeeds, fails fatally, or attempts run out.

        Raises:
            SetupError: on a fatal failure (after a single invocation)
            RetryExhaustedError: when every attempt failed transiently
        """
        policy = policy or self.default_policy
        attempts = max(1, policy.max_attempts)
        outcome = None

        for attempt in range(1, attempts + 1):
            outcome = action()
            kind = policy.classify(outcome)
            if kind is OutcomeKind.SUCCESS:
                if attempt > 1:
                    logger.info(f"{description} succeeded on attempt {attempt}")
                return outcome
            if kind is OutcomeKind.FATAL:
                logger.error(f"{description} failed permanently (code {outcome.exit_code})")
                raise outcome.error(stage)
            if attempt < attempts:
                logger.warning(
                    f"{description} failed (attempt {attempt}/{attempts}, code "
                    f"{outcome.exit_code}). Retrying in {policy.delay:.0f}s..."
                )
                self.sleep(policy.delay)

        logger.error(f"{description} failed after {attempts} attempts")
        raise RetryExhaustedError(
            f"{description} failed (code {outcome.exit_code}): {' '.join(outcome.command)}",
            attempts=attempts,
            command=outcome.command,
            exit_code=outcome.exit_code,
            stage=stage,
        )

    def run_command(
        self,
        cmd: Sequence[str],
        policy: Optional[RetryPolicy] = None,
        description: Optional[str] = None,
        stage: Optional[str] = None,
        **kwargs,
    ) -> Outcome:
        """Retry one executor command; extra kwargs go to ``CommandExecutor.run``."""
        policy = policy or self.default_policy
        command = list(cmd)
        return self.run(
            lambda: self.executor.run(command, retryable=policy.retryable, **kwargs),
            policy,
            description or " ".join(command),
            stage,
        )

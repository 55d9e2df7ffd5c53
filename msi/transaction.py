"""
Transaction log and rollback stack.

A Transaction groups every Step of one install or update run. Each Step may
register a compensating action; on failure the compensations are replayed in
strict reverse order of registration. This is a best-effort undo log, not an
ACID transaction: compensations that fail are logged and skipped, and some
effects (an upgraded apt package, for instance) are never reverted.
"""

import datetime
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from msi.audit import BEGIN, COMMIT, ROLLBACK, STEP, AuditLog
from msi.errors import TransactionError

logger = logging.getLogger(__name__)


class StepStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TransactionStatus(Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


@dataclass
class Step:
    """A named unit of work performed once during a run."""

    name: str
    action: Callable[[], Any]
    compensate: Optional[Callable[[], Any]] = None
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    error: str = ""

    def __post_init__(self) -> None:
        if not self.description:
            self.description = self.name.replace("-", " ").capitalize()


@dataclass
class RollbackResult:
    """What happened to each compensation during an unwind."""

    reason: str
    undone: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failed


def _new_transaction_id() -> str:
    return f"{datetime.datetime.now().strftime('%Y%m%d%H%M%S')}-{os.getpid()}"


class Transaction:
    """Ordered steps of one run plus a LIFO stack of compensating actions."""

    def __init__(self, audit: AuditLog, transaction_id: Optional[str] = None) -> None:
        self.audit = audit
        self.id = transaction_id or _new_transaction_id()
        self.steps: List[Step] = []
        self.status: Optional[TransactionStatus] = None
        self.rollback_result: Optional[RollbackResult] = None
        self._stack: List[Tuple[str, Callable[[], Any]]] = []

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------
    def begin(self) -> "Transaction":
        if self.status is not None:
            raise TransactionError(f"Transaction {self.id} already started")
        self.status = TransactionStatus.OPEN
        self.audit.write(BEGIN, self.id)
        logger.info(f"Transaction {self.id} started")
        return self

    def _require_open(self) -> None:
        if self.status is not TransactionStatus.OPEN:
            raise TransactionError(f"Transaction {self.id} is not open")

    def record_step(self, step: Step, compensating_action: Optional[Callable[[], Any]] = None) -> Step:
        """Append a step and push its compensating action, if any."""
        self._require_open()
        self.steps.append(step)
        compensate = compensating_action or step.compensate
        if compensate is not None:
            step.compensate = compensate
            self._stack.append((step.name, compensate))
        self.audit.write(STEP, step.name)
        return step

    def run_step(self, step: Step) -> Any:
        """
        Record a step and execute its forward action.

        The compensation is registered before the action runs, so a step that
        fails half way is unwound as well.
        """
        self.record_step(step)
        step.status = StepStatus.RUNNING
        try:
            result = step.action()
        except BaseException as e:
            step.status = StepStatus.FAILED
            step.error = str(e) or type(e).__name__
            raise
        step.status = StepStatus.SUCCEEDED
        return result

    def commit(self) -> None:
        """Make every recorded step permanent for this run."""
        self._require_open()
        unfinished = [s.name for s in self.steps if s.status is not StepStatus.SUCCEEDED]
        if unfinished:
            raise TransactionError(
                f"Cannot commit transaction {self.id}: steps not succeeded: {', '.join(unfinished)}"
            )
        self.audit.write(COMMIT, self.id)
        self._stack.clear()
        self.status = TransactionStatus.COMMITTED
        logger.info(f"Transaction {self.id} committed ({len(self.steps)} steps)")

    def rollback(self, reason: str) -> RollbackResult:
        """Replay every compensating action in LIFO order, best effort."""
        self._require_open()
        self.audit.write(ROLLBACK, reason)
        logger.warning(f"Rolling back transaction {self.id}: {reason}")

        result = RollbackResult(reason)
        while self._stack:
            name, compensate = self._stack.pop()
            try:
                compensate()
                result.undone.append(name)
                logger.info(f"Compensated step {name}")
            except Exception as e:
                result.failed.append((name, str(e)))
                logger.warning(f"Compensating action for {name} failed: {e}")

        self.status = TransactionStatus.ROLLED_BACK
        self.rollback_result = result
        return result

    @property
    def failed_step(self) -> Optional[Step]:
        for step in self.steps:
            if step.status is StepStatus.FAILED:
                return step
        return None

    # ------------------------------------------------------------
    # Scoped use
    # ------------------------------------------------------------
    def __enter__(self) -> "Transaction":
        return self.begin()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if self.status is not TransactionStatus.OPEN:
            return
        if exc_type is None:
            self.commit()
            return
        failed = self.failed_step
        if failed is not None:
            reason = failed.name
        elif issubclass(exc_type, (KeyboardInterrupt, SystemExit)):
            reason = "interrupted"
        else:
            reason = str(exc_value) or exc_type.__name__
        self.rollback(reason)

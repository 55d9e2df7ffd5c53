"""Bring the compose stack up."""

import logging
from typing import List, Optional

from msi.context import RunContext
from msi.errors import ExecutionError

logger = logging.getLogger(__name__)

STAGE = "launch-services"


def compose_command(compose_file: str, *args: str) -> List[str]:
    return ["docker", "compose", "-f", compose_file, *args]


def stack_running(ctx: RunContext) -> bool:
    outcome = ctx.run(compose_command(ctx.app.COMPOSE_FILE, "ps", "-q"))
    return outcome.ok and bool(outcome.stdout.strip())


class ServiceLauncher:
    """Pulls images and starts every container in the compose document."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx
        self.was_running: Optional[bool] = None

    def compose(self, *args: str) -> List[str]:
        return compose_command(self.ctx.app.COMPOSE_FILE, *args)

    def apply(self) -> None:
        self.was_running = stack_running(self.ctx)
        self.ctx.retried(self.compose("pull"), description="Pulling container images", stage=STAGE)
        self.ctx.retried(
            self.compose("up", "-d", "--remove-orphans"),
            description="Starting containers",
            stage=STAGE,
        )
        logger.info("Media stack started")

    def undo(self) -> None:
        """Stop the stack, unless it was already running before this run."""
        if self.was_running is not False:
            return
        outcome = self.ctx.run(self.compose("down", "--remove-orphans"))
        if not outcome.ok:
            raise ExecutionError(
                "Could not stop the media stack",
                command=outcome.command,
                exit_code=outcome.exit_code,
                stage=STAGE,
            )
        self.was_running = None

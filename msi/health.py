"""Container health verification with bounded polling."""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from msi.context import RunContext
from msi.services import SERVICES, ServiceDefinition

logger = logging.getLogger(__name__)

STAGE = "verify-health"


@dataclass
class ContainerState:
    name: str
    running: bool = False
    status: str = "missing"
    health: Optional[str] = None

    @property
    def healthy(self) -> bool:
        """Running, and healthy if the image defines a health check."""
        return self.running and (self.health is None or self.health == "healthy")

    def describe(self) -> str:
        if self.health:
            return f"{self.status} ({self.health})"
        return self.status


def parse_state(name: str, text: str) -> ContainerState:
    """Parse ``docker container inspect --format '{{json .State}}'`` output."""
    try:
        state = json.loads(text.strip() or "{}")
    except ValueError:
        return ContainerState(name, status="unknown")
    if not isinstance(state, dict):
        return ContainerState(name, status="unknown")
    health = state.get("Health")
    return ContainerState(
        name,
        running=bool(state.get("Running")),
        status=str(state.get("Status", "unknown")),
        health=health.get("Status") if isinstance(health, dict) else None,
    )


@dataclass
class HealthReport:
    healthy: List[str] = field(default_factory=list)
    unhealthy: Dict[str, str] = field(default_factory=dict)
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return not self.unhealthy


class HealthChecker:
    """
    Polls every service container until all are healthy or the attempt
    budget is spent. Total wait is bounded by attempts × delay.
    """

    def __init__(
        self,
        ctx: RunContext,
        attempts: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> None:
        self.ctx = ctx
        self.attempts = max(1, attempts if attempts is not None else ctx.app.HEALTH_ATTEMPTS)
        self.delay = delay if delay is not None else ctx.app.HEALTH_DELAY

    def inspect(self, name: str) -> ContainerState:
        outcome = self.ctx.run(
            ["docker", "container", "inspect", "--format", "{{json .State}}", name]
        )
        if not outcome.ok:
            return ContainerState(name)
        return parse_state(name, outcome.stdout)

    def wait(self, services: Iterable[ServiceDefinition] = SERVICES) -> HealthReport:
        pending = [service.name for service in services]
        report = HealthReport()
        states: Dict[str, ContainerState] = {}

        for attempt in range(1, self.attempts + 1):
            report.attempts = attempt
            still_pending = []
            for name in pending:
                state = self.inspect(name)
                states[name] = state
                if state.healthy:
                    report.healthy.append(name)
                    logger.info(f"{name} is healthy")
                else:
                    still_pending.append(name)
            pending = still_pending
            if not pending:
                break
            if attempt < self.attempts:
                logger.debug(f"Waiting on {', '.join(pending)} (poll {attempt}/{self.attempts})")
                self.ctx.sleep(self.delay)

        report.unhealthy = {name: states[name].describe() for name in pending}
        return report

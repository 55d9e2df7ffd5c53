"""ufw firewall configuration with convergent rule management."""

import logging
import re
from dataclasses import dataclass
from typing import List, Tuple

from msi.context import RunContext
from msi.errors import ExecutionError
from msi.services import PRIMARY_SERVICE, get_service
from msi.system import SystemUpdater

logger = logging.getLogger(__name__)

STAGE = "configure-firewall"

_RULE_LINE = re.compile(
    r"^(?P<to>\S+(?: \(v6\))?)\s+(?P<action>ALLOW|DENY|LIMIT|REJECT)(?: (?:IN|OUT|FWD))?\s+(?P<source>.+?)\s*$"
)
_ADDED_LINE = re.compile(
    r"^ufw (?P<action>allow|deny|limit|reject)(?: (?:in|out))?"
    r"(?: from (?P<source>\S+) to \S+ port (?P<port>\d+)(?: proto (?P<proto>\w+))?| (?P<bare>\d+)(?:/(?P<bare_proto>\w+))?)$"
)


@dataclass(frozen=True)
class FirewallRule:
    action: str
    port: int
    source: str
    proto: str = "tcp"

    def args(self) -> List[str]:
        return ["from", self.source, "to", "any", "port", str(self.port), "proto", self.proto]

    def __str__(self) -> str:
        return f"{self.action} {self.port}/{self.proto} from {self.source}"


def parse_ufw_status(text: str) -> Tuple[bool, List[Tuple[str, str, str]]]:
    """
    Parse ``ufw status`` output.

    Returns:
        (active, [(to, action, from), ...])
    """
    active = False
    rules = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("Status:"):
            active = stripped.split(":", 1)[1].strip() == "active"
            continue
        match = _RULE_LINE.match(stripped)
        if match:
            rules.append((match.group("to"), match.group("action"), match.group("source")))
    return active, rules


def parse_ufw_added(text: str) -> List[Tuple[str, str, str]]:
    """
    Parse ``ufw show added``, which lists user rules whether or not ufw is active.

    Returns:
        [(to, action, from), ...] in the same shape as :func:`parse_ufw_status`
    """
    rules = []
    for line in text.splitlines():
        match = _ADDED_LINE.match(line.strip())
        if not match:
            continue
        port = match.group("port") or match.group("bare")
        proto = match.group("proto") or match.group("bare_proto")
        source = match.group("source") or "any"
        to = f"{port}/{proto}" if proto else port
        rules.append((to, match.group("action").upper(), "Anywhere" if source == "any" else source))
    return rules


def rule_present(rule: FirewallRule, listed: List[Tuple[str, str, str]]) -> bool:
    target = f"{rule.port}/{rule.proto}"
    return any(
        to == target and action == rule.action.upper() and source == rule.source
        for to, action, source in listed
    )


def desired_rules(cidr: str, ssh_port: int = 22) -> List[FirewallRule]:
    """SSH is rate limited; the primary media service is allowed."""
    return [
        FirewallRule("limit", ssh_port, cidr),
        FirewallRule("allow", get_service(PRIMARY_SERVICE).port, cidr),
    ]


class Firewall:
    """Converges ufw to the desired rule set and remembers what it changed."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx
        self.added: List[FirewallRule] = []
        self.enabled_by_us = False

    def active(self) -> bool:
        outcome = self.ctx.check(["ufw", "status"], stage=STAGE)
        return parse_ufw_status(outcome.stdout)[0]

    def listed(self) -> List[Tuple[str, str, str]]:
        outcome = self.ctx.check(["ufw", "show", "added"], stage=STAGE)
        return parse_ufw_added(outcome.stdout)

    def apply(self) -> None:
        install = self.ctx.install
        SystemUpdater(self.ctx).install_packages(["ufw"], stage=STAGE)
        self.ctx.check(["ufw", "default", "deny", "incoming"], stage=STAGE)
        self.ctx.check(["ufw", "default", "allow", "outgoing"], stage=STAGE)

        active, listed = self.active(), self.listed()
        for rule in desired_rules(install.cidr, self.ctx.app.SSH_PORT):
            if rule_present(rule, listed):
                logger.info(f"Firewall rule already present: {rule}")
                continue
            self.ctx.check(["ufw", rule.action, *rule.args()], stage=STAGE)
            self.added.append(rule)
            logger.info(f"Added firewall rule: {rule}")

        if not active:
            self.ctx.check(["ufw", "--force", "enable"], stage=STAGE)
            self.enabled_by_us = True

        if not self.active():
            raise ExecutionError("UFW failed to enable", command=["ufw", "status"], stage=STAGE)

    def undo(self) -> None:
        failed = []
        for rule in reversed(self.added):
            if self.ctx.run(["ufw", "delete", rule.action, *rule.args()]).ok:
                logger.info(f"Removed firewall rule: {rule}")
            else:
                failed.append(str(rule))
        self.added.clear()
        if self.enabled_by_us:
            self.ctx.run(["ufw", "--force", "disable"])
            self.enabled_by_us = False
        if failed:
            raise ExecutionError(f"Could not remove firewall rules: {', '.join(failed)}", stage=STAGE)

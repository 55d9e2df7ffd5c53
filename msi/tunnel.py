"""SSH tunnel-only user provisioning."""

import logging
import os
import shutil
from typing import List

from msi.context import RunContext
from msi.errors import ExecutionError
from msi.executor import Outcome
from msi.services import LOOPBACK, tunnel_ports
from msi.system import SystemUpdater

logger = logging.getLogger(__name__)

STAGE = "provision-tunnel-user"

DEFAULT_MOTD = (
    "Please remember to use system resources responsibly and adhere to all\n"
    "applicable policies. Unauthorized access to data is strictly prohibited.\n"
    "Thank you.\n"
)


def match_block(user: str, home: str) -> str:
    permit = " ".join(f"{LOOPBACK}:{port}" for port in tunnel_ports())
    return (
        f"Match User {user}\n"
        f"  PermitOpen {permit}\n"
        "  X11Forwarding no\n"
        "  AllowAgentForwarding no\n"
        "  ForceCommand /bin/false\n"
        f"  Banner {home}/motd\n"
        "  PasswordAuthentication yes\n"
    )


def has_match_block(text: str, user: str) -> bool:
    return any(line.strip() == f"Match User {user}" for line in text.splitlines())


def remove_match_block(text: str, user: str) -> str:
    """Drop the ``Match User`` stanza for ``user`` up to the next blank line or Match."""
    kept: List[str] = []
    skipping = False
    for line in text.splitlines(keepends=True):
        stripped = line.strip()
        if stripped == f"Match User {user}":
            skipping = True
            if kept and kept[-1].strip() == "":
                kept.pop()
            continue
        if skipping:
            if stripped == "" or stripped.startswith("Match "):
                skipping = False
                if stripped == "":
                    continue
            else:
                continue
        kept.append(line)
    return "".join(kept)


def restart_ssh(ctx: RunContext, stage: str = STAGE) -> Outcome:
    """Restart the SSH daemon, whose unit is ``ssh`` on Debian/Ubuntu and ``sshd`` elsewhere."""

    def restart() -> Outcome:
        outcome = ctx.run(["systemctl", "restart", "ssh"], retryable=True)
        if outcome.ok:
            return outcome
        return ctx.run(["systemctl", "restart", "sshd"], retryable=True)

    return ctx.retry.run(restart, description="Restarting SSH service", stage=stage)


class TunnelUser:
    """Creates the restricted port-forwarding account and its sshd stanza."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx
        self.created_user = False
        self.appended_stanza = False

    @property
    def user(self) -> str:
        return self.ctx.install.tunnel_user

    @property
    def home(self) -> str:
        return os.path.join(self.ctx.app.HOME_ROOT, self.user)

    def user_exists(self) -> bool:
        return self.ctx.run(["id", "-u", self.user]).ok

    def apply(self) -> None:
        install = self.ctx.install
        SystemUpdater(self.ctx).install_packages(["openssh-server"], stage=STAGE)

        if self.user_exists():
            logger.info(f"{self.user} already exists. Skipping useradd.")
        else:
            hashed = self.ctx.check(
                ["openssl", "passwd", "-6", "-stdin"],
                stage=STAGE,
                input=install.tunnel_password + "\n",
            ).stdout.strip()
            self.ctx.check(
                ["useradd", "-m", "-p", hashed, "-s", "/bin/false", self.user],
                stage=STAGE,
                redact=[hashed],
            )
            self.created_user = True
            logger.info(f"Created tunnel user {self.user}")

        os.makedirs(self.home, exist_ok=True)
        self.write_motd()
        self.configure_sshd()
        restart_ssh(self.ctx)

    def write_motd(self) -> None:
        motd = os.path.join(self.home, "motd")
        source = self.ctx.install.motd_path
        if source and os.path.isfile(source):
            shutil.copyfile(source, motd)
        else:
            with open(motd, "w") as f:
                f.write(DEFAULT_MOTD)
        self.ctx.check(["chown", f"{self.user}:{self.user}", motd], stage=STAGE)
        self.ctx.check(["chmod", "0755", self.home], stage=STAGE)
        self.ctx.check(["chmod", "0644", motd], stage=STAGE)

    def configure_sshd(self) -> None:
        path = self.ctx.app.SSHD_CONFIG
        with open(path) as f:
            text = f.read()
        if has_match_block(text, self.user):
            logger.info(f"sshd already has a Match block for {self.user}")
            return
        prefix = "" if text.endswith("\n") or not text else "\n"
        with open(path, "a") as f:
            f.write(f"{prefix}\n{match_block(self.user, self.home)}")
        self.appended_stanza = True

    def undo(self) -> None:
        """Drop the stanza and the user this run created, then restart ssh once."""
        restart = False
        if self.appended_stanza:
            path = self.ctx.app.SSHD_CONFIG
            with open(path) as f:
                text = f.read()
            with open(path, "w") as f:
                f.write(remove_match_block(text, self.user))
            self.appended_stanza = False
            restart = True
        try:
            if self.created_user:
                outcome = self.ctx.run(["userdel", "-r", self.user])
                if not outcome.ok and self.user_exists():
                    raise ExecutionError(
                        f"Could not remove tunnel user {self.user}",
                        command=outcome.command,
                        exit_code=outcome.exit_code,
                        stage=STAGE,
                    )
                self.created_user = False
        finally:
            if restart:
                restart_ssh(self.ctx)

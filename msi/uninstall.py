"""Remove the media stack and everything the installer created."""

import logging
import os
import shutil
from typing import List, Optional

from msi.context import RunContext
from msi.errors import SetupError
from msi.firewall import parse_ufw_added
from msi.launcher import compose_command
from msi.services import PRIMARY_SERVICE, SERVICES, get_service
from msi.tunnel import has_match_block, remove_match_block, restart_ssh
from msi.ui import print_step, print_success, print_warning

logger = logging.getLogger(__name__)

STAGE = "uninstall"


def ufw_source(source: str) -> str:
    return "any" if source.startswith("Anywhere") else source


class Uninstaller:
    """Best-effort removal; each failure is reported and the next item attempted."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx
        self.warnings: List[str] = []

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        print_warning(message)

    def stop_stack(self) -> None:
        compose_file = self.ctx.app.COMPOSE_FILE
        if not os.path.isfile(compose_file):
            return
        print_step("Stopping and removing containers")
        outcome = self.ctx.run(compose_command(compose_file, "down", "--volumes", "--remove-orphans"))
        if not outcome.ok:
            self.warn(f"docker compose down failed (code {outcome.exit_code})")

    def remove_images(self) -> None:
        print_step("Removing media stack images")
        outcome = self.ctx.run(["docker", "image", "rm", *[s.image for s in SERVICES]])
        if not outcome.ok:
            logger.info("Some stack images were not present")

    def remove_directories(self) -> None:
        srv = self.ctx.app.SRV_DIR
        if os.path.isdir(srv):
            print_step(f"Removing {srv}")
            shutil.rmtree(srv)

    def remove_firewall_rules(self) -> None:
        port = f"{get_service(PRIMARY_SERVICE).port}/tcp"
        outcome = self.ctx.run(["ufw", "show", "added"])
        if not outcome.ok:
            logger.info("ufw not available; no firewall rules to remove")
            return
        for to, action, source in parse_ufw_added(outcome.stdout):
            if to != port:
                continue
            port_num, proto = port.split("/")
            cmd = ["ufw", "delete", action.lower(), "from", ufw_source(source),
                   "to", "any", "port", port_num, "proto", proto]
            if self.ctx.run(cmd).ok:
                print_success(f"Removed firewall rule {action} {port} from {source}")
            else:
                self.warn(f"Could not remove firewall rule {action} {port} from {source}")

    def remove_tunnel_user(self, user: str) -> None:
        print_step(f"Removing tunnel user {user}")
        outcome = self.ctx.run(["userdel", "-r", user])
        if not outcome.ok:
            self.warn(f"User {user} not found or could not be removed")

        path = self.ctx.app.SSHD_CONFIG
        if not os.path.isfile(path):
            return
        with open(path) as f:
            text = f.read()
        if has_match_block(text, user):
            with open(path, "w") as f:
                f.write(remove_match_block(text, user))
            try:
                restart_ssh(self.ctx, stage=STAGE)
            except SetupError as e:
                self.warn(f"Could not restart ssh: {e}")

    def remove_last_run(self) -> None:
        if os.path.exists(self.ctx.app.LAST_RUN_FILE):
            os.remove(self.ctx.app.LAST_RUN_FILE)

    def run(self, tunnel_user: Optional[str] = None) -> List[str]:
        self.stop_stack()
        self.remove_images()
        self.remove_directories()
        self.remove_firewall_rules()
        if tunnel_user:
            self.remove_tunnel_user(tunnel_user)
        self.remove_last_run()
        print_success("Uninstall complete. System cleaned up.")
        return self.warnings

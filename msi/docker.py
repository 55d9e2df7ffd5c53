"""Docker Engine and Compose plugin installation from Docker's apt repository."""

import logging
import os
from typing import Dict, List, Optional

from msi.context import RunContext
from msi.preflight import read_os_release
from msi.system import SystemUpdater

logger = logging.getLogger(__name__)

STAGE = "install-docker"

DOCKER_PACKAGES = [
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
]
DOCKER_REPO = "https://download.docker.com/linux"


def compose_available(ctx: RunContext) -> bool:
    return ctx.run(["docker", "compose", "version"]).ok


def source_line(arch: str, distro: str, codename: str, keyring: str) -> str:
    return f"deb [arch={arch} signed-by={keyring}] {DOCKER_REPO}/{distro} {codename} stable\n"


class DockerInstaller:
    """Installs docker-ce when ``docker compose`` is not already usable."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx
        self.written: List[str] = []
        self.replaced_source: Optional[str] = None

    @property
    def keyring(self) -> str:
        return os.path.join(self.ctx.app.APT_KEYRING_DIR, "docker.asc")

    @property
    def source_list(self) -> str:
        return os.path.join(self.ctx.app.APT_SOURCES_DIR, "docker.list")

    def distribution(self) -> Dict[str, str]:
        info = read_os_release(self.ctx.app.OS_RELEASE)
        distro = info.get("ID", "debian")
        if distro not in ("debian", "ubuntu"):
            distro = "ubuntu" if "ubuntu" in info.get("ID_LIKE", "") else "debian"
        codename = info.get("VERSION_CODENAME") or info.get("UBUNTU_CODENAME", "")
        return {"distro": distro, "codename": codename}

    def apply(self) -> None:
        if self.ctx.options.skip_docker:
            logger.info("Docker installation skipped (--skip-docker)")
            return
        if compose_available(self.ctx):
            logger.info("Docker and the compose plugin are already installed")
            return

        dist = self.distribution()
        os.makedirs(self.ctx.app.APT_KEYRING_DIR, mode=0o755, exist_ok=True)

        if not os.path.exists(self.keyring):
            self.ctx.retried(
                ["curl", "-fsSL", f"{DOCKER_REPO}/{dist['distro']}/gpg", "-o", self.keyring],
                description="Downloading Docker signing key",
                stage=STAGE,
            )
            self.written.append(self.keyring)
        self.ctx.check(["chmod", "a+r", self.keyring], stage=STAGE)

        arch = self.ctx.check(["dpkg", "--print-architecture"], stage=STAGE).stdout.strip()
        line = source_line(arch, dist["distro"], dist["codename"], self.keyring)
        existing = ""
        if os.path.exists(self.source_list):
            with open(self.source_list) as f:
                existing = f.read()
        if existing != line:
            os.makedirs(self.ctx.app.APT_SOURCES_DIR, exist_ok=True)
            with open(self.source_list, "w") as f:
                f.write(line)
            if existing:
                self.replaced_source = existing
            else:
                self.written.append(self.source_list)

        updater = SystemUpdater(self.ctx)
        self.ctx.apt("update", stage=STAGE)
        updater.install_packages(DOCKER_PACKAGES, stage=STAGE)
        self.ctx.retried(
            ["systemctl", "enable", "--now", "docker"],
            description="Enabling Docker service",
            stage=STAGE,
        )
        logger.info("Docker installed")

    def undo(self) -> None:
        """Remove or restore the apt source and key this run touched; packages stay installed."""
        if self.replaced_source is not None:
            with open(self.source_list, "w") as f:
                f.write(self.replaced_source)
            self.replaced_source = None
            logger.info(f"Restored {self.source_list}")
        for path in reversed(self.written):
            if os.path.exists(path):
                os.remove(path)
                logger.info(f"Removed {path}")
        self.written.clear()

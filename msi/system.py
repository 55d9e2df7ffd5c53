"""Package manager operations."""

import logging
from typing import Sequence

from msi.context import RunContext

logger = logging.getLogger(__name__)


class SystemUpdater:
    """apt-get wrappers; every call goes through the retry controller."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx

    def update_system(self, stage: str = "update-system") -> None:
        self.ctx.apt("update", stage=stage)
        self.ctx.apt("upgrade", "-y", stage=stage)
        logger.info("System packages updated")

    def autoremove(self, stage: str = "autoremove") -> None:
        self.ctx.apt("autoremove", "--purge", "-y", stage=stage)

    def install_packages(self, packages: Sequence[str], stage: str) -> None:
        self.ctx.apt("install", "-y", *packages, stage=stage)
        logger.info(f"Installed packages: {', '.join(packages)}")

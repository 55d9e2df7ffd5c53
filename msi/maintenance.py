"""Host resource readings and cleanup used by the update sequence."""

import logging
import os
import shutil
from typing import List, Optional, Sequence

from msi.context import APT_ENV, RunContext

logger = logging.getLogger(__name__)

CLEANUP_COMMANDS: List[List[str]] = [
    ["docker", "container", "prune", "-f", "--filter", "until=168h"],
    ["docker", "volume", "prune", "-f", "--filter", "all=true"],
    ["docker", "image", "prune", "-f"],
    ["docker", "builder", "prune", "-f", "--keep-storage", "10gb"],
    ["find", "/var/log", "-type", "f", "(", "-name", "*.gz", "-o", "-name", "*.old", ")", "-mtime", "+7", "-delete"],
    ["find", "/tmp", "-type", "f", "-atime", "+7", "-delete"],
    ["journalctl", "--vacuum-time=7d", "--vacuum-size=1G"],
    ["apt-get", "clean"],
    ["apt-get", "autoremove", "-y"],
]


def available_memory_mb(meminfo: str = "/proc/meminfo") -> Optional[int]:
    """MemAvailable in MB, or None when it cannot be read."""
    try:
        with open(meminfo) as f:
            for line in f:
                if line.startswith("MemAvailable:"):
                    return int(line.split()[1]) // 1024
    except (OSError, ValueError, IndexError):
        return None
    return None


def load_per_core() -> Optional[float]:
    try:
        load_1min = os.getloadavg()[0]
    except OSError:
        return None
    return load_1min / (os.cpu_count() or 1)


class ResourceCleaner:
    """Best-effort cleanup: every failure is counted and logged, never raised."""

    def __init__(self, ctx: RunContext, commands: Sequence[Sequence[str]] = CLEANUP_COMMANDS) -> None:
        self.ctx = ctx
        self.commands = [list(cmd) for cmd in commands]

    def remove_dangling_volumes(self) -> int:
        """Remove volumes no container references; returns 1 on failure."""
        if shutil.which("docker") is None:
            return 0
        listing = self.ctx.run(["docker", "volume", "ls", "-q", "--filter", "dangling=true"])
        if not listing.ok:
            return 1
        volumes = listing.stdout.split()
        if not volumes:
            return 0
        if not self.ctx.run(["docker", "volume", "rm", *volumes]).ok:
            logger.warning(f"Could not remove dangling volumes: {' '.join(volumes)}")
            return 1
        logger.info(f"Removed {len(volumes)} dangling volume(s)")
        return 0

    def run(self) -> int:
        failures = 0
        for cmd in self.commands:
            if shutil.which(cmd[0]) is None:
                logger.debug(f"Skipping cleanup, {cmd[0]} not installed")
                continue
            outcome = self.ctx.run(cmd, env=APT_ENV if cmd[0] == "apt-get" else None)
            if not outcome.ok:
                failures += 1
                logger.warning(f"Cleanup command failed (code {outcome.exit_code}): {' '.join(cmd)}")
        failures += self.remove_dangling_volumes()
        if failures:
            logger.warning(f"Resource cleanup finished with {failures} failure(s)")
        else:
            logger.info("Resource cleanup completed")
        return failures

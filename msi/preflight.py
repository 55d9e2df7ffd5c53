"""Environment and prerequisite validation."""

import logging
import os
import shutil
import tarfile
from typing import Dict, Iterable, List

from msi.context import RunContext
from msi.errors import (
    ConfigurationError,
    DependencyError,
    FilesystemError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)

SUPPORTED_OS = ("debian", "ubuntu")


def read_os_release(path: str = "/etc/os-release") -> Dict[str, str]:
    """Parse an os-release file into a dict; empty if it does not exist."""
    info: Dict[str, str] = {}
    if not os.path.isfile(path):
        return info
    with open(path) as f:
        for line in f:
            if "=" in line and not line.lstrip().startswith("#"):
                k, v = line.strip().split("=", 1)
                info[k] = v.strip('"').strip("'")
    return info


def is_supported_os(info: Dict[str, str]) -> bool:
    if info.get("ID") in SUPPORTED_OS:
        return True
    return any(family in info.get("ID_LIKE", "").split() for family in SUPPORTED_OS)


def free_space_mb(path: str) -> float:
    """Free space on the filesystem holding ``path`` (or its nearest parent)."""
    current = path
    while not os.path.exists(current):
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return shutil.disk_usage(current).free / (1024 * 1024)


class PreflightChecker:
    """Preflight checks to ensure the host can take the installation."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx

    def check_root(self) -> None:
        """
        Ensure the process runs as root.

        Raises:
            PermissionDeniedError: If not running as root
        """
        if os.geteuid() != 0:
            raise PermissionDeniedError(
                "This command must be run as root. Use sudo.", stage="preflight"
            )
        logger.info("Root privileges confirmed.")

    def check_os_version(self) -> Dict[str, str]:
        info = read_os_release(self.ctx.app.OS_RELEASE)
        if not info:
            raise DependencyError(
                f"This installer requires a system with {self.ctx.app.OS_RELEASE}",
                stage="preflight",
            )
        if not is_supported_os(info):
            raise DependencyError(
                f"Unsupported OS '{info.get('ID', 'unknown')}': only Debian/Ubuntu systems are supported",
                stage="preflight",
            )
        logger.info(f"Detected OS: {info.get('ID')} {info.get('VERSION_ID', 'unknown')}")
        return info

    def check_commands(self, commands: Iterable[str]) -> None:
        missing: List[str] = [cmd for cmd in commands if shutil.which(cmd) is None]
        if missing:
            raise DependencyError(
                f"Required commands not installed: {', '.join(missing)}", stage="preflight"
            )
        logger.info("All essential commands are available")

    def check_openssl(self) -> None:
        outcome = self.ctx.run(["openssl", "passwd", "-6", "-stdin"], input="test\n")
        if not outcome.ok:
            raise DependencyError(
                "OpenSSL does not support -6 option for password hashing",
                command=outcome.command,
                exit_code=outcome.exit_code,
                stage="preflight",
            )

    def check_disk_space(self, path: str, minimum_mb: int) -> float:
        available = free_space_mb(path)
        if available < minimum_mb:
            raise FilesystemError(
                f"Low disk space: {available:.0f}MB available on {path} "
                f"(minimum {minimum_mb}MB required)",
                stage="preflight",
            )
        logger.info(f"Disk space: {available:.0f} MB available on {path}")
        return available

    def check_overlay_support(self) -> bool:
        """Docker's overlay2 storage driver needs overlay in the kernel."""
        path = self.ctx.app.PROC_FILESYSTEMS
        if not os.path.isfile(path):
            return True
        with open(path) as f:
            supported = any(line.split()[-1] == "overlay" for line in f if line.strip())
        if not supported:
            logger.warning("Kernel does not list overlay filesystem support; Docker may fall back to vfs")
        return supported

    def check_restore_archive(self, path: str) -> None:
        if not os.path.isfile(path) or not tarfile.is_tarfile(path):
            raise ConfigurationError(f"Restore archive '{path}' is not a readable tar archive", stage="preflight")

    def run_install_checks(self) -> Dict[str, str]:
        """All checks required before an installation touches the host."""
        app = self.ctx.app
        self.check_commands(app.REQUIRED_COMMANDS)
        self.check_root()
        info = self.check_os_version()
        self.check_openssl()
        self.check_disk_space(app.SRV_DIR, app.MIN_INSTALL_SPACE_MB)
        self.check_overlay_support()
        if self.ctx.options.skip_docker and shutil.which("docker") is None:
            raise DependencyError("--skip-docker given but docker is not installed", stage="preflight")
        if self.ctx.options.restore:
            self.check_restore_archive(self.ctx.options.restore)
        return info

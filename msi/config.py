"""Configuration & constants."""

import os
import socket
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from msi import __version__
from msi.errors import ConfigurationError


def _env_flag(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() not in ("0", "false", "no", "off")


@dataclass
class AppConfig:
    """Global application configuration: paths, thresholds and tunables."""

    # Application info
    VERSION: str = __version__
    APP_NAME: str = "MSI"
    APP_SUBTITLE: str = "Media Server Installer"
    HOSTNAME: str = field(default_factory=socket.gethostname)

    # Media stack layout
    SRV_DIR: str = "/srv/media"
    CONTAINER_DIR: str = ""
    LIBRARY_DIR: str = ""
    COMPOSE_FILE: str = ""

    # Logs and state
    LOG_DIR: str = "/var/log/msi"
    LOG_FILE: str = ""
    AUDIT_LOG: str = ""
    LAST_RUN_FILE: str = "/var/log/media-maintenance-last-run.log"
    MAX_LOG_SIZE: int = 10 * 1024 * 1024  # 10MB
    BACKUP_DIR: str = "/var/backups/msi"

    # Host files
    SSHD_CONFIG: str = "/etc/ssh/sshd_config"
    HOME_ROOT: str = "/home"
    OS_RELEASE: str = "/etc/os-release"
    ZONEINFO_DIR: str = "/usr/share/zoneinfo"
    PROC_FILESYSTEMS: str = "/proc/filesystems"
    PROC_MEMINFO: str = "/proc/meminfo"
    APT_KEYRING_DIR: str = "/etc/apt/keyrings"
    APT_SOURCES_DIR: str = "/etc/apt/sources.list.d"

    # Operation settings
    COMMAND_TIMEOUT: int = 900  # seconds
    MAX_RETRIES: int = 3
    RETRY_DELAY: float = 5.0
    HEALTH_ATTEMPTS: int = 12
    HEALTH_DELAY: float = 5.0
    STOP_TIMEOUT: int = 30
    MAX_BACKUPS: int = 5

    # System requirements
    MIN_INSTALL_SPACE_MB: int = 2000
    MIN_DISK_SPACE_MB: int = 5120
    MIN_MEMORY_MB: int = 1024
    CRITICAL_LOAD: float = 0.9

    # Environment overrides
    LOG_LEVEL: str = "INFO"
    FORCE_UPDATE: bool = False

    # Firewall
    SSH_PORT: int = 22
    REQUIRED_COMMANDS: List[str] = field(
        default_factory=lambda: ["apt-get", "curl", "openssl", "systemctl"]
    )

    def __post_init__(self) -> None:
        if not self.CONTAINER_DIR:
            self.CONTAINER_DIR = os.path.join(self.SRV_DIR, "containers")
        if not self.LIBRARY_DIR:
            self.LIBRARY_DIR = os.path.join(self.SRV_DIR, "library")
        if not self.COMPOSE_FILE:
            self.COMPOSE_FILE = os.path.join(self.CONTAINER_DIR, "docker-compose.yml")
        if not self.LOG_FILE:
            self.LOG_FILE = os.path.join(self.LOG_DIR, "msi.log")
        if not self.AUDIT_LOG:
            self.AUDIT_LOG = os.path.join(self.LOG_DIR, "transactions.log")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "AppConfig":
        """
        Build a configuration honouring LOG_LEVEL, FORCE_UPDATE and MSI_SRV_DIR.

        Args:
            environ: Mapping to read from (defaults to os.environ)
            **overrides: Explicit field values, which win over the environment

        Returns:
            AppConfig instance
        """
        env = os.environ if environ is None else environ
        values: Dict[str, object] = {}
        if env.get("LOG_LEVEL"):
            values["LOG_LEVEL"] = env["LOG_LEVEL"]
        if "FORCE_UPDATE" in env:
            values["FORCE_UPDATE"] = _env_flag(env.get("FORCE_UPDATE"))
        if env.get("MSI_SRV_DIR"):
            values["SRV_DIR"] = env["MSI_SRV_DIR"]
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class InstallationConfig:
    """Validated user-supplied installation parameters."""

    cidr: str
    docker_user: str
    timezone: str
    tunnel_user: str
    tunnel_password: str = field(repr=False)
    motd_path: str = ""

    def validate(self, app: AppConfig) -> "InstallationConfig":
        """
        Run every field validator.

        Raises:
            ConfigurationError: listing every field that failed
        """
        from msi import validators

        problems = validators.validate_installation(self, app)
        if problems:
            raise ConfigurationError(
                "Invalid configuration: " + "; ".join(problems), stage="configuration"
            )
        return self

    def summary(self) -> Dict[str, str]:
        return {
            "IP CIDR": self.cidr,
            "Docker user": self.docker_user,
            "Timezone": self.timezone,
            "Tunnel user": self.tunnel_user,
            "MOTD path": self.motd_path or "(default notice)",
        }

"""Field validators for installation values."""

import ipaddress
import os
import pwd
import re
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from msi.config import AppConfig, InstallationConfig

USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*[$]?$")
MAX_USERNAME_LENGTH = 32
MIN_PASSWORD_LENGTH = 6


def is_valid_cidr(value: str) -> bool:
    """A network in CIDR notation with an explicit prefix length."""
    if "/" not in value:
        return False
    try:
        ipaddress.ip_network(value.strip(), strict=False)
    except ValueError:
        return False
    return True


def is_valid_username(value: str) -> bool:
    return len(value) <= MAX_USERNAME_LENGTH and bool(USERNAME_PATTERN.match(value))


def user_exists(name: str) -> bool:
    try:
        pwd.getpwnam(name)
    except KeyError:
        return False
    return True


def is_valid_timezone(value: str, zoneinfo_dir: str = "/usr/share/zoneinfo") -> bool:
    """An IANA zone name with a compiled zone file on this host."""
    if not value or value.startswith("/") or ".." in value.split("/"):
        return False
    return os.path.isfile(os.path.join(zoneinfo_dir, value))


def is_valid_password(value: str) -> bool:
    return len(value) >= MIN_PASSWORD_LENGTH


def is_valid_motd_path(value: str) -> bool:
    return not value or os.path.isfile(value)


def validate_installation(config: "InstallationConfig", app: "AppConfig") -> List[str]:
    """Return a list of human readable problems; empty when everything passes."""
    problems = []
    if not is_valid_cidr(config.cidr):
        problems.append(f"invalid CIDR '{config.cidr}'")
    if not is_valid_username(config.docker_user) or not user_exists(config.docker_user):
        problems.append(f"invalid or non-existent user '{config.docker_user}'")
    if not is_valid_timezone(config.timezone, app.ZONEINFO_DIR):
        problems.append(f"invalid timezone '{config.timezone}'")
    if not is_valid_username(config.tunnel_user):
        problems.append(f"invalid tunnel username '{config.tunnel_user}'")
    if not is_valid_password(config.tunnel_password):
        problems.append(f"password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not is_valid_motd_path(config.motd_path):
        problems.append(f"MOTD file '{config.motd_path}' does not exist")
    return problems

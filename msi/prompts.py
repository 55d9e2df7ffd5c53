"""Collect InstallationConfig values interactively or from options."""

import logging
from typing import Callable, Mapping, Optional

from rich.prompt import Confirm, Prompt
from rich.table import Table

from msi import validators
from msi.config import AppConfig, InstallationConfig
from msi.errors import ConfigurationError
from msi.ui import NordColors, console, print_error

logger = logging.getLogger(__name__)

# field name -> (prompt label, option name, environment variable)
FIELDS = {
    "cidr": ("IP CIDR allowed to reach SSH and Jellyfin (e.g. 192.168.1.0/24)", "--cidr", "MSI_CIDR"),
    "docker_user": ("Existing user to own the media stack", "--docker-user", "MSI_DOCKER_USER"),
    "timezone": ("Timezone (e.g. Europe/London)", "--timezone", "MSI_TIMEZONE"),
    "tunnel_user": ("SSH tunnel username", "--tunnel-user", "MSI_TUNNEL_USER"),
    "tunnel_password": ("SSH tunnel password", "--tunnel-password", "MSI_TUNNEL_PASSWORD"),
    "motd_path": ("Custom MOTD file (leave empty for the default notice)", "--motd-path", "MSI_MOTD_PATH"),
}


def field_validator(name: str, app: AppConfig) -> Callable[[str], bool]:
    if name == "cidr":
        return validators.is_valid_cidr
    if name == "docker_user":
        return lambda v: validators.is_valid_username(v) and validators.user_exists(v)
    if name == "timezone":
        return lambda v: validators.is_valid_timezone(v, app.ZONEINFO_DIR)
    if name == "tunnel_user":
        return validators.is_valid_username
    if name == "tunnel_password":
        return validators.is_valid_password
    return validators.is_valid_motd_path


def ask(
    label: str,
    validator: Callable[[str], bool],
    default: Optional[str] = None,
    password: bool = False,
) -> str:
    """Prompt until ``validator`` accepts the answer."""
    kwargs = {} if default is None else {"default": default}
    while True:
        value = Prompt.ask(f"[bold]{label}[/]", password=password, console=console, **kwargs)
        value = (value or "").strip()
        if validator(value):
            return value
        print_error(f"Invalid value: {value if not password else '***'}")


def show_summary(install: InstallationConfig) -> None:
    table = Table(title="Installation Summary", border_style=NordColors.FROST_3, show_header=False)
    table.add_column("Setting", style=f"bold {NordColors.FROST_2}")
    table.add_column("Value", style=NordColors.SNOW_STORM_1)
    for key, value in install.summary().items():
        table.add_row(key, value)
    console.print(table)


def interactive_config(app: AppConfig, defaults: Optional[Mapping[str, Optional[str]]] = None) -> InstallationConfig:
    """
    Ask for every value, re-prompting until each passes its validator, then
    show a summary and ask for confirmation.

    Raises:
        ConfigurationError: If the user declines the summary
    """
    defaults = defaults or {}
    values = {}
    for name, (label, _, _) in FIELDS.items():
        if name == "tunnel_password":
            while True:
                first = ask(label, field_validator(name, app), password=True)
                second = Prompt.ask("[bold]Confirm password[/]", password=True, console=console)
                if first == second:
                    values[name] = first
                    break
                print_error("Passwords do not match")
        else:
            default = defaults.get(name) or ("" if name == "motd_path" else None)
            values[name] = ask(label, field_validator(name, app), default=default)

    install = InstallationConfig(**values)
    show_summary(install)
    if not Confirm.ask("Proceed with installation?", default=False, console=console):
        raise ConfigurationError("Installation cancelled by user", stage="configuration")
    return install


def unattended_config(values: Mapping[str, Optional[str]], app: AppConfig) -> InstallationConfig:
    """
    Build the configuration from options/environment without prompting.

    Raises:
        ConfigurationError: If a required value is missing or any value is invalid
    """
    missing = [
        f"{option} ({env})"
        for name, (_, option, env) in FIELDS.items()
        if name != "motd_path" and not values.get(name)
    ]
    if missing:
        raise ConfigurationError(
            f"Unattended mode requires: {', '.join(missing)}", stage="configuration"
        )
    install = InstallationConfig(
        cidr=values["cidr"].strip(),
        docker_user=values["docker_user"].strip(),
        timezone=values["timezone"].strip(),
        tunnel_user=values["tunnel_user"].strip(),
        tunnel_password=values["tunnel_password"],
        motd_path=(values.get("motd_path") or "").strip(),
    )
    return install.validate(app)

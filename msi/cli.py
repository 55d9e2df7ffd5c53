"""Command line entry point: ``msi install``, ``msi update``, ``msi uninstall``."""

import logging
import signal
import sys
import time
from typing import Any, Callable, Dict, Optional

import click
from rich.prompt import Confirm, Prompt
from rich.traceback import install as install_rich_traceback

from msi import __version__
from msi.config import AppConfig
from msi.context import RunContext, RunOptions
from msi.errors import SetupError
from msi.log import setup_logging
from msi.preflight import PreflightChecker
from msi.prompts import interactive_config, unattended_config
from msi.sequencer import InstallationSequencer, RunResult, report_abort
from msi.ui import NordColors, console, create_header, print_error, print_message, print_warning
from msi.uninstall import Uninstaller
from msi.update import UpdateSequencer

install_rich_traceback(show_locals=False)

logger = logging.getLogger("msi")


def signal_handler(signum: int, frame: Optional[Any]) -> None:
    """
    Turn a termination signal into SystemExit so open transactions and
    progress indicators unwind through their context managers.
    """
    try:
        sig_name = signal.Signals(signum).name
    except ValueError:
        sig_name = f"signal {signum}"
    console.print()
    print_message(f"Process interrupted by {sig_name}", NordColors.YELLOW, "⚠")
    logger.error(f"Interrupted by {sig_name}. Exiting.")
    sys.exit(128 + signum)


def install_signal_handlers() -> None:
    for sig in (signal.SIGTERM, signal.SIGHUP):
        try:
            signal.signal(sig, signal_handler)
        except (AttributeError, ValueError):
            pass


def prepare(state: Dict[str, Any], debug: bool) -> RunContext:
    """Logging, banner and the run context shared by every subcommand."""
    app: AppConfig = state["app"]
    setup_logging(app, debug)
    console.print(create_header(app.APP_NAME, app.APP_SUBTITLE, app.VERSION))
    return RunContext.create(
        app,
        state.get("options") or RunOptions(debug=debug),
        runner=state.get("runner"),
        sleep=state.get("sleep", time.sleep),
    )


def guarded(run: Callable[[], int]) -> None:
    """Run a subcommand body and exit with its status."""
    try:
        code = run()
    except KeyboardInterrupt:
        print_warning("Operation interrupted by user.")
        sys.exit(130)
    except Exception as e:
        print_error(f"Unhandled error: {e}")
        logger.exception("Unhandled error")
        sys.exit(1)
    sys.exit(code)


@click.group()
@click.version_option(version=__version__, prog_name="msi")
@click.pass_context
def main(ctx: click.Context) -> None:
    """Media Server Installer: Jellyfin and companions on Docker Compose."""
    state = ctx.ensure_object(dict)
    state.setdefault("app", AppConfig.from_env())
    install_signal_handlers()


@main.command()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--backup", is_flag=True, help="Archive existing container configuration first")
@click.option("--restore", type=click.Path(), default=None, help="Restore container configuration from FILE")
@click.option("--skip-docker", is_flag=True, help="Use the Docker installation already on this host")
@click.option("--unattended", is_flag=True, help="Run without prompts; values come from options or MSI_* variables")
@click.option("--cidr", envvar="MSI_CIDR", default=None, help="Network allowed to reach SSH and Jellyfin")
@click.option("--docker-user", envvar="MSI_DOCKER_USER", default=None, help="Existing user owning the stack")
@click.option("--timezone", envvar="MSI_TIMEZONE", default=None, help="Container timezone, e.g. Europe/London")
@click.option("--tunnel-user", envvar="MSI_TUNNEL_USER", default=None, help="SSH tunnel-only username")
@click.option("--tunnel-password", envvar="MSI_TUNNEL_PASSWORD", default=None, help="SSH tunnel user password")
@click.option("--motd-path", envvar="MSI_MOTD_PATH", default=None, help="Banner shown to the tunnel user")
@click.pass_obj
def install(
    state: Dict[str, Any],
    debug: bool,
    backup: bool,
    restore: Optional[str],
    skip_docker: bool,
    unattended: bool,
    cidr: Optional[str],
    docker_user: Optional[str],
    timezone: Optional[str],
    tunnel_user: Optional[str],
    tunnel_password: Optional[str],
    motd_path: Optional[str],
) -> None:
    """Install and start the media stack."""
    state["options"] = RunOptions(
        debug=debug, backup=backup, restore=restore, skip_docker=skip_docker, unattended=unattended
    )
    values = {
        "cidr": cidr,
        "docker_user": docker_user,
        "timezone": timezone,
        "tunnel_user": tunnel_user,
        "tunnel_password": tunnel_password,
        "motd_path": motd_path,
    }

    def config_source(run_ctx: RunContext):
        if unattended:
            return unattended_config(values, run_ctx.app)
        return interactive_config(run_ctx.app, values)

    def body() -> int:
        run_ctx = prepare(state, debug)
        result: RunResult = InstallationSequencer(run_ctx, config_source).run()
        return result.exit_code

    guarded(body)


@main.command()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--no-backup", is_flag=True, help="Skip the configuration snapshot before updating")
@click.pass_obj
def update(state: Dict[str, Any], debug: bool, no_backup: bool) -> None:
    """Update packages and containers (FORCE_UPDATE=1 bypasses the health gates)."""

    def body() -> int:
        run_ctx = prepare(state, debug)
        return UpdateSequencer(run_ctx, backup_config=not no_backup).run().exit_code

    guarded(body)


@main.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.option("--tunnel-user", envvar="MSI_TUNNEL_USER", default=None, help="Tunnel user to remove")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_obj
def uninstall(state: Dict[str, Any], yes: bool, tunnel_user: Optional[str], debug: bool) -> None:
    """Remove containers, configuration, firewall rules and optionally the tunnel user."""

    def body() -> int:
        run_ctx = prepare(state, debug)
        try:
            PreflightChecker(run_ctx).check_root()
        except SetupError as e:
            return report_abort(run_ctx, e, None)

        user = tunnel_user
        if not yes:
            console.print(
                f"[{NordColors.RED}]WARNING: This will REMOVE all media server containers, "
                "config, users and firewall rules installed by msi![/]"
            )
            if not Confirm.ask("Are you sure you want to continue?", default=False, console=console):
                print_warning("Uninstall cancelled")
                return 1
            if user is None and Confirm.ask(
                "Remove SSH tunnel user created by installer?", default=False, console=console
            ):
                user = Prompt.ask("Enter tunnel username to remove", console=console).strip() or None

        Uninstaller(run_ctx).run(user)
        return 0

    guarded(body)


if __name__ == "__main__":
    main()

"""
Installation sequencer.

Runs the ten install stages in order. Preflight and configuration fail
fast with nothing to undo; the mutating stages run as Steps of a single
Transaction and are rolled back together; health verification after the
commit only warns.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

from rich.markup import escape

from msi import backup, docker, firewall, launcher, layout, tunnel
from msi.config import InstallationConfig
from msi.context import RunContext
from msi.errors import ExecutionError, FilesystemError, SetupError
from msi.health import HealthChecker, HealthReport
from msi.preflight import PreflightChecker
from msi.services import LOOPBACK, tunnel_ports
from msi.system import SystemUpdater
from msi.transaction import RollbackResult, Step, Transaction
from msi.ui import (
    NordColors,
    console,
    print_error,
    print_section,
    print_step,
    print_success,
    print_warning,
    status_report,
)

logger = logging.getLogger(__name__)

ConfigSource = Callable[[RunContext], InstallationConfig]


class SequencerState(Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class RunResult:
    state: SequencerState
    exit_code: int = 0
    error: Optional[SetupError] = None
    rollback: Optional[RollbackResult] = None
    health: Optional[HealthReport] = None

    @property
    def ok(self) -> bool:
        return self.state is SequencerState.COMPLETED


def as_setup_error(exc: Exception, stage: Optional[str] = None) -> SetupError:
    """Tag an unexpected exception raised inside a stage."""
    if isinstance(exc, SetupError):
        return exc
    if isinstance(exc, OSError):
        return FilesystemError(str(exc), stage=stage)
    return ExecutionError(str(exc) or type(exc).__name__, stage=stage)


def run_steps(ctx: RunContext, txn: Transaction, steps: Iterable[Step]) -> None:
    """Run each step of an open transaction under its own progress indicator."""
    for step in steps:
        with ctx.indicator(step.description):
            txn.run_step(step)


def report_abort(ctx: RunContext, error: SetupError, rollback: Optional[RollbackResult]) -> int:
    """Print the failure summary and return the process exit code."""
    ctx.record_error(str(error))
    if rollback is not None:
        for name, reason in rollback.failed:
            ctx.record_error(f"compensation for {name} failed: {reason}")

    print_error(str(error))
    if error.command_line:
        console.print(f"  Command:   [command]{escape(error.command_line)}[/command]", soft_wrap=True)
    if error.exit_code is not None:
        console.print(f"  Exit code: {error.exit_code}")
    if rollback is not None:
        print_warning(
            f"Compensating actions were attempted for {len(rollback.undone) + len(rollback.failed)} "
            f"step(s); {len(rollback.failed)} could not be undone"
        )
    console.print(f"[{NordColors.RED}]{len(ctx.errors)} error(s) recorded during this run[/]")
    return error.process_exit_code


def tunnel_command(user: str, host: str, ports: Optional[List[int]] = None) -> str:
    forwards = " ".join(
        f"-L {LOOPBACK}:{port}:{LOOPBACK}:{port}" for port in (ports or tunnel_ports())
    )
    return f"ssh -N {forwards} {user}@{host}"


class InstallationSequencer:
    """Drives one installation run from preflight to health verification."""

    def __init__(self, ctx: RunContext, config_source: ConfigSource) -> None:
        self.ctx = ctx
        self.config_source = config_source

    # ------------------------------------------------------------
    # Stages 1-2: fail fast, nothing to undo
    # ------------------------------------------------------------
    def preflight(self) -> None:
        print_section("Preflight checks")
        with self.ctx.indicator("Checking system requirements"):
            PreflightChecker(self.ctx).run_install_checks()

    def configure(self) -> InstallationConfig:
        print_section("Configuration")
        install = self.config_source(self.ctx).validate(self.ctx.app)
        self.ctx.install = install
        logger.info(f"Installation configuration: {install.summary()}")
        return install

    def backup_existing(self) -> None:
        container_dir = self.ctx.app.CONTAINER_DIR
        try:
            path = backup.create_backup(container_dir, self.ctx.app.BACKUP_DIR)
            print_success(f"Configuration backed up to {path}")
        except SetupError as e:
            print_warning(f"Backup skipped: {e}")

    # ------------------------------------------------------------
    # Stages 3-9: one transaction
    # ------------------------------------------------------------
    def steps(self) -> List[Step]:
        ctx = self.ctx
        updater = SystemUpdater(ctx)
        fw = firewall.Firewall(ctx)
        tunnel_user = tunnel.TunnelUser(ctx)
        installer = docker.DockerInstaller(ctx)
        directories = layout.DirectoryLayout(ctx)
        compose = layout.ComposeWriter(ctx)
        services = launcher.ServiceLauncher(ctx)

        steps = [
            Step("update-system", updater.update_system, description="Updating system packages"),
            Step(firewall.STAGE, fw.apply, fw.undo, description="Configuring firewall"),
            Step(tunnel.STAGE, tunnel_user.apply, tunnel_user.undo, description="Provisioning SSH tunnel user"),
            Step(docker.STAGE, installer.apply, installer.undo, description="Installing Docker"),
            Step(layout.DIRECTORIES_STAGE, directories.apply, directories.undo, description="Creating media directories"),
        ]
        if ctx.options.restore:
            archive = ctx.options.restore
            steps.append(
                Step(
                    backup.RESTORE_STAGE,
                    lambda: backup.restore_backup(archive, ctx.app.CONTAINER_DIR),
                    description="Restoring configuration",
                )
            )
        steps.extend(
            [
                Step(layout.COMPOSE_STAGE, compose.apply, compose.undo, description="Writing compose document"),
                Step(launcher.STAGE, services.apply, services.undo, description="Launching services"),
            ]
        )
        return steps

    # ------------------------------------------------------------
    # Stage 10: warn only
    # ------------------------------------------------------------
    def verify_health(self) -> HealthReport:
        print_step("Verifying service health")
        report = HealthChecker(self.ctx).wait()
        if report.ok:
            print_success(f"All {len(report.healthy)} services are healthy")
        else:
            for name, state in report.unhealthy.items():
                print_warning(f"{name} is not healthy yet: {state}")
            print_warning("Some containers have not reported healthy; check 'docker ps' shortly")
        return report

    def print_summary(self) -> None:
        install = self.ctx.install
        print_section("Installation complete")
        console.print("Create an SSH tunnel to reach the admin services:")
        console.print(
            f"[command]{escape(tunnel_command(install.tunnel_user, self.ctx.app.HOSTNAME))}[/command]",
            soft_wrap=True,
        )
        console.print("Run [command]msi update[/command] periodically to keep the stack current.")

    def run(self) -> RunResult:
        try:
            self.preflight()
            self.configure()
        except SetupError as e:
            return RunResult(SequencerState.ABORTED, report_abort(self.ctx, e, None), e)

        if self.ctx.options.backup:
            self.backup_existing()

        print_section("Installing media stack")
        txn = Transaction(self.ctx.audit)
        self.ctx.transaction = txn
        try:
            with txn:
                run_steps(self.ctx, txn, self.steps())
        except Exception as e:
            failed = txn.failed_step
            error = as_setup_error(e, failed.name if failed else None)
            status_report(txn.steps, "Installation Status")
            code = report_abort(self.ctx, error, txn.rollback_result)
            return RunResult(SequencerState.ABORTED, code, error, txn.rollback_result)

        health = self.verify_health()
        self.print_summary()
        return RunResult(SequencerState.COMPLETED, 0, health=health)

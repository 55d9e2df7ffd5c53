"""
Update sequence for an installed media stack.

Checks the host, gates on disk space and system health (both overridable
with FORCE_UPDATE), then updates packages and containers inside one
Transaction so a failed restart brings the previous stack back up.
"""

import datetime
import logging
import os
import shutil
import stat
from typing import List, Optional

from msi import backup
from msi.context import RunContext
from msi.errors import DependencyError, ExecutionError, FilesystemError, SetupError
from msi.health import HealthChecker
from msi.launcher import compose_command
from msi.maintenance import ResourceCleaner, available_memory_mb, load_per_core
from msi.preflight import PreflightChecker, free_space_mb
from msi.sequencer import RunResult, SequencerState, as_setup_error, report_abort, run_steps
from msi.services import PRIMARY_SERVICE
from msi.system import SystemUpdater
from msi.transaction import Step, Transaction
from msi.ui import console, print_section, print_step, print_success, print_warning, status_report

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
SNAPSHOT_PATTERN = "backup_*.tar.gz"


def humanize_delta(seconds: float) -> str:
    """``42 seconds ago``, ``1 minute ago``, ``3 hours ago``, ``2 days ago``."""
    seconds = max(0, int(seconds))
    for limit, size, unit in ((60, 1, "second"), (3600, 60, "minute"), (86400, 3600, "hour")):
        if seconds < limit:
            value = seconds // size
            break
    else:
        value, unit = seconds // 86400, "day"
    if value != 1:
        unit += "s"
    return f"{value} {unit} ago"


def read_last_run(path: str) -> Optional[datetime.datetime]:
    if not os.path.isfile(path):
        return None
    with open(path) as f:
        text = f.read().strip()
    try:
        return datetime.datetime.strptime(text, TIMESTAMP_FORMAT)
    except ValueError:
        logger.warning(f"Unreadable last-run timestamp in {path}: {text!r}")
        return None


def write_last_run(path: str, now: Optional[datetime.datetime] = None) -> None:
    """Replace the last-run file atomically with mode 644."""
    now = now or datetime.datetime.now()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = f"{path}.tmp"
    try:
        with open(tmp, "w") as f:
            f.write(now.strftime(TIMESTAMP_FORMAT) + "\n")
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise FilesystemError(f"Failed to update last run file {path}: {e}", stage="record-last-run")


class UpdateSequencer:
    """Drives one ``msi update`` run."""

    def __init__(self, ctx: RunContext, backup_config: bool = True) -> None:
        self.ctx = ctx
        self.backup_config = backup_config

    def compose(self, *args: str) -> List[str]:
        return compose_command(self.ctx.app.COMPOSE_FILE, *args)

    # ------------------------------------------------------------
    # Checks before the transaction
    # ------------------------------------------------------------
    def preflight(self) -> None:
        app = self.ctx.app
        checker = PreflightChecker(self.ctx)
        checker.check_commands(["apt-get", "docker"])
        checker.check_root()
        checker.check_os_version()

        outcome = self.ctx.run(["systemctl", "is-active", "--quiet", "docker"])
        if not outcome.ok:
            raise DependencyError(
                "Docker service is not running",
                command=outcome.command,
                exit_code=outcome.exit_code,
                stage="preflight",
            )
        outcome = self.ctx.run(["docker", "compose", "version"])
        if not outcome.ok:
            raise DependencyError("The docker compose plugin is not installed", stage="preflight")

        if not os.path.isdir(app.CONTAINER_DIR):
            raise FilesystemError(f"Container directory {app.CONTAINER_DIR} not found", stage="preflight")
        if not os.path.isfile(app.COMPOSE_FILE):
            raise FilesystemError(f"Compose file {app.COMPOSE_FILE} not found", stage="preflight")

    def report_last_run(self, now: Optional[datetime.datetime] = None) -> Optional[str]:
        last = read_last_run(self.ctx.app.LAST_RUN_FILE)
        if last is None:
            print_success("No previous run recorded")
            return None
        delta = humanize_delta(((now or datetime.datetime.now()) - last).total_seconds())
        print_success(f"Last run: {last.strftime(TIMESTAMP_FORMAT)} ({delta})")
        return delta

    def verify_compose(self) -> None:
        path = self.ctx.app.COMPOSE_FILE
        mode = stat.S_IMODE(os.stat(path).st_mode)
        if mode != 0o644:
            print_warning(f"Incorrect permissions on {path} (found: {mode:o}, expected: 644)")
            os.chmod(path, 0o644)
        self.ctx.run(self.compose("config", "--quiet")).raise_for_status(
            "verify-compose", f"Invalid compose configuration in {path}"
        )
        print_success("Compose configuration verified")

    def disk_gate(self) -> None:
        app = self.ctx.app
        available = free_space_mb(app.CONTAINER_DIR)
        if available >= app.MIN_DISK_SPACE_MB:
            return
        print_warning(f"Low disk space on {app.CONTAINER_DIR}: {available:.0f}MB available")
        ResourceCleaner(self.ctx).run()
        available = free_space_mb(app.CONTAINER_DIR)
        if available >= app.MIN_DISK_SPACE_MB:
            return
        message = (
            f"Disk space still critically low after cleanup: {available:.0f}MB available "
            f"(minimum {app.MIN_DISK_SPACE_MB}MB required)"
        )
        if app.FORCE_UPDATE:
            print_warning(f"{message}; proceeding because FORCE_UPDATE is set")
            return
        raise FilesystemError(f"{message}. Free space or set FORCE_UPDATE=1 to override.", stage="disk-gate")

    def cleanup(self, label: str) -> None:
        print_step(label)
        failures = ResourceCleaner(self.ctx).run()
        if failures:
            print_warning(f"{label} finished with {failures} failure(s)")
        else:
            print_success(f"{label} completed")

    def health_problems(self) -> List[str]:
        app = self.ctx.app
        problems = []

        memory = available_memory_mb(app.PROC_MEMINFO)
        if memory is not None and memory < app.MIN_MEMORY_MB:
            problems.append(f"low memory: {memory}MB available (minimum {app.MIN_MEMORY_MB}MB)")

        load = load_per_core()
        if load is not None and load > app.CRITICAL_LOAD:
            print_warning(f"High system load: {load:.2f} per core")

        if not self.ctx.run(["docker", "info"]).ok:
            problems.append("docker is not responding")

        total = self.ctx.run(self.compose("ps", "--services"))
        running = self.ctx.run(self.compose("ps", "--services", "--filter", "status=running"))
        if total.ok and running.ok:
            n_total = len(total.stdout.split())
            n_running = len(running.stdout.split())
            if n_running < n_total:
                problems.append(f"not all containers are running ({n_running}/{n_total})")
        else:
            problems.append("could not list compose services")
        return problems

    def health_gate(self) -> None:
        problems = self.health_problems()
        if not problems:
            print_success("System health check passed")
            return
        message = "System health check failed: " + "; ".join(problems)
        if self.ctx.app.FORCE_UPDATE:
            print_warning(f"{message}; proceeding because FORCE_UPDATE is set")
            return
        raise ExecutionError(f"{message}. Set FORCE_UPDATE=1 to override.", stage="health-gate")

    # ------------------------------------------------------------
    # Transaction steps
    # ------------------------------------------------------------
    def backup_configuration(self) -> None:
        """Snapshot the primary service's /config from inside its container."""
        ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        target = f"/config/backup_{ts}.tar.gz"
        outcome = self.ctx.run(
            self.compose("exec", "-T", PRIMARY_SERVICE, "tar", "czf", target, "/config")
        )
        if outcome.ok:
            print_success(f"Backup created at {target}")
        else:
            print_warning(f"Failed to create backup snapshot (code {outcome.exit_code})")

    def pull_images(self) -> None:
        self.ctx.retried(self.compose("pull"), description="Pulling latest images", stage="pull-images")

    def stop_containers(self) -> None:
        self.ctx.retried(
            self.compose("stop", "--timeout", str(self.ctx.app.STOP_TIMEOUT)),
            description="Stopping containers",
            stage="stop-containers",
        )

    def restart_previous(self) -> None:
        self.ctx.check(self.compose("up", "-d"), stage="stop-containers")

    def start_containers(self) -> None:
        self.ctx.retried(
            self.compose("up", "-d", "--remove-orphans"),
            description="Starting containers",
            stage="start-containers",
        )

    def prune_images(self) -> None:
        outcome = self.ctx.run(["docker", "image", "prune", "-f"])
        if not outcome.ok:
            print_warning("Failed to clean up old images")

    def steps(self) -> List[Step]:
        updater = SystemUpdater(self.ctx)
        steps = [
            Step("update-system", updater.update_system, description="Updating system packages"),
            Step("autoremove", updater.autoremove, description="Removing unused packages"),
        ]
        if self.backup_config:
            steps.append(Step("backup-configuration", self.backup_configuration, description="Backing up configuration"))
        steps.extend(
            [
                Step("pull-images", self.pull_images, description="Pulling latest images"),
                Step("stop-containers", self.stop_containers, self.restart_previous, description="Stopping containers"),
                Step("start-containers", self.start_containers, description="Starting containers"),
                Step("prune-images", self.prune_images, description="Pruning old images"),
            ]
        )
        return steps

    # ------------------------------------------------------------
    # After the commit
    # ------------------------------------------------------------
    def finish(self) -> None:
        app = self.ctx.app
        print_step("Verifying services")
        report = HealthChecker(self.ctx).wait()
        if not report.ok:
            print_warning(
                "Post-update health check shows issues: "
                + ", ".join(f"{name} {state}" for name, state in report.unhealthy.items())
            )

        snapshots = os.path.join(app.CONTAINER_DIR, PRIMARY_SERVICE, "config")
        try:
            backup.prune_backups(snapshots, app.MAX_BACKUPS, SNAPSHOT_PATTERN)
        except OSError as e:
            print_warning(f"Failed to clean old backups: {e}")

        self.cleanup("Final resource cleanup")

        usage = shutil.disk_usage(app.CONTAINER_DIR)
        console.print(
            f"Final disk usage: {usage.used // (1024 ** 3)}G of {usage.total // (1024 ** 3)}G "
            f"({usage.used * 100 // max(usage.total, 1)}% used)"
        )
        write_last_run(app.LAST_RUN_FILE)
        print_success("Media stack maintenance completed successfully")

    def run(self) -> RunResult:
        try:
            print_section("Preflight checks")
            with self.ctx.indicator("Checking host"):
                self.preflight()
            self.report_last_run()
            self.verify_compose()
            self.disk_gate()
            self.cleanup("Initial resource cleanup")
            self.health_gate()
        except SetupError as e:
            return RunResult(SequencerState.ABORTED, report_abort(self.ctx, e, None), e)

        print_section("Updating media stack")
        txn = Transaction(self.ctx.audit)
        self.ctx.transaction = txn
        try:
            with txn:
                run_steps(self.ctx, txn, self.steps())
        except Exception as e:
            failed = txn.failed_step
            error = as_setup_error(e, failed.name if failed else None)
            status_report(txn.steps, "Update Status")
            code = report_abort(self.ctx, error, txn.rollback_result)
            return RunResult(SequencerState.ABORTED, code, error, txn.rollback_result)

        try:
            self.finish()
        except SetupError as e:
            return RunResult(SequencerState.ABORTED, report_abort(self.ctx, e, None), e)
        return RunResult(SequencerState.COMPLETED)

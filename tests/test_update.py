"""Tests for the update sequence."""

import datetime
import os
import stat

import pytest

from msi import update
from msi.audit import ROLLBACK, STEP
from msi.errors import FilesystemError
from msi.sequencer import SequencerState
from msi.update import UpdateSequencer, humanize_delta, read_last_run, write_last_run

UPDATE_STEPS = [
    "update-system",
    "autoremove",
    "backup-configuration",
    "pull-images",
    "stop-containers",
    "start-containers",
    "prune-images",
]


@pytest.fixture
def installed(app, host, root_host):
    """A host where a previous install left a running stack behind."""
    os.makedirs(app.CONTAINER_DIR)
    with open(app.COMPOSE_FILE, "w") as f:
        f.write("services: {}\n")
    os.chmod(app.COMPOSE_FILE, 0o644)
    host.docker_installed = True
    host.stack_running = True
    return app


@pytest.fixture
def run_update(make_ctx, installed):
    def runner(backup_config=True):
        ctx = make_ctx()
        return ctx, UpdateSequencer(ctx, backup_config=backup_config).run()

    return runner


class TestHumanizeDelta:
    @pytest.mark.parametrize(
        "seconds, text",
        [
            (0, "0 seconds ago"),
            (1, "1 second ago"),
            (59, "59 seconds ago"),
            (60, "1 minute ago"),
            (7200, "2 hours ago"),
            (3 * 3600 + 59, "3 hours ago"),
            (86400, "1 day ago"),
            (10 * 86400, "10 days ago"),
        ],
    )
    def test_units(self, seconds, text):
        assert humanize_delta(seconds) == text


class TestLastRunFile:
    """Timestamp persistence."""

    def test_write_is_atomic_with_mode_644(self, tmp_path):
        path = str(tmp_path / "log" / "last-run.log")
        when = datetime.datetime(2024, 5, 1, 12, 30, 0)
        write_last_run(path, when)

        assert read_last_run(path) == when
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o644
        assert not os.path.exists(path + ".tmp")

    def test_missing_or_garbled(self, tmp_path):
        assert read_last_run(str(tmp_path / "missing")) is None
        garbled = tmp_path / "garbled"
        garbled.write_text("yesterday-ish")
        assert read_last_run(str(garbled)) is None


class TestUpdateRun:
    """Full update runs against the fake host."""

    def test_successful_update(self, run_update, host, app, capsys):
        write_last_run(app.LAST_RUN_FILE, datetime.datetime.now() - datetime.timedelta(hours=3, minutes=5))
        ctx, result = run_update()

        assert result.state is SequencerState.COMPLETED
        assert ctx.audit.records(STEP) == UPDATE_STEPS
        assert host.ran("stop --timeout 30")
        assert host.ran("exec -T jellyfin tar czf")
        assert host.stack_running
        assert read_last_run(app.LAST_RUN_FILE).date() == datetime.date.today()
        assert "(3 hours ago)" in capsys.readouterr().out

    def test_no_backup(self, run_update, host):
        ctx, result = run_update(backup_config=False)
        assert result.exit_code == 0
        assert "backup-configuration" not in ctx.audit.records(STEP)
        assert host.ran("exec -T jellyfin") == []

    def test_backup_failure_is_only_a_warning(self, run_update, host):
        host.fail("exec -T jellyfin", 1)
        _, result = run_update()
        assert result.exit_code == 0

    def test_resources_cleaned_before_and_after(self, run_update, host):
        ctx, _ = run_update()
        prunes = [i for i, cmd in enumerate(host.calls) if cmd[:3] == ["docker", "volume", "prune"]]
        first_step = host.calls.index(host.ran("apt-get update")[0])

        assert len(prunes) == 2
        assert prunes[0] < first_step < prunes[1]
        assert len(host.ran("apt-get autoremove -y")) == 2

    def test_cleanup_failures_do_not_abort(self, run_update, host):
        host.fail("journalctl", 1)
        host.fail("volume prune", 1)
        _, result = run_update()
        assert result.exit_code == 0

    def test_compose_permissions_are_reset(self, run_update, app):
        os.chmod(app.COMPOSE_FILE, 0o600)
        run_update()
        assert stat.S_IMODE(os.stat(app.COMPOSE_FILE).st_mode) == 0o644

    def test_invalid_compose_aborts(self, run_update, host):
        host.fail("config --quiet", 15)
        ctx, result = run_update()
        assert result.exit_code == 15
        assert ctx.audit.records(STEP) == []

    def test_failed_start_restarts_previous_stack(self, run_update, host, app):
        host.fail("up -d --remove-orphans", 1)
        ctx, result = run_update()

        assert result.state is SequencerState.ABORTED
        assert ctx.audit.records(ROLLBACK) == ["start-containers"]
        assert host.stack_running
        assert host.calls[-1][-2:] == ["up", "-d"]
        assert not os.path.exists(app.LAST_RUN_FILE)


class TestUpdateGates:
    """Disk and health gates run before the transaction."""

    def test_low_disk_aborts_before_any_step(self, run_update, host, app, monkeypatch):
        app.MIN_DISK_SPACE_MB = 5120
        monkeypatch.setattr(update, "free_space_mb", lambda path: 100.0)
        ctx, result = run_update()

        assert result.state is SequencerState.ABORTED
        assert result.exit_code == 6
        assert isinstance(result.error, FilesystemError)
        assert ctx.audit.records(STEP) == []
        assert host.ran("pull") == []
        assert host.ran("stop --timeout") == []

    def test_force_update_overrides_low_disk(self, run_update, app, monkeypatch):
        app.MIN_DISK_SPACE_MB = 5120
        app.FORCE_UPDATE = True
        monkeypatch.setattr(update, "free_space_mb", lambda path: 100.0)
        ctx, result = run_update()

        assert result.exit_code == 0
        assert ctx.audit.records(STEP) == UPDATE_STEPS

    def test_cleanup_that_frees_space_lets_update_continue(self, run_update, app, monkeypatch):
        app.MIN_DISK_SPACE_MB = 5120
        readings = iter([100.0, 9000.0])
        monkeypatch.setattr(update, "free_space_mb", lambda path: next(readings))
        _, result = run_update()
        assert result.exit_code == 0

    def test_stopped_containers_fail_health_gate(self, run_update, host):
        host.stack_running = False
        ctx, result = run_update()

        assert result.state is SequencerState.ABORTED
        assert "not all containers are running (0/7)" in str(result.error)
        assert ctx.audit.records(STEP) == []

    def test_low_memory_fails_health_gate(self, run_update, app):
        app.MIN_MEMORY_MB = 8192
        _, result = run_update()
        assert "low memory" in str(result.error)

    def test_docker_service_down(self, run_update, host):
        host.fail("is-active --quiet docker", 3)
        _, result = run_update()
        assert result.exit_code == 3

    def test_missing_compose_file(self, run_update, app):
        os.remove(app.COMPOSE_FILE)
        _, result = run_update()
        assert isinstance(result.error, FilesystemError)

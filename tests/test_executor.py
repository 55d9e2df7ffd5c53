"""Tests for command execution and outcome classification."""

import subprocess
from unittest.mock import MagicMock

import pytest

from msi.audit import EXEC, AuditLog
from msi.errors import DependencyError, ExecutionError, NetworkError, PermissionDeniedError
from msi.executor import CommandExecutor, Outcome, OutcomeKind, classify_exit_code


@pytest.fixture
def audit(tmp_path):
    return AuditLog(str(tmp_path / "audit.log"))


def completed(code=0, stdout="", stderr=""):
    return subprocess.CompletedProcess([], code, stdout, stderr)


class TestClassifyExitCode:
    """Exit code to outcome mapping."""

    def test_zero_is_success(self):
        assert classify_exit_code(0) is OutcomeKind.SUCCESS

    @pytest.mark.parametrize("code", [126, 127, 13])
    def test_missing_command_and_permission_are_always_fatal(self, code):
        """Even a retryable call cannot make these transient."""
        assert classify_exit_code(code, retryable=True) is OutcomeKind.FATAL

    @pytest.mark.parametrize("code", [6, 7, 28, 35, 56, 124])
    def test_connectivity_and_timeouts_are_transient(self, code):
        assert classify_exit_code(code) is OutcomeKind.TRANSIENT

    def test_other_codes_depend_on_retryable(self):
        assert classify_exit_code(100) is OutcomeKind.FATAL
        assert classify_exit_code(100, retryable=True) is OutcomeKind.TRANSIENT


class TestCommandExecutor:
    """CommandExecutor.run behaviour."""

    def test_captures_output_and_records_exec_line(self, audit):
        runner = MagicMock(return_value=completed(0, "hello\n"))
        outcome = CommandExecutor(audit, runner=runner).run(["echo", "hello"])

        assert outcome.ok
        assert outcome.stdout == "hello\n"
        kwargs = runner.call_args.kwargs
        assert kwargs["capture_output"] is True
        assert kwargs["check"] is False
        assert audit.records(EXEC) == ["echo hello -> success (0)"]

    def test_missing_binary_maps_to_127(self, audit):
        runner = MagicMock(side_effect=FileNotFoundError("no such file"))
        outcome = CommandExecutor(audit, runner=runner).run(["nope"])

        assert outcome.exit_code == 127
        assert outcome.kind is OutcomeKind.FATAL

    def test_timeout_maps_to_124_and_is_transient(self, audit):
        runner = MagicMock(side_effect=subprocess.TimeoutExpired(["sleep"], 1))
        outcome = CommandExecutor(audit, runner=runner, timeout=1).run(["sleep", "10"])

        assert outcome.exit_code == 124
        assert outcome.transient

    def test_redacted_arguments_never_reach_the_audit_log(self, audit):
        runner = MagicMock(return_value=completed(0))
        CommandExecutor(audit, runner=runner).run(["useradd", "-p", "s3cret", "bob"], redact=["s3cret"])

        line = audit.records(EXEC)[0]
        assert "s3cret" not in line
        assert "***" in line

    def test_env_is_merged_into_the_environment(self, audit, monkeypatch):
        monkeypatch.setenv("KEEP_ME", "1")
        runner = MagicMock(return_value=completed(0))
        CommandExecutor(audit, runner=runner).run(["apt-get", "update"], env={"DEBIAN_FRONTEND": "noninteractive"})

        env = runner.call_args.kwargs["env"]
        assert env["DEBIAN_FRONTEND"] == "noninteractive"
        assert env["KEEP_ME"] == "1"

    def test_check_raises_tagged_error(self, audit):
        runner = MagicMock(return_value=completed(1, stderr="boom"))
        with pytest.raises(ExecutionError) as exc:
            CommandExecutor(audit, runner=runner).check(["false"], stage="demo")

        assert exc.value.stage == "demo"
        assert exc.value.exit_code == 1
        assert "boom" in str(exc.value)


class TestOutcomeError:
    """Outcome.error picks the error class from the exit code."""

    @pytest.mark.parametrize(
        "code, cls",
        [(127, DependencyError), (13, PermissionDeniedError), (28, NetworkError), (2, ExecutionError)],
    )
    def test_error_class(self, code, cls):
        outcome = Outcome(["cmd"], OutcomeKind.FATAL, code)
        assert isinstance(outcome.error("stage"), cls)

    def test_process_exit_code_prefers_command_code(self):
        error = Outcome(["apt-get"], OutcomeKind.FATAL, 100).error()
        assert error.process_exit_code == 100

    def test_stderr_excerpt_is_bounded(self):
        outcome = Outcome(["cmd"], OutcomeKind.FATAL, 1, stderr="x" * 5000)
        assert len(outcome.stderr_excerpt) == 400

"""Tests for configuration, validators and error exit codes."""

import pytest

from msi import validators
from msi.config import AppConfig, InstallationConfig
from msi.errors import (
    ConfigurationError,
    DependencyError,
    ExecutionError,
    FilesystemError,
    NetworkError,
    PermissionDeniedError,
)


class TestAppConfig:
    """Derived paths and environment overrides."""

    def test_derived_paths(self):
        app = AppConfig(SRV_DIR="/data/media", LOG_DIR="/tmp/msi-logs")
        assert app.CONTAINER_DIR == "/data/media/containers"
        assert app.LIBRARY_DIR == "/data/media/library"
        assert app.COMPOSE_FILE == "/data/media/containers/docker-compose.yml"
        assert app.AUDIT_LOG == "/tmp/msi-logs/transactions.log"

    def test_from_env(self):
        app = AppConfig.from_env({"LOG_LEVEL": "DEBUG", "FORCE_UPDATE": "1", "MSI_SRV_DIR": "/x"})
        assert app.LOG_LEVEL == "DEBUG"
        assert app.FORCE_UPDATE is True
        assert app.SRV_DIR == "/x"

    @pytest.mark.parametrize("value", ["", "0", "false", "no"])
    def test_force_update_falsy_values(self, value):
        assert AppConfig.from_env({"FORCE_UPDATE": value}).FORCE_UPDATE is False

    def test_overrides_win(self):
        app = AppConfig.from_env({"LOG_LEVEL": "DEBUG"}, LOG_LEVEL="ERROR")
        assert app.LOG_LEVEL == "ERROR"


class TestValidators:
    """Individual field validators."""

    @pytest.mark.parametrize("value", ["10.0.0.0/24", "192.168.1.10/32", "fd00::/64"])
    def test_valid_cidr(self, value):
        assert validators.is_valid_cidr(value)

    @pytest.mark.parametrize("value", ["10.0.0.0", "10.0.0.0/33", "not-a-network/8", ""])
    def test_invalid_cidr(self, value):
        assert not validators.is_valid_cidr(value)

    @pytest.mark.parametrize("value", ["tuser", "_svc", "media-user", "machine$"])
    def test_valid_username(self, value):
        assert validators.is_valid_username(value)

    @pytest.mark.parametrize("value", ["Tuser", "1user", "bad user", "x" * 33, ""])
    def test_invalid_username(self, value):
        assert not validators.is_valid_username(value)

    def test_timezone(self, app):
        assert validators.is_valid_timezone("Europe/London", app.ZONEINFO_DIR)
        assert not validators.is_valid_timezone("Europe/Atlantis", app.ZONEINFO_DIR)
        assert not validators.is_valid_timezone("../etc/passwd", app.ZONEINFO_DIR)

    def test_password_length(self):
        assert validators.is_valid_password("secret1")
        assert not validators.is_valid_password("short")

    def test_motd_path(self, tmp_path):
        motd = tmp_path / "motd"
        motd.write_text("hi")
        assert validators.is_valid_motd_path("")
        assert validators.is_valid_motd_path(str(motd))
        assert not validators.is_valid_motd_path(str(tmp_path / "missing"))


class TestInstallationConfig:
    """Whole-record validation."""

    def test_valid_config_passes(self, app, install_config, root_host):
        assert install_config.validate(app) is install_config

    def test_every_problem_is_reported(self, app, root_host):
        bad = InstallationConfig("10.0.0.0", "nobody", "Mars/Base", "Bad User", "123")
        with pytest.raises(ConfigurationError) as exc:
            bad.validate(app)

        message = str(exc.value)
        assert exc.value.stage == "configuration"
        for fragment in ("CIDR", "nobody", "timezone", "tunnel username", "password"):
            assert fragment in message

    def test_password_not_in_repr(self, install_config):
        assert "secret1" not in repr(install_config)


class TestErrorExitCodes:
    """Fixed exit code per error kind when no command code is known."""

    @pytest.mark.parametrize(
        "cls, code",
        [
            (ExecutionError, 1),
            (ConfigurationError, 2),
            (DependencyError, 3),
            (PermissionDeniedError, 4),
            (NetworkError, 5),
            (FilesystemError, 6),
        ],
    )
    def test_kind_codes(self, cls, code):
        assert cls("x").process_exit_code == code

    def test_command_code_wins(self):
        assert ExecutionError("x", exit_code=100).process_exit_code == 100

    def test_signal_killed_command(self):
        assert ExecutionError("x", exit_code=-9).process_exit_code == 137
        assert ExecutionError("x", exit_code=-15).process_exit_code == 143

    def test_str_includes_stage(self):
        assert str(FilesystemError("low disk", stage="disk-gate")) == "[disk-gate] low disk"

"""Shared fixtures: a temporary host layout and a fake command runner."""

import json
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Tuple

import pytest

from msi import validators
from msi.config import AppConfig, InstallationConfig
from msi.context import RunContext, RunOptions
from msi.services import SERVICES


class FakeHost:
    """
    Stands in for ``subprocess.run``. Keeps just enough state (users, ufw
    rules, docker) for the stages to observe their own effects.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.failures: Dict[str, int] = {}
        self.exact_failures: Dict[str, int] = {}
        self.users: Dict[str, int] = {"alice": 1000}
        self.ufw_active = False
        self.ufw_rules: List[Tuple[str, str, str]] = []
        self.docker_installed = False
        self.stack_running = False
        self.container_states: Dict[str, dict] = {}
        self.dangling_volumes: List[str] = []

    def fail(self, fragment: str, code: int = 1) -> None:
        """Every command whose joined form contains ``fragment`` exits ``code``."""
        self.failures[fragment] = code

    def fail_exact(self, line: str, code: int = 1) -> None:
        self.exact_failures[line] = code

    def ran(self, fragment: str) -> List[List[str]]:
        return [cmd for cmd in self.calls if fragment in " ".join(cmd)]

    def __call__(self, cmd, **kwargs) -> subprocess.CompletedProcess:
        cmd = list(cmd)
        self.calls.append(cmd)
        line = " ".join(cmd)
        if line in self.exact_failures:
            return self._result(cmd, self.exact_failures[line], stderr=f"simulated failure: {line}")
        for fragment, code in self.failures.items():
            if fragment in line:
                return self._result(cmd, code, stderr=f"simulated failure: {fragment}")
        handler = getattr(self, "_" + cmd[0].replace("-", "_"), None)
        if handler is None:
            return self._result(cmd)
        return handler(cmd)

    @staticmethod
    def _result(cmd, code: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
        return subprocess.CompletedProcess(cmd, code, stdout, stderr)

    # users
    def _id(self, cmd):
        user = cmd[-1]
        if user not in self.users:
            return self._result(cmd, 1, stderr=f"id: '{user}': no such user")
        return self._result(cmd, stdout=f"{self.users[user]}\n")

    def _openssl(self, cmd):
        return self._result(cmd, stdout="$6$salt$hashedpassword\n")

    def _useradd(self, cmd):
        user = cmd[-1]
        if user in self.users:
            return self._result(cmd, 9, stderr=f"useradd: user '{user}' already exists")
        self.users[user] = 1000 + len(self.users)
        return self._result(cmd)

    def _userdel(self, cmd):
        user = cmd[-1]
        if user not in self.users:
            return self._result(cmd, 6, stderr=f"userdel: user '{user}' does not exist")
        del self.users[user]
        return self._result(cmd)

    # firewall
    @staticmethod
    def _rule(args) -> Tuple[str, str, str]:
        action, _, source, _, _, _, port, _, proto = args
        return (f"{port}/{proto}", action.upper(), "Anywhere" if source == "any" else source)

    def ufw_status(self) -> str:
        if not self.ufw_active:
            return "Status: inactive\n"
        lines = ["Status: active", "", "To                         Action      From", "--                         ------      ----"]
        lines.extend(f"{to:<27}{action:<12}{source}" for to, action, source in self.ufw_rules)
        return "\n".join(lines) + "\n"

    def ufw_added(self) -> str:
        lines = ["Added user rules (see 'ufw status' for running firewall):"]
        for to, action, source in self.ufw_rules:
            port, proto = to.split("/")
            src = "any" if source == "Anywhere" else source
            lines.append(f"ufw {action.lower()} from {src} to any port {port} proto {proto}")
        if not self.ufw_rules:
            lines.append("(None)")
        return "\n".join(lines) + "\n"

    def _ufw(self, cmd):
        args = cmd[1:]
        if args == ["status"]:
            return self._result(cmd, stdout=self.ufw_status())
        if args == ["show", "added"]:
            return self._result(cmd, stdout=self.ufw_added())
        if args == ["--force", "enable"]:
            self.ufw_active = True
        elif args == ["--force", "disable"]:
            self.ufw_active = False
        elif args[0] == "delete":
            rule = self._rule(args[1:])
            if rule not in self.ufw_rules:
                return self._result(cmd, 1, stderr="Could not delete non-existent rule")
            self.ufw_rules.remove(rule)
        elif args[0] in ("allow", "limit", "deny"):
            rule = self._rule(args)
            if rule not in self.ufw_rules:
                self.ufw_rules.append(rule)
        return self._result(cmd)

    # packages
    def _apt_get(self, cmd):
        if "install" in cmd and "docker-ce" in cmd:
            self.docker_installed = True
        return self._result(cmd)

    def _curl(self, cmd):
        if "-o" in cmd:
            Path(cmd[cmd.index("-o") + 1]).write_text("-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
        return self._result(cmd)

    def _dpkg(self, cmd):
        return self._result(cmd, stdout="amd64\n")

    # containers
    def _docker(self, cmd):
        args = cmd[1:]
        if args[0] == "compose":
            if args[1] == "version":
                if not self.docker_installed:
                    return self._result(cmd, 127, stderr="docker: not found")
                return self._result(cmd, stdout="Docker Compose version v2.27.0\n")
            rest = args[3:] if args[1] == "-f" else args[1:]
            op = rest[0]
            if op == "ps":
                names = "\n".join(s.name for s in SERVICES) + "\n"
                if "--services" in rest:
                    if "status=running" in rest:
                        return self._result(cmd, stdout=names if self.stack_running else "")
                    return self._result(cmd, stdout=names)
                return self._result(cmd, stdout="0123abcd\n" if self.stack_running else "")
            if op == "up":
                self.stack_running = True
            elif op in ("down", "stop"):
                self.stack_running = False
            return self._result(cmd)
        if args[:2] == ["volume", "ls"]:
            return self._result(cmd, stdout="".join(f"{v}\n" for v in self.dangling_volumes))
        if args[:2] == ["volume", "rm"]:
            self.dangling_volumes = [v for v in self.dangling_volumes if v not in args[2:]]
            return self._result(cmd)
        if args[:2] == ["container", "inspect"]:
            name = args[-1]
            if not self.stack_running:
                return self._result(cmd, 1, stderr=f"Error: No such container: {name}")
            state = self.container_states.get(name, {"Status": "running", "Running": True})
            return self._result(cmd, stdout=json.dumps(state) + "\n")
        return self._result(cmd)


@pytest.fixture(autouse=True)
def restore_msi_logger():
    """setup_logging() replaces handlers and stops propagation; undo that per test."""
    logger = logging.getLogger("msi")
    handlers, propagate, level = list(logger.handlers), logger.propagate, logger.level
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = propagate
    logger.setLevel(level)


@pytest.fixture
def app(tmp_path):
    """AppConfig with every host path redirected under tmp_path."""
    etc = tmp_path / "etc"
    etc.mkdir()
    (etc / "os-release").write_text('ID=debian\nVERSION_ID="12"\nVERSION_CODENAME=bookworm\n')
    (etc / "sshd_config").write_text("Port 22\nPermitRootLogin no\n")
    zone = tmp_path / "zoneinfo" / "Europe"
    zone.mkdir(parents=True)
    (zone / "London").write_text("TZif2")
    (tmp_path / "filesystems").write_text("nodev\tsysfs\nnodev\toverlay\n")
    (tmp_path / "meminfo").write_text("MemTotal:       8000000 kB\nMemAvailable:   4000000 kB\n")

    return AppConfig(
        HOSTNAME="mediabox",
        SRV_DIR=str(tmp_path / "srv" / "media"),
        LOG_DIR=str(tmp_path / "log"),
        LAST_RUN_FILE=str(tmp_path / "log" / "media-maintenance-last-run.log"),
        BACKUP_DIR=str(tmp_path / "backups"),
        SSHD_CONFIG=str(etc / "sshd_config"),
        HOME_ROOT=str(tmp_path / "home"),
        OS_RELEASE=str(etc / "os-release"),
        ZONEINFO_DIR=str(tmp_path / "zoneinfo"),
        PROC_FILESYSTEMS=str(tmp_path / "filesystems"),
        PROC_MEMINFO=str(tmp_path / "meminfo"),
        APT_KEYRING_DIR=str(etc / "apt" / "keyrings"),
        APT_SOURCES_DIR=str(etc / "apt" / "sources.list.d"),
        MIN_INSTALL_SPACE_MB=0,
        MIN_DISK_SPACE_MB=0,
        MIN_MEMORY_MB=0,
        CRITICAL_LOAD=10000.0,
    )


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def sleeps():
    """Collects every delay the code under test asked to sleep for."""
    return []


@pytest.fixture
def install_config():
    return InstallationConfig(
        cidr="10.0.0.0/24",
        docker_user="alice",
        timezone="Europe/London",
        tunnel_user="tuser",
        tunnel_password="secret1",
    )


@pytest.fixture
def root_host(monkeypatch):
    """Pretend to be root on a host with every required binary and user alice."""
    monkeypatch.setattr(os, "geteuid", lambda: 0)
    monkeypatch.setattr(shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(validators, "user_exists", lambda name: name == "alice")


@pytest.fixture
def make_ctx(app, host, sleeps):
    def factory(options=None, install=None):
        ctx = RunContext.create(app, options or RunOptions(), runner=host, sleep=sleeps.append)
        ctx.install = install
        return ctx

    return factory

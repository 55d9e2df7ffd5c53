"""On-disk layout of the media stack: directories and the compose document."""

import logging
import os
import shutil
from typing import List, Optional, Tuple

from msi.compose import render_compose
from msi.context import RunContext
from msi.errors import ConfigurationError
from msi.services import SERVICES

logger = logging.getLogger(__name__)

DIRECTORIES_STAGE = "create-directories"
COMPOSE_STAGE = "write-compose"

LIBRARY_SUBDIRS = ("movies", "shows", "downloads/jdownloader-2")


def required_directories(container_dir: str, library_dir: str) -> List[str]:
    dirs = [os.path.join(container_dir, service.name, "config") for service in SERVICES]
    dirs.extend(os.path.join(library_dir, sub) for sub in LIBRARY_SUBDIRS)
    return dirs


def missing_ancestors(path: str) -> List[str]:
    """Directories that ``os.makedirs(path)`` would create, outermost first."""
    missing = []
    current = os.path.abspath(path)
    while not os.path.exists(current):
        missing.append(current)
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return list(reversed(missing))


class DirectoryLayout:
    """Creates the service config and library tree under SRV_DIR."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx
        self.created: List[str] = []

    def apply(self) -> None:
        app = self.ctx.app
        user = self.ctx.install.docker_user
        for path in required_directories(app.CONTAINER_DIR, app.LIBRARY_DIR):
            new = missing_ancestors(path)
            if not new:
                continue
            os.makedirs(path, exist_ok=True)
            self.created.extend(new)
            logger.info(f"Created {path}")

        if not self.created:
            logger.info("All media directories already exist")
        self.ctx.check(["chown", "-R", f"{user}:{user}", app.SRV_DIR], stage=DIRECTORIES_STAGE)
        self.ctx.check(["chmod", "-R", "755", app.SRV_DIR], stage=DIRECTORIES_STAGE)

    def undo(self) -> None:
        for path in reversed(self.created):
            if os.path.isdir(path):
                shutil.rmtree(path)
                logger.info(f"Removed {path}")
        self.created.clear()


def lookup_ids(ctx: RunContext, user: str, stage: str = COMPOSE_STAGE) -> Tuple[int, int]:
    """uid and gid of ``user`` as reported by ``id``."""
    uid = ctx.check(["id", "-u", user], stage=stage).stdout.strip()
    gid = ctx.check(["id", "-g", user], stage=stage).stdout.strip()
    try:
        return int(uid), int(gid)
    except ValueError:
        raise ConfigurationError(f"Could not resolve uid/gid for {user}", stage=stage)


class ComposeWriter:
    """Writes the compose document only when its content changes."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx
        self.previous: Optional[bytes] = None
        self.changed = False

    @property
    def path(self) -> str:
        return self.ctx.app.COMPOSE_FILE

    def render(self) -> str:
        install = self.ctx.install
        puid, pgid = lookup_ids(self.ctx, install.docker_user)
        return render_compose(puid, pgid, install.timezone, self.ctx.app.LIBRARY_DIR)

    def apply(self) -> None:
        user = self.ctx.install.docker_user
        content = self.render().encode("utf-8")

        current = None
        if os.path.exists(self.path):
            with open(self.path, "rb") as f:
                current = f.read()

        if current == content:
            logger.info(f"{self.path} is up to date")
        else:
            self.previous = current
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            with open(self.path, "wb") as f:
                f.write(content)
            self.changed = True
            logger.info(f"Wrote {self.path}")

        self.ctx.check(["chown", f"{user}:{user}", self.path], stage=COMPOSE_STAGE)
        self.ctx.check(["chmod", "644", self.path], stage=COMPOSE_STAGE)

    def undo(self) -> None:
        if not self.changed:
            return
        if self.previous is None:
            if os.path.exists(self.path):
                os.remove(self.path)
        else:
            with open(self.path, "wb") as f:
                f.write(self.previous)
        self.changed = False
        logger.info(f"Restored {self.path}")

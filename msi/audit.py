"""Append-only audit log of commands and transaction records."""

import datetime
import logging
import os
from typing import List, Optional

from msi.log import rotate_log

logger = logging.getLogger(__name__)

BEGIN = "BEGIN"
STEP = "STEP"
COMMIT = "COMMIT"
ROLLBACK = "ROLLBACK"
EXEC = "EXEC"


class AuditLog:
    """
    Timestamped, append-only record of a run.

    Lines look like ``2024-05-01 12:00:00 STEP install-docker``. The file is
    for audit only; nothing reads it back to resume a run.
    """

    def __init__(self, path: str, max_size: Optional[int] = None) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        if max_size:
            rotate_log(path, max_size)

    def write(self, record: str, message: str = "") -> None:
        ts = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        line = f"{ts} {record} {message}".rstrip()
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line.replace("\n", " ") + "\n")
        logger.debug(line)

    def lines(self) -> List[str]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, encoding="utf-8") as f:
            return [line.rstrip("\n") for line in f]

    def records(self, record: str) -> List[str]:
        """Messages of every line carrying the given record type."""
        found = []
        for line in self.lines():
            parts = line.split(" ", 3)
            if len(parts) >= 3 and parts[2] == record:
                found.append(parts[3] if len(parts) == 4 else "")
        return found

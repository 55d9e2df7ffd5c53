"""Configuration archives: backup before install, restore, and pruning."""

import datetime
import glob
import logging
import os
import tarfile
from typing import List, Optional

from msi.errors import ConfigurationError, FilesystemError

logger = logging.getLogger(__name__)

RESTORE_STAGE = "restore-configuration"
ARCHIVE_PREFIX = "msi-config-"
ARCHIVE_SUFFIX = ".tar.gz"


def archive_name(now: Optional[datetime.datetime] = None) -> str:
    now = now or datetime.datetime.now()
    return f"{ARCHIVE_PREFIX}{now.strftime('%Y%m%d_%H%M%S')}{ARCHIVE_SUFFIX}"


def create_backup(source_dir: str, backup_dir: str, now: Optional[datetime.datetime] = None) -> str:
    """
    Archive ``source_dir`` into ``backup_dir``.

    Returns:
        Path of the new archive

    Raises:
        FilesystemError: If the source is missing or the archive cannot be written
    """
    if not os.path.isdir(source_dir):
        raise FilesystemError(f"Nothing to back up: {source_dir} does not exist", stage="backup")
    target = os.path.join(backup_dir, archive_name(now))
    try:
        os.makedirs(backup_dir, exist_ok=True)
        with tarfile.open(target, "w:gz") as tar:
            tar.add(source_dir, arcname=".")
    except OSError as e:
        raise FilesystemError(f"Could not write backup {target}: {e}", stage="backup")
    os.chmod(target, 0o600)
    logger.info(f"Backup written to {target}")
    return target


def _inside(base: str, path: str) -> bool:
    return path == base or path.startswith(base + os.sep)


def check_members(tar: tarfile.TarFile, target_dir: str) -> List[tarfile.TarInfo]:
    """
    Validate every member of an archive against ``target_dir``.

    Raises:
        ConfigurationError: If a member would land outside the target
    """
    base = os.path.realpath(target_dir)
    members = tar.getmembers()
    for member in members:
        if os.path.isabs(member.name):
            raise ConfigurationError(f"Archive member {member.name} has an absolute path", stage=RESTORE_STAGE)
        dest = os.path.realpath(os.path.join(base, member.name))
        if not _inside(base, dest):
            raise ConfigurationError(f"Archive member {member.name} escapes {target_dir}", stage=RESTORE_STAGE)
        if member.issym() or member.islnk():
            if member.issym():
                link = os.path.join(os.path.dirname(dest), member.linkname)
            else:
                link = os.path.join(base, member.linkname)
            if os.path.isabs(member.linkname) or not _inside(base, os.path.realpath(link)):
                raise ConfigurationError(
                    f"Archive link {member.name} -> {member.linkname} escapes {target_dir}",
                    stage=RESTORE_STAGE,
                )
    return members


def restore_backup(archive: str, target_dir: str) -> int:
    """
    Extract a configuration archive into ``target_dir``.

    Returns:
        Number of members extracted
    """
    if not os.path.isfile(archive) or not tarfile.is_tarfile(archive):
        raise ConfigurationError(f"Restore archive '{archive}' is not a readable tar archive", stage=RESTORE_STAGE)
    os.makedirs(target_dir, exist_ok=True)
    with tarfile.open(archive, "r:*") as tar:
        members = check_members(tar, target_dir)
        tar.extractall(target_dir, members=members, filter="data")
    logger.info(f"Restored {len(members)} entries from {archive} into {target_dir}")
    return len(members)


def list_backups(backup_dir: str, pattern: str = f"{ARCHIVE_PREFIX}*{ARCHIVE_SUFFIX}") -> List[str]:
    """Archives in ``backup_dir``, newest first by name."""
    return sorted(glob.glob(os.path.join(backup_dir, pattern)), reverse=True)


def prune_backups(backup_dir: str, keep: int, pattern: str = f"{ARCHIVE_PREFIX}*{ARCHIVE_SUFFIX}") -> List[str]:
    """Delete all but the newest ``keep`` archives; returns what was removed."""
    removed = []
    for path in list_backups(backup_dir, pattern)[max(0, keep):]:
        os.remove(path)
        removed.append(path)
        logger.info(f"Removed old backup {path}")
    return removed

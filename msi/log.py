"""Logging setup and log rotation."""

import datetime
import gzip
import logging
import os
import shutil
from typing import Optional, Union

from rich.logging import RichHandler

from msi.config import AppConfig
from msi.ui import console

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def rotate_log(path: str, max_size: int) -> Optional[str]:
    """
    Compress a log into ``<path>.<timestamp>.gz`` and truncate it once it
    grows beyond ``max_size`` bytes.

    Returns:
        Path of the rotated archive, or None when no rotation was needed
    """
    if not os.path.exists(path) or os.path.getsize(path) <= max_size:
        return None
    ts = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
    rotated = f"{path}.{ts}.gz"
    with open(path, "rb") as fin, gzip.open(rotated, "wb") as fout:
        shutil.copyfileobj(fin, fout)
    open(path, "w").close()
    return rotated


def resolve_level(value: Union[str, int, None], default: int = logging.INFO) -> int:
    """Accept a level name ("DEBUG") or number ("10") as LOG_LEVEL does."""
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return value
    if value.strip().isdigit():
        return int(value)
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(config: AppConfig, debug: bool = False) -> logging.Logger:
    """Configure logging with a Rich console handler and file output."""
    level = logging.DEBUG if debug else resolve_level(config.LOG_LEVEL)

    logger = logging.getLogger("msi")
    logger.setLevel(min(level, logging.DEBUG))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        rich_tracebacks=True, markup=False, console=console, show_path=False
    )
    console_handler.setLevel(level if debug else max(level, logging.WARNING))
    logger.addHandler(console_handler)

    try:
        os.makedirs(os.path.dirname(config.LOG_FILE), exist_ok=True)
        rotated = rotate_log(config.LOG_FILE, config.MAX_LOG_SIZE)
        if rotated:
            console.print(f"Rotated log file to [path]{rotated}[/path]")
        file_handler = logging.FileHandler(config.LOG_FILE)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)
    except OSError as e:
        console.print(f"[warning]Could not open log file {config.LOG_FILE}: {e}[/warning]")

    logger.propagate = False
    logger.info("Logging initialized: %s", config.LOG_FILE)
    return logger

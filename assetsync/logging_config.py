"""File logging for the assetsync command line."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from assetsync import app_paths

LOG_FILE_NAME = "assetsync.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO, log_path: Optional[Path] = None) -> Path:
    """Send records at ``level`` and above to the assetsync log file.

    The file defaults to ``<app dir>/logs/assetsync.log``.  Calling this again
    for the same file only adjusts the level.
    """

    path = Path(log_path) if log_path is not None else app_paths.LOGS_DIR / LOG_FILE_NAME
    path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    target = str(path.resolve())
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        for handler in root_logger.handlers
    ):
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)

    root_logger.debug("Logging to %s", path)
    return path


__all__ = ["LOG_FILE_NAME", "LOG_FORMAT", "configure_logging"]

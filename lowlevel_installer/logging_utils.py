from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional, TextIO

LOGGER_NAME = "lowlevel_installer"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def log_path_for(command: str, log_dir: str) -> str:
    return str(Path(log_dir) / f"install-low-level-{command}.log")


def configure_logging(
    log_path: str,
    level: int = logging.INFO,
    also_console: bool = True,
    console_stream: Optional[TextIO] = None,
) -> str:
    """Configure the installer's package logger.

    The file handler goes to log_path; if that location is not writable we
    fall back to a file of the same name in the working directory. Console
    output always goes to stderr (or console_stream), never stdout, because
    stdout carries the session protocol.

    Calling this again replaces the handlers installed by the previous call.
    Returns the actual file path being used.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    for h in getattr(logger, "_installer_handlers", []):
        logger.removeHandler(h)
        h.close()

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = []

    chosen_path = log_path
    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler: logging.Handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        # Fall back to a writable location.
        chosen_path = str(Path.cwd() / Path(log_path).name)
        file_handler = logging.FileHandler(chosen_path, encoding="utf-8")
    file_handler.setFormatter(fmt)
    handlers.append(file_handler)

    if also_console:
        console = logging.StreamHandler(console_stream or sys.stderr)
        console.setFormatter(fmt)
        console.setLevel(logging.WARNING)
        handlers.append(console)

    for h in handlers:
        logger.addHandler(h)

    setattr(logger, "_installer_handlers", handlers)
    setattr(logger, "_installer_log_path", chosen_path)

    logger.info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path

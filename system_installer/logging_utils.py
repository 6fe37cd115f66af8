from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from .lib.env import PATHS
from .lib.prompt import console

DEFAULT_LOG_DIR = PATHS.log_dir

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

# Console threshold per display mode. The log file always receives DEBUG.
LOG_MODES = {
    "full": logging.DEBUG,
    "normal": logging.INFO,
    "minimal": SUCCESS,
    "quiet": logging.WARNING,
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def log_success(logger: logging.Logger, msg: str, *args: object) -> None:
    logger.log(SUCCESS, msg, *args)


def console_threshold(mode: str, level: str) -> int:
    if mode not in LOG_MODES:
        raise ValueError(f"Unknown log mode: {mode}")
    return max(LOG_MODES[mode], logging.getLevelName(level.upper()))


def _open_run_log(log_dir: str, stamp: str) -> logging.Handler:
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    path = Path(log_dir) / f"install-{stamp}.log"
    handler = logging.FileHandler(path)
    latest = Path(log_dir) / "latest.log"
    try:
        if latest.is_symlink() or latest.exists():
            latest.unlink()
        latest.symlink_to(path.name)
    except OSError:
        pass
    return handler


def configure_logging(
    log_dir: str = DEFAULT_LOG_DIR,
    *,
    mode: str = "normal",
    level: str = "INFO",
    also_console: bool = True,
) -> str:
    """Configure logging for one installer run.

    Every run gets its own file, install-<timestamp>.log, in log_dir, with
    latest.log pointing at it. If log_dir cannot be written, the file goes to
    the working directory instead and the intended location is still reported.

    Returns the actual file path being used.
    """

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Reconfiguring replaces the handlers installed by an earlier call.
    for h in getattr(root, "_system_installer_handlers", []):
        root.removeHandler(h)
        h.close()

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    stamp = time.strftime("%Y%m%d-%H%M%S")

    handlers: list[logging.Handler] = []
    file_handler: Optional[logging.Handler] = None
    try:
        file_handler = _open_run_log(log_dir, stamp)
    except OSError:
        # Fall back to a writable location.
        file_handler = _open_run_log(os.getcwd(), stamp)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    handlers.append(file_handler)
    chosen_path = str(getattr(file_handler, "baseFilename"))

    if also_console:
        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            markup=False,
            show_time=True,
            show_path=False,
        )
        rich_handler.setLevel(console_threshold(mode, level))
        handlers.append(rich_handler)

    for h in handlers:
        root.addHandler(h)

    setattr(root, "_system_installer_handlers", handlers)
    setattr(root, "_system_installer_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", log_dir, chosen_path
    )
    return chosen_path

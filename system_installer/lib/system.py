from __future__ import annotations

import getpass
import logging
import os
import pwd
from dataclasses import dataclass
from pathlib import Path

from .command import run_cmd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user: str
    home: Path


def is_root() -> bool:
    return os.geteuid() == 0


def invoking_identity() -> Identity:
    """The human behind the run: SUDO_USER when elevated through sudo."""

    user = os.environ.get("SUDO_USER") or getpass.getuser()
    try:
        home = Path(pwd.getpwnam(user).pw_dir)
    except KeyError:
        home = Path.home()
    return Identity(user=user, home=home)


def trigger_reboot(*, dry_run: bool = False) -> None:
    if dry_run:
        logger.info("[DRY RUN] Would reboot system now")
        return
    logger.info("Rebooting system now")
    run_cmd(["sync"])
    run_cmd(["reboot"])

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from ..errors import InstallerError

logger = logging.getLogger(__name__)

# Unit output goes here so it can be filtered apart from orchestrator messages.
unit_output = logging.getLogger("system_installer.unit")


class CommandError(InstallerError):
    def __init__(self, result: "CommandResult") -> None:
        detail = result.stderr.strip() or result.stdout.strip()
        super().__init__(f"{quote_argv(result.argv)} exited with {result.returncode}: {detail}")
        self.result = result


@dataclass(frozen=True)
class CommandResult:
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def quote_argv(argv: Sequence[str]) -> str:
    return shlex.join(list(argv))


def _child_env(extra: Optional[Mapping[str, str]]) -> Dict[str, str]:
    env = dict(os.environ)
    env.update(extra or {})
    return env


def run_cmd(argv: Sequence[str], *, check: bool = True, dry_run: bool = False) -> CommandResult:
    """Run a short helper command (git, sync, reboot) and capture its output.

    In dry-run mode the command is only logged. A nonzero exit raises
    CommandError unless check is false.
    """

    args = list(argv)
    if dry_run:
        logger.info("[DRY RUN] Would run: %s", quote_argv(args))
        return CommandResult(argv=args, returncode=0)

    logger.debug("Running: %s", quote_argv(args))
    proc = subprocess.run(args, capture_output=True, text=True)
    result = CommandResult(argv=args, returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
    for stream, text in (("stdout", result.stdout), ("stderr", result.stderr)):
        if text.strip():
            logger.debug("%s %s: %s", args[0], stream, text.strip())

    if check and not result.ok:
        raise CommandError(result)
    return result


def stream_cmd(argv: Sequence[str], *, env: Optional[Mapping[str, str]] = None, cwd: Optional[str] = None) -> int:
    """Run a unit program unattended, copying its merged stdout/stderr into the log.

    stdin is closed, so a program that prompts reads EOF instead of blocking
    on a question nobody sees. Undecodable bytes are replaced. The exit status
    is returned as-is.
    """

    args = list(argv)
    logger.info("Executing: %s", quote_argv(args))
    with subprocess.Popen(
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
        cwd=cwd,
        env=_child_env(env),
    ) as proc:
        for line in proc.stdout:
            unit_output.info("%s", line.rstrip("\n"))
    return proc.returncode


def attach_cmd(argv: Sequence[str], *, env: Optional[Mapping[str, str]] = None, cwd: Optional[str] = None) -> int:
    """Run a unit program on the operator's terminal.

    Output and prompts (including ones without a trailing newline) reach the
    terminal directly; only the command and its exit status go to the log.
    """

    args = list(argv)
    logger.info("Executing on terminal: %s", quote_argv(args))
    returncode = subprocess.run(args, cwd=cwd, env=_child_env(env)).returncode
    logger.info("%s exited with %d", args[-1], returncode)
    return returncode

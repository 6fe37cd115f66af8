from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .catalog import Unit, describe_unit
from .config_sync import ConfigSync
from .context import UnitContext
from .errors import InstallerError
from .lib.command import attach_cmd, stream_cmd
from .lib.prompt import confirm as ask_confirm
from .logging_utils import log_success
from .state_store import StateStore

logger = logging.getLogger(__name__)

Runner = Callable[[Unit, UnitContext], int]
Confirm = Callable[[str, bool], bool]


class UnitFailed(InstallerError):
    def __init__(self, unit: Unit, exit_code: int) -> None:
        super().__init__(f"Unit {unit.key} failed with exit code {exit_code}")
        self.phase = unit.phase
        self.unit = unit.name
        self.exit_code = exit_code


class InstallAborted(InstallerError):
    pass


class UnitStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    DECLINED = "declined"
    FAILED = "failed"


@dataclass(frozen=True)
class UnitOutcome:
    unit: Unit
    status: UnitStatus
    exit_code: Optional[int] = None
    reboot_reasons: Tuple[str, ...] = ()

    @property
    def reboot_required(self) -> bool:
        return bool(self.reboot_reasons)


@dataclass(frozen=True)
class ExecutionOptions:
    force: bool = False
    interactive: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class RebootSignals:
    """The three independent ways a unit can ask for a reboot."""

    marker_file: Path
    system_flag: Path

    def detect(self, unit: Unit) -> List[str]:
        reasons: List[str] = []
        if self.marker_file.exists():
            reasons.append(f"reboot marker file {self.marker_file}")
        if self.system_flag.exists():
            reasons.append(f"system flag {self.system_flag}")
        if unit.requires_reboot:
            reasons.append(f"{unit.key} declares a reboot")
        return reasons

    def consume(self) -> None:
        """Remove the explicit marker so that it fires once."""
        try:
            self.marker_file.unlink()
        except FileNotFoundError:
            pass


def run_unit_process(unit: Unit, ctx: UnitContext) -> int:
    # Interactive runs hand the terminal to the unit so its prompts are visible.
    run = attach_cmd if ctx.interactive else stream_cmd
    return run(unit.argv, env=ctx.to_env(), cwd=str(unit.path.parent.parent))


class UnitExecutor:
    def __init__(
        self,
        *,
        store: StateStore,
        context: UnitContext,
        signals: RebootSignals,
        options: ExecutionOptions = ExecutionOptions(),
        sync: Optional[ConfigSync] = None,
        runner: Runner = run_unit_process,
        confirm: Confirm = ask_confirm,
    ) -> None:
        self.store = store
        self.context = context
        self.signals = signals
        self.options = options
        self.sync = sync
        self.runner = runner
        self.confirm = confirm

    def _skip_completed(self, unit: Unit) -> bool:
        if self.options.force or not self.store.is_completed(unit.phase, unit.name):
            return False
        recorded = self.store.completed_digest(unit.phase, unit.name)
        if recorded and recorded != unit.digest():
            logger.warning("%s changed since it completed; use --force to run it again", unit.key)
        logger.info("Skipping %s (already completed)", unit.key)
        return True

    def _restore_configs(self, unit: Unit) -> None:
        if not unit.configs:
            return
        if self.sync is None:
            logger.warning("%s declares configs but no repository is configured", unit.key)
            return
        for category, paths in unit.configs.items():
            self.sync.restore(category, paths)

    def _adopt_configs(self, unit: Unit) -> None:
        if not unit.configs or self.sync is None:
            return
        for category, paths in unit.configs.items():
            self.sync.adopt(category, paths)

    def run_unit(self, unit: Unit) -> UnitOutcome:
        if self._skip_completed(unit):
            return UnitOutcome(unit, UnitStatus.SKIPPED)

        logger.info("Running: %s (Phase: %s)", unit.name, unit.phase)

        if self.options.interactive:
            description = describe_unit(unit)
            if description:
                logger.info("Description:\n%s", description)
            if not self.confirm("Run this unit?", True):
                logger.info("Skipping %s (user request)", unit.key)
                return UnitOutcome(unit, UnitStatus.DECLINED)

        self._restore_configs(unit)

        if self.options.dry_run:
            logger.info("[DRY RUN] Would execute: %s", " ".join(unit.argv))
            return UnitOutcome(unit, UnitStatus.COMPLETED, reboot_reasons=tuple(self.signals.detect(unit)))

        try:
            exit_code = self.runner(unit, self.context.for_unit(unit.phase, unit.name))
        except OSError as e:
            logger.error("Cannot start %s: %s", unit.key, e)
            exit_code = 127

        if exit_code != 0:
            logger.error("Unit %s failed with exit code %d", unit.key, exit_code)
            if not self.options.interactive:
                logger.error("Aborting installation due to unit failure")
                raise UnitFailed(unit, exit_code)
            if not self.confirm("Continue despite error?", False):
                raise InstallAborted(f"Installation aborted at user request after {unit.key} failed")
            return UnitOutcome(unit, UnitStatus.FAILED, exit_code=exit_code)

        self.store.mark_completed(unit.phase, unit.name, digest=unit.digest())
        self._adopt_configs(unit)
        log_success(logger, "Unit %s completed successfully", unit.key)

        reasons = self.signals.detect(unit)
        for reason in reasons:
            logger.info("Reboot requested: %s", reason)
        return UnitOutcome(unit, UnitStatus.COMPLETED, exit_code=0, reboot_reasons=tuple(reasons))

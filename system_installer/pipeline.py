from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .catalog import Unit
from .executor import UnitExecutor, UnitOutcome, UnitStatus
from .lib.prompt import confirm as ask_confirm
from .lib.system import trigger_reboot
from .logging_utils import log_success
from .state_store import StateStore, UnitRef

logger = logging.getLogger(__name__)

COMPLETED = "completed"
REBOOT_PENDING = "reboot_pending"


@dataclass
class PipelineResult:
    status: str
    ran: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    declined: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    resume_at: Optional[UnitRef] = None
    elapsed: float = 0.0

    def record(self, outcome: UnitOutcome) -> None:
        bucket = {
            UnitStatus.COMPLETED: self.ran,
            UnitStatus.SKIPPED: self.skipped,
            UnitStatus.DECLINED: self.declined,
            UnitStatus.FAILED: self.failed,
        }[outcome.status]
        bucket.append(outcome.unit.key)


@dataclass(frozen=True)
class RebootPolicy:
    auto_reboot: bool = False
    interactive: bool = False
    dry_run: bool = False
    confirm: Callable[[str, bool], bool] = ask_confirm
    reboot: Callable[..., None] = trigger_reboot

    def handle(self, reason: str) -> None:
        logger.warning("System reboot required: %s", reason)
        if self.dry_run:
            logger.info("[DRY RUN] Would reboot system now")
            return
        if self.auto_reboot or (self.interactive and self.confirm("Reboot now?", True)):
            self.reboot()
            return
        logger.warning("Please reboot the system when convenient using 'sudo reboot'")
        logger.info("After reboot, run the installer again to continue installation")


def format_elapsed(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 3600}h {(total % 3600) // 60}m {total % 60}s"


def _resume_index(store: StateStore, work: Sequence[Unit]) -> int:
    marker = store.get_resume_marker()
    if marker is None:
        return 0
    store.clear_resume_marker()
    for i, unit in enumerate(work):
        if unit.ref == marker:
            logger.info("Resuming installation after reboot")
            logger.info("Continuing with phase %s, unit %s", marker.phase, marker.unit)
            return i
    logger.warning("Resume point %s is not in the run list; starting from the beginning", marker)
    return 0


def run_pipeline(
    *,
    work: Sequence[Unit],
    store: StateStore,
    executor: UnitExecutor,
    reboot: RebootPolicy,
    clock: Callable[[], float] = time.monotonic,
) -> PipelineResult:
    """Run units in order with resume/idempotency semantics.

    Stops early, with status REBOOT_PENDING, after the first unit that asks
    for a reboot; the resume marker then names the unit that follows it.
    Unit failures that are not explicitly accepted propagate as exceptions.
    """

    started = clock()
    result = PipelineResult(status=COMPLETED)
    start = _resume_index(store, work)

    current_phase: Optional[str] = None
    for i in range(start, len(work)):
        unit = work[i]
        if unit.phase != current_phase:
            current_phase = unit.phase
            logger.info("=== Processing phase: %s ===", current_phase)
            store.set_current_phase(current_phase)

        logger.info("[%d/%d] %s", i + 1, len(work), unit.key)
        outcome = executor.run_unit(unit)
        result.record(outcome)

        if outcome.reboot_required:
            nxt = work[i + 1] if i + 1 < len(work) else None
            if nxt is not None:
                store.set_resume_marker(nxt.phase, nxt.name)
                result.resume_at = nxt.ref
            else:
                store.clear_current_phase()
            if not reboot.dry_run:
                executor.signals.consume()
            result.status = REBOOT_PENDING
            result.elapsed = clock() - started
            reboot.handle(f"Reboot required after running {unit.key}")
            return result

    store.clear_current_phase()
    result.elapsed = clock() - started
    logger.info("Total installation time: %s", format_elapsed(result.elapsed))
    log_success(logger, "Installation completed successfully!")
    return result

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import InstallerError

logger = logging.getLogger(__name__)

STATE_VERSION = 1
STATE_FILENAME = "state.json"


class StateError(InstallerError):
    pass


@dataclass(frozen=True)
class UnitRef:
    """Identifies one unit: the phase key plus the unit file name."""

    phase: str
    unit: str

    @property
    def key(self) -> str:
        return f"{self.phase}/{self.unit}"

    def __str__(self) -> str:
        return self.key


@dataclass
class InstallerState:
    completed: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    current_phase: Optional[str] = None
    resume: Optional[UnitRef] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "completed": self.completed,
            "current_phase": self.current_phase,
            "resume": {"phase": self.resume.phase, "unit": self.resume.unit} if self.resume else None,
            "updated_at": _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstallerState":
        completed = data.get("completed") or {}
        if not isinstance(completed, dict):
            raise StateError("state.completed must be a mapping")
        current = data.get("current_phase")
        if current is not None and not isinstance(current, str):
            raise StateError("state.current_phase must be a string or null")
        resume = data.get("resume")
        ref: Optional[UnitRef] = None
        if resume is not None:
            if not isinstance(resume, dict) or not resume.get("phase") or not resume.get("unit"):
                raise StateError("state.resume must be {phase, unit} or null")
            ref = UnitRef(phase=str(resume["phase"]), unit=str(resume["unit"]))
        records: Dict[str, Dict[str, Any]] = {}
        for key, record in completed.items():
            if record is None:
                record = {}
            if not isinstance(record, dict):
                raise StateError(f"state.completed[{key!r}] must be a mapping")
            records[str(key)] = dict(record)
        return cls(
            completed=records,
            current_phase=current,
            resume=ref,
        )


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S%z")


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"yaml", "yml"}:
        return "yaml"
    # Default to JSON for unknown extensions.
    return "json"


def _dump(path: Path, data: Dict[str, Any]) -> str:
    if _detect_format(path) == "yaml":
        return yaml.safe_dump(data, sort_keys=False)
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def load_state(path: Path) -> InstallerState:
    if not path.exists():
        return InstallerState()

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StateError(f"Cannot read state file {path}: {e}") from e

    try:
        if _detect_format(path) == "yaml":
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (ValueError, yaml.YAMLError) as e:
        raise StateError(f"State file {path} is corrupt: {e}") from e

    if not isinstance(data, dict):
        raise StateError(f"State file must be an object/dict, got {type(data)}")

    return InstallerState.from_dict(data)


def save_state(path: Path, state: InstallerState) -> None:
    """Replace the state file atomically; durable once this returns."""

    path.parent.mkdir(parents=True, exist_ok=True)
    payload = _dump(path, state.to_dict())

    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise

    dir_fd = os.open(str(path.parent), os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


class StateStore:
    """Durable record of completed units, the current phase and the resume marker.

    The record is loaded once; every mutation rewrites it atomically before
    returning. A dry-run store keeps the in-memory view unchanged and logs the
    write it skipped.
    """

    def __init__(self, path: str | Path, *, dry_run: bool = False) -> None:
        self.path = Path(path)
        self.dry_run = dry_run
        self._state = load_state(self.path)

    @classmethod
    def in_dir(cls, state_dir: str | Path, *, dry_run: bool = False) -> "StateStore":
        return cls(Path(state_dir) / STATE_FILENAME, dry_run=dry_run)

    def _commit(self, what: str) -> None:
        if self.dry_run:
            logger.info("[DRY RUN] Would record %s", what)
            return
        try:
            save_state(self.path, self._state)
        except OSError as e:
            raise StateError(f"Cannot write state file {self.path}: {e}") from e
        logger.debug("Recorded %s", what)

    # Completed set

    def is_completed(self, phase: str, unit: str) -> bool:
        return UnitRef(phase, unit).key in self._state.completed

    def completed_digest(self, phase: str, unit: str) -> Optional[str]:
        entry = self._state.completed.get(UnitRef(phase, unit).key) or {}
        return entry.get("sha256")

    def completed_units(self) -> List[str]:
        return sorted(self._state.completed)

    def mark_completed(self, phase: str, unit: str, *, digest: Optional[str] = None) -> None:
        if self.dry_run:
            logger.info("[DRY RUN] Would mark %s/%s completed", phase, unit)
            return
        self._state.completed[UnitRef(phase, unit).key] = {"completed_at": _now(), "sha256": digest}
        self._commit(f"completion of {phase}/{unit}")

    def reset(self, phase: Optional[str] = None) -> List[str]:
        """Forget completions (all, or one phase). Returns the removed keys."""

        if phase is None:
            removed = sorted(self._state.completed)
        else:
            removed = sorted(k for k in self._state.completed if k.split("/", 1)[0] == phase)
        if not removed:
            return []
        if self.dry_run:
            logger.info("[DRY RUN] Would reset %d completed units", len(removed))
            return removed
        for key in removed:
            del self._state.completed[key]
        self._commit(f"reset of {len(removed)} completed units")
        return removed

    # Resume marker

    def set_resume_marker(self, phase: str, unit: str) -> None:
        if self.dry_run:
            logger.info("[DRY RUN] Would set resume marker %s/%s", phase, unit)
            return
        self._state.resume = UnitRef(phase, unit)
        self._commit(f"resume marker {phase}/{unit}")

    def get_resume_marker(self) -> Optional[UnitRef]:
        return self._state.resume

    def clear_resume_marker(self) -> None:
        if self._state.resume is None:
            return
        if self.dry_run:
            logger.info("[DRY RUN] Would clear resume marker %s", self._state.resume)
            return
        self._state.resume = None
        self._commit("cleared resume marker")

    # Current phase

    def set_current_phase(self, phase: str) -> None:
        if self._state.current_phase == phase:
            return
        if self.dry_run:
            logger.debug("[DRY RUN] Would set current phase %s", phase)
            return
        self._state.current_phase = phase
        self._commit(f"current phase {phase}")

    def get_current_phase(self) -> Optional[str]:
        return self._state.current_phase

    def clear_current_phase(self) -> None:
        if self._state.current_phase is None:
            return
        if self.dry_run:
            logger.debug("[DRY RUN] Would clear current phase")
            return
        self._state.current_phase = None
        self._commit("cleared current phase")

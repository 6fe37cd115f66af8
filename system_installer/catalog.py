from __future__ import annotations

import fnmatch
import hashlib
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .errors import InstallerError
from .state_store import UnitRef

logger = logging.getLogger(__name__)

MANIFEST_NAME = "phase.yaml"
PHASE_DIR_RE = re.compile(r"^\d+-")


class CatalogError(InstallerError):
    pass


@dataclass(frozen=True)
class Unit:
    phase: str
    name: str
    path: Path
    requires_reboot: bool = False
    description: str = ""
    configs: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def ref(self) -> UnitRef:
        return UnitRef(self.phase, self.name)

    @property
    def key(self) -> str:
        return self.ref.key

    @property
    def argv(self) -> List[str]:
        if self.path.suffix == ".sh":
            return ["bash", str(self.path)]
        return [str(self.path)]

    def digest(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


def _is_glob(token: str) -> bool:
    return any(c in token for c in "*?[")


def phase_matches(phase: str, token: str, mode: str = "anchored") -> bool:
    """Does a --phase/--skip-phases token select this phase key?

    substring: the token equals or occurs anywhere in the key.
    anchored: the token equals the key, its numeric prefix or its name part,
    or matches the key as a shell glob.
    """

    if phase == token:
        return True
    if mode == "substring":
        return token in phase
    prefix, _, name = phase.partition("-")
    if token in (prefix, name):
        return True
    return _is_glob(token) and fnmatch.fnmatchcase(phase, token)


def filter_phases(
    phases: Sequence[str],
    *,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
    mode: str = "anchored",
) -> List[str]:
    """(all phases intersected with requested) minus skipped, order kept."""

    selected = list(phases)
    if include:
        selected = [p for p in selected if any(phase_matches(p, t, mode) for t in include)]
        logger.info("Filtered to %d phases based on --phase: %s", len(selected), " ".join(selected))
    if exclude:
        selected = [p for p in selected if not any(phase_matches(p, t, mode) for t in exclude)]
        logger.info("Filtered to %d phases after skipping: %s", len(selected), " ".join(selected))
    return selected


def split_tokens(values: Optional[Sequence[str]]) -> List[str]:
    """Flatten repeated comma-separated option values."""
    out: List[str] = []
    for v in values or []:
        out.extend(t.strip() for t in v.split(",") if t.strip())
    return out


def _positions(work: Sequence[Unit], token: str, mode: str) -> List[int]:
    phase_token, _, unit_name = token.partition("/")
    return [
        i
        for i, u in enumerate(work)
        if phase_matches(u.phase, phase_token, mode) and (not unit_name or u.name == unit_name)
    ]


def window_units(
    work: Sequence[Unit],
    *,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    mode: str = "anchored",
) -> List[Unit]:
    """Cut the work list to the units between start_at and stop_after.

    Both take PHASE or PHASE/UNIT. A bare phase starts at its first unit and
    stops after its last one. Later phases are kept, unlike --phase.
    """

    lo, hi = 0, len(work)
    if start_at:
        found = _positions(work, start_at, mode)
        if not found:
            raise CatalogError(f"--start-at {start_at} matches no unit in the plan")
        lo = found[0]
    if stop_after:
        found = _positions(work, stop_after, mode)
        if not found:
            raise CatalogError(f"--stop-after {stop_after} matches no unit in the plan")
        hi = found[-1] + 1
    if lo >= hi:
        raise CatalogError(f"--stop-after {stop_after} comes before --start-at {start_at}")
    if lo or hi < len(work):
        logger.info("Running units %s through %s", work[lo].key, work[hi - 1].key)
    return list(work[lo:hi])


def _unit_configs(raw: Any, where: str) -> Dict[str, List[str]]:
    """category -> live paths; a single path may be written as a plain string."""

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise CatalogError(f"configs for {where} must map category -> paths")
    out: Dict[str, List[str]] = {}
    for category, paths in raw.items():
        if paths is None:
            paths = []
        elif isinstance(paths, str):
            paths = [paths]
        if not isinstance(paths, list) or not all(isinstance(x, str) and x.strip() for x in paths):
            raise CatalogError(f"configs.{category} for {where} must be a path or a list of paths")
        out[str(category)] = list(paths)
    return out


class Catalog:
    """Read-only view of a directory of phase directories holding unit programs."""

    def __init__(self, root: str | Path, *, reboot_marker_text: str = "# REBOOT_REQUIRED") -> None:
        self.root = Path(root)
        self._marker_re = re.compile(r"^\s*" + re.escape(reboot_marker_text) + r"\b", re.MULTILINE)

    def _require_root(self) -> None:
        if not self.root.is_dir():
            raise CatalogError(f"Unit catalog not found: {self.root}")

    def list_phases(self) -> List[str]:
        self._require_root()
        return sorted(
            p.name for p in self.root.iterdir() if p.is_dir() and PHASE_DIR_RE.match(p.name)
        )

    def load_manifest(self, phase: str) -> Dict[str, Any]:
        p = self.root / phase / MANIFEST_NAME
        if not p.exists():
            return {}
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise CatalogError(f"Malformed manifest {p}: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("units") or {}, dict):
            raise CatalogError(f"Manifest must be a mapping with a 'units' mapping: {p}")
        return data

    def _is_unit_file(self, p: Path) -> bool:
        if p.name.startswith(".") or p.name == MANIFEST_NAME or not p.is_file():
            return False
        return p.suffix == ".sh" or os.access(p, os.X_OK)

    def _declares_reboot(self, p: Path) -> bool:
        try:
            return bool(self._marker_re.search(p.read_text(encoding="utf-8", errors="replace")))
        except OSError as e:
            raise CatalogError(f"Cannot read unit {p}: {e}") from e

    def list_units(self, phase: str) -> List[Unit]:
        self._require_root()
        phase_dir = self.root / phase
        if not phase_dir.is_dir():
            raise CatalogError(f"Phase directory {phase_dir} does not exist")

        manifest_units: Dict[str, Any] = self.load_manifest(phase).get("units") or {}
        files = sorted(p for p in phase_dir.iterdir() if self._is_unit_file(p))
        names = {p.name for p in files}
        for declared in manifest_units:
            if declared not in names:
                raise CatalogError(f"Manifest for {phase} declares missing unit {declared}")

        units: List[Unit] = []
        for p in files:
            entry = manifest_units.get(p.name) or {}
            if not isinstance(entry, dict):
                raise CatalogError(f"Manifest entry for {phase}/{p.name} must be a mapping")
            if "requires_reboot" in entry:
                reboot = bool(entry["requires_reboot"])
            else:
                reboot = self._declares_reboot(p)
            configs = _unit_configs(entry.get("configs"), f"{phase}/{p.name}")
            units.append(
                Unit(
                    phase=phase,
                    name=p.name,
                    path=p,
                    requires_reboot=reboot,
                    description=str(entry.get("description") or ""),
                    configs=configs,
                )
            )
        if not units:
            logger.warning("No units found in phase %s", phase)
        return units

    def plan(
        self,
        *,
        include: Sequence[str] = (),
        exclude: Sequence[str] = (),
        mode: str = "anchored",
    ) -> List[Unit]:
        """Ordered work list for the filtered phases."""

        phases = self.list_phases()
        if not phases:
            raise CatalogError(f"No phase directories found in {self.root}")
        logger.info("Found %d phases: %s", len(phases), " ".join(phases))

        phases = filter_phases(phases, include=include, exclude=exclude, mode=mode)
        if not phases:
            raise CatalogError("No phases left to run after filtering")

        work: List[Unit] = []
        for phase in phases:
            work.extend(self.list_units(phase))
        if not work:
            raise CatalogError("No units found in the selected phases")
        logger.info("Found %d units in %d phases", len(work), len(phases))
        return work


def describe_unit(unit: Unit, *, max_lines: int = 5) -> str:
    """Manifest description, or the leading comment block of the artifact."""

    if unit.description:
        return unit.description
    lines: List[str] = []
    try:
        text = unit.path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    for line in text.splitlines():
        if line.startswith("#!"):
            continue
        if not line.startswith("#"):
            if lines:
                break
            continue
        lines.append(line.lstrip("#").strip())
        if len(lines) >= max_lines:
            break
    return "\n".join(lines)

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .lib.env import PATHS

PHASE_MATCH_MODES = ("anchored", "substring")


@dataclass(frozen=True)
class InstallerConfig:
    raw: Dict[str, Any]

    @property
    def catalog_dir(self) -> str:
        return str(self.raw.get("catalog_dir") or ".")

    @property
    def state_dir(self) -> str:
        return str(self.raw.get("state_dir") or PATHS.state_dir)

    @property
    def log_dir(self) -> str:
        return str(self.raw.get("log_dir") or PATHS.log_dir)

    @property
    def repo_root(self) -> str:
        return str(self.raw.get("repo_root") or PATHS.repo_root)

    @property
    def config_map(self) -> Optional[str]:
        value = self.raw.get("config_map")
        return str(value) if value else None

    @property
    def reboot_marker_file(self) -> str:
        return str((self.raw.get("reboot") or {}).get("marker_file") or Path(self.state_dir) / "reboot_required")

    @property
    def system_reboot_flag(self) -> str:
        return str((self.raw.get("reboot") or {}).get("system_flag") or PATHS.system_reboot_flag)

    @property
    def reboot_marker_text(self) -> str:
        return str((self.raw.get("reboot") or {}).get("marker_text") or "# REBOOT_REQUIRED")

    @property
    def phase_match(self) -> str:
        return str(self.raw.get("phase_match") or "anchored")

    @property
    def require_root(self) -> bool:
        return bool(self.raw.get("require_root", True))

    def with_overrides(self, **overrides: Any) -> "InstallerConfig":
        """Return a copy with command-line values layered over the file."""
        raw = dict(self.raw)
        raw.update({k: v for k, v in overrides.items() if v is not None})
        return InstallerConfig(raw=raw)


def _load_yaml_mapping(p: Path, what: str) -> Dict[str, Any]:
    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{what} must contain a mapping/object: {p}")
    return raw


def load_installer_config(path: Optional[str], *, required: bool = False) -> InstallerConfig:
    """Load the installer config; a missing optional file means all defaults."""

    if not path:
        return InstallerConfig(raw={})

    p = Path(path)
    if not p.exists():
        if required:
            raise FileNotFoundError(path)
        return InstallerConfig(raw={})

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("installer config must be YAML")

    cfg = InstallerConfig(raw=_load_yaml_mapping(p, "installer config"))
    if cfg.phase_match not in PHASE_MATCH_MODES:
        raise ValueError(f"phase_match must be one of {PHASE_MATCH_MODES}, got {cfg.phase_match!r}")
    return cfg


def load_config_map(path: str) -> Dict[str, List[str]]:
    """Load a category -> live paths mapping file."""

    raw = _load_yaml_mapping(Path(path), "config map")
    out: Dict[str, List[str]] = {}
    for category, paths in raw.items():
        if isinstance(paths, str):
            paths = [paths]
        if not isinstance(paths, list):
            raise ValueError(f"config map entry {category!r} must be a list of paths")
        out[str(category)] = [str(x) for x in paths]
    return out

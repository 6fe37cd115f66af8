from __future__ import annotations

import shlex
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Optional

from .lib.env import ENV_PREFIX
from .lib.system import Identity, invoking_identity

SYNC_COMMAND = shlex.join([sys.executable, "-m", "system_installer.sync_cli"])


@dataclass(frozen=True)
class UnitContext:
    """Everything a unit program is told about the run it belongs to."""

    identity: Identity
    repo_root: Path
    state_dir: Path
    reboot_marker: Path
    log_path: Optional[Path] = None
    config_map: Optional[Path] = None
    dry_run: bool = False
    interactive: bool = False
    sync_command: str = SYNC_COMMAND
    phase: str = ""
    unit: str = ""

    @classmethod
    def create(
        cls,
        *,
        repo_root: str | Path,
        state_dir: str | Path,
        reboot_marker: str | Path,
        log_path: Optional[str] = None,
        config_map: Optional[str] = None,
        dry_run: bool = False,
        interactive: bool = False,
        identity: Optional[Identity] = None,
    ) -> "UnitContext":
        return cls(
            identity=identity or invoking_identity(),
            repo_root=Path(repo_root),
            state_dir=Path(state_dir),
            reboot_marker=Path(reboot_marker),
            log_path=Path(log_path) if log_path else None,
            config_map=Path(config_map) if config_map else None,
            dry_run=dry_run,
            interactive=interactive,
        )

    def for_unit(self, phase: str, unit: str) -> "UnitContext":
        return replace(self, phase=phase, unit=unit)

    def to_env(self) -> Dict[str, str]:
        env = {
            "USER_NAME": self.identity.user,
            "USER_HOME": str(self.identity.home),
            "REPO": str(self.repo_root),
            "STATE_DIR": str(self.state_dir),
            "REBOOT_MARKER": str(self.reboot_marker),
            "SYNC": self.sync_command,
            "DRY_RUN": "true" if self.dry_run else "false",
            "INTERACTIVE": "true" if self.interactive else "false",
            "PHASE": self.phase,
            "UNIT": self.unit,
        }
        if self.log_path:
            env["LOG"] = str(self.log_path)
        if self.config_map:
            env["CONFIG_MAP"] = str(self.config_map)
        return {ENV_PREFIX + k: v for k, v in env.items()}

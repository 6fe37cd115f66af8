"""
Pytest configuration and fixtures for system installer tests.
"""

from __future__ import annotations

import os
import stat
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
import yaml

from system_installer.catalog import Unit
from system_installer.config import InstallerConfig
from system_installer.context import UnitContext
from system_installer.lib.system import Identity


# ============================================================================
# Catalog Fixtures
# ============================================================================


@pytest.fixture
def make_catalog(tmp_path: Path) -> Callable[..., Path]:
    """Write a catalog: {phase: {unit_file: body}} plus optional manifests."""

    def _make(layout: Dict[str, Dict[str, str]], manifests: Optional[Dict[str, dict]] = None) -> Path:
        root = tmp_path / "catalog"
        root.mkdir(exist_ok=True)
        for phase, units in layout.items():
            phase_dir = root / phase
            phase_dir.mkdir(exist_ok=True)
            for name, body in units.items():
                p = phase_dir / name
                p.write_text(body, encoding="utf-8")
                if not name.endswith(".sh"):
                    p.chmod(p.stat().st_mode | stat.S_IXUSR)
        for phase, manifest in (manifests or {}).items():
            (root / phase / "phase.yaml").write_text(yaml.safe_dump(manifest), encoding="utf-8")
        return root

    return _make


@pytest.fixture
def identity(tmp_path: Path) -> Identity:
    home = tmp_path / "home"
    home.mkdir()
    return Identity(user="tester", home=home)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    r = tmp_path / "core-configs"
    r.mkdir()
    return r


@pytest.fixture
def cfg(tmp_path: Path, repo: Path) -> Callable[..., InstallerConfig]:
    """Installer config confined to tmp_path; call with the catalog root."""

    def _cfg(catalog: Path, **extra) -> InstallerConfig:
        raw = {
            "catalog_dir": str(catalog),
            "state_dir": str(tmp_path / "state"),
            "log_dir": str(tmp_path / "logs"),
            "repo_root": str(repo),
            "reboot": {
                "marker_file": str(tmp_path / "state" / "reboot_required"),
                "system_flag": str(tmp_path / "run" / "reboot-required"),
            },
            "require_root": False,
        }
        raw.update(extra)
        return InstallerConfig(raw=raw)

    return _cfg


@pytest.fixture
def unit_context(tmp_path: Path, repo: Path, identity: Identity) -> UnitContext:
    return UnitContext.create(
        repo_root=repo,
        state_dir=tmp_path / "state",
        reboot_marker=tmp_path / "state" / "reboot_required",
        identity=identity,
    )


# ============================================================================
# Runner / Prompt Fakes
# ============================================================================


class RecordingRunner:
    """Stands in for subprocess execution of unit programs."""

    def __init__(self, exit_codes: Optional[Dict[str, int]] = None, effects: Optional[Dict[str, Callable]] = None):
        self.exit_codes = exit_codes or {}
        self.effects = effects or {}
        self.calls: List[str] = []
        self.contexts: List[UnitContext] = []

    def __call__(self, unit: Unit, ctx: UnitContext) -> int:
        self.calls.append(unit.key)
        self.contexts.append(ctx)
        effect = self.effects.get(unit.key)
        if effect:
            effect()
        return self.exit_codes.get(unit.key, 0)


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


class ScriptedConfirm:
    """Answers prompts from a queue and remembers the questions."""

    def __init__(self, *answers: bool):
        self.answers = list(answers)
        self.questions: List[str] = []

    def __call__(self, question: str, default: bool = True) -> bool:
        self.questions.append(question)
        return self.answers.pop(0) if self.answers else default


# ============================================================================
# Tool Availability
# ============================================================================


def _have(tool: str) -> bool:
    return any(os.access(os.path.join(d, tool), os.X_OK) for d in os.environ.get("PATH", "").split(os.pathsep))


requires_bash = pytest.mark.skipif(not _have("bash"), reason="bash not available")
requires_git = pytest.mark.skipif(not _have("git"), reason="git not available")


def init_git_repo(path: Path) -> None:
    def git(*args: str) -> None:
        subprocess.run(["git", "-C", str(path), *args], check=True, capture_output=True)

    git("init", "-q")
    git("config", "user.email", "tester@example.com")
    git("config", "user.name", "Tester")
    (path / "README").write_text("configs\n", encoding="utf-8")
    git("add", "README")
    git("commit", "-q", "-m", "init")


def commit_count(path: Path) -> int:
    out = subprocess.run(
        ["git", "-C", str(path), "rev-list", "--count", "HEAD"], check=True, capture_output=True, text=True
    )
    return int(out.stdout.strip())

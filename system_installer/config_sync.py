"""Keep a git repository of config files and the live filesystem in step.

Each tracked file lives in the repository at ``<repo>/<category>/<basename>``
and the live path is a symlink to it. The state of an entry is derived from
two stats, never stored:

- LINKED: the live path is a symlink to the repository copy.
- ADOPTABLE: the live path is a real file or directory, no repository copy.
- RESTORABLE: the repository copy exists, the live path is absent or a
  symlink to somewhere else.
- CONFLICT: both exist and the live path is a real file or directory.
- UNTRACKED: no repository copy, and nothing (or a foreign symlink) live.

A real file is never deleted: whenever a symlink has to take its place, it is
renamed to ``<live>.orig.<timestamp>`` first.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List

from .errors import InstallerError
from .lib.command import CommandError, run_cmd

logger = logging.getLogger(__name__)


class ConfigSyncError(InstallerError):
    pass


class EntryState(str, Enum):
    LINKED = "linked"
    ADOPTABLE = "adoptable"
    RESTORABLE = "restorable"
    CONFLICT = "conflict"
    UNTRACKED = "untracked"


@dataclass(frozen=True)
class ConfigEntry:
    category: str
    live_path: Path
    repo_path: Path

    @property
    def state(self) -> EntryState:
        live, repo = self.live_path, self.repo_path
        if live.is_symlink():
            if _points_to(live, repo):
                return EntryState.LINKED
            return EntryState.RESTORABLE if _lexists(repo) else EntryState.UNTRACKED
        if live.exists():
            return EntryState.CONFLICT if _lexists(repo) else EntryState.ADOPTABLE
        return EntryState.RESTORABLE if _lexists(repo) else EntryState.UNTRACKED


@dataclass
class SyncReport:
    category: str
    restored: List[Path] = field(default_factory=list)
    adopted: List[Path] = field(default_factory=list)
    backups: List[Path] = field(default_factory=list)
    missing: List[Path] = field(default_factory=list)
    committed: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.restored or self.adopted)


def _lexists(p: Path) -> bool:
    return os.path.lexists(p)


def _points_to(link: Path, target: Path) -> bool:
    dest = Path(os.readlink(link))
    if not dest.is_absolute():
        dest = link.parent / dest
    return os.path.normpath(dest) == os.path.normpath(target)


def _timestamp() -> str:
    return time.strftime("%Y%m%d-%H%M%S")


class ConfigSync:
    def __init__(
        self,
        repo_root: str | Path,
        *,
        home: str | Path | None = None,
        dry_run: bool = False,
        commit: bool = True,
        clock: Callable[[], str] = _timestamp,
    ) -> None:
        self.repo_root = Path(repo_root).absolute()
        self.home = Path(home) if home else Path.home()
        self.dry_run = dry_run
        self.commit = commit
        self.clock = clock

    def _require_repo(self) -> None:
        if not self.repo_root.is_dir():
            raise ConfigSyncError(
                f"Configuration repository not found at {self.repo_root}; "
                "ensure it is mounted or cloned at this location"
            )

    def expand(self, live_path: str | Path) -> Path:
        s = str(live_path)
        if s == "~" or s.startswith("~/"):
            s = str(self.home) + s[1:]
        return Path(os.path.abspath(os.path.expanduser(s)))

    def entries(self, category: str, live_paths: Iterable[str | Path]) -> List[ConfigEntry]:
        out: List[ConfigEntry] = []
        for raw in live_paths:
            if not str(raw).strip():
                continue
            live = self.expand(raw)
            if live == Path(os.path.abspath(self.home)) or live == Path(live.anchor):
                raise ConfigSyncError(f"Refusing to track {live} as a {category} config")
            out.append(ConfigEntry(category, live, self.repo_root / category / live.name))
        return out

    # Filesystem primitives

    def _backup(self, live: Path) -> Path:
        backup = live.with_name(f"{live.name}.orig.{self.clock()}")
        n = 1
        while _lexists(backup):
            backup = live.with_name(f"{live.name}.orig.{self.clock()}.{n}")
            n += 1
        logger.info("Backing up existing config: %s -> %s", live, backup)
        if not self.dry_run:
            os.rename(live, backup)
        return backup

    def _link(self, entry: ConfigEntry, report: SyncReport) -> None:
        """Point the live path at the repository copy."""

        live = entry.live_path
        if live.is_symlink():
            logger.info("Removing existing symlink: %s -> %s", live, os.readlink(live))
            if not self.dry_run:
                live.unlink()
        elif live.exists():
            report.backups.append(self._backup(live))

        logger.info("Creating symlink: %s -> %s", live, entry.repo_path)
        if not self.dry_run:
            live.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(entry.repo_path, live)

    def _copy_into_repo(self, entry: ConfigEntry) -> None:
        src, dst = entry.live_path, entry.repo_path
        logger.info("Moving config to repo: %s -> %s", src, dst)
        if self.dry_run:
            return
        dst.parent.mkdir(parents=True, exist_ok=True)
        if src.is_dir():
            shutil.copytree(src, dst, symlinks=True)
        else:
            shutil.copy2(src, dst)

    def _commit(self, category: str, names: List[str], report: SyncReport) -> None:
        if not self.commit:
            return
        repo = str(self.repo_root)
        git = ["git", "-C", repo, "-c", f"safe.directory={repo}"]
        message = f"Add {category} configurations: {' '.join(names)}"
        try:
            run_cmd(git + ["add", "--", category], dry_run=self.dry_run)
            run_cmd(git + ["commit", "-m", message], dry_run=self.dry_run)
        except (OSError, CommandError) as e:
            logger.warning("Could not commit %s configurations: %s", category, e)
            return
        report.committed = not self.dry_run
        logger.info("Committed changes to repository: %s", message)

    # Operations

    def restore(self, category: str, live_paths: Iterable[str | Path]) -> SyncReport:
        """Link every live path that has a repository copy (pre-install)."""

        self._require_repo()
        report = SyncReport(category)
        for entry in self.entries(category, live_paths):
            state = entry.state
            if state in (EntryState.RESTORABLE, EntryState.CONFLICT):
                self._link(entry, report)
                report.restored.append(entry.live_path)
            elif state is EntryState.UNTRACKED:
                logger.debug("No repository copy for %s", entry.live_path)
        logger.info("Restored %d %s configurations", len(report.restored), category)
        return report

    def adopt(self, category: str, live_paths: Iterable[str | Path]) -> SyncReport:
        """Move new live files into the repository and commit them (post-install)."""

        self._require_repo()
        report = SyncReport(category)
        self._adopt_entries(self.entries(category, live_paths), report)
        return report

    def sync(self, category: str, live_paths: Iterable[str | Path]) -> SyncReport:
        """Restore what the repository has, adopt what it lacks, commit once."""

        self._require_repo()
        report = SyncReport(category)
        entries = self.entries(category, live_paths)
        for entry in entries:
            if entry.state in (EntryState.RESTORABLE, EntryState.CONFLICT):
                self._link(entry, report)
                report.restored.append(entry.live_path)
        self._adopt_entries(entries, report)
        return report

    def _adopt_entries(self, entries: List[ConfigEntry], report: SyncReport) -> None:
        for entry in entries:
            state = entry.state
            if state is EntryState.ADOPTABLE:
                self._copy_into_repo(entry)
                self._link(entry, report)
                report.adopted.append(entry.live_path)
            elif state is EntryState.UNTRACKED:
                logger.warning("Config file not found: %s", entry.live_path)
                report.missing.append(entry.live_path)

        if report.adopted:
            self._commit(report.category, [p.name for p in report.adopted], report)
        else:
            logger.info("No new configuration files found for %s", report.category)

    def status(self, category: str, live_paths: Iterable[str | Path]) -> List[ConfigEntry]:
        self._require_repo()
        return self.entries(category, live_paths)


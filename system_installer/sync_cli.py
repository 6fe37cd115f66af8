from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

import yaml
from rich.table import Table

from .config import load_config_map
from .config_sync import ConfigSync, SyncReport
from .errors import InstallerError
from .lib.env import ENV_PREFIX, PATHS
from .lib.prompt import console
from .lib.system import invoking_identity
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(ENV_PREFIX + name) or default


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="system-installer-sync",
        description="Link config files to their copies in the configuration repository.",
    )
    p.add_argument("--repo", default=_env("REPO", PATHS.repo_root), help="Configuration repository root")
    p.add_argument("--home", default=_env("USER_HOME"), help="Home directory used to expand ~")
    p.add_argument("--map", default=_env("CONFIG_MAP"), help="YAML mapping of category -> live paths")
    p.add_argument("--log-dir", default=PATHS.log_dir, help="Directory for the sync log")
    p.add_argument("--dry-run", action="store_true", default=_env("DRY_RUN") == "true")
    p.add_argument("--no-commit", action="store_true", help="Do not commit adopted files")
    p.add_argument("operation", choices=("restore", "adopt", "sync", "status"))
    p.add_argument("category", help="Software category (subdirectory of the repository)")
    p.add_argument("paths", nargs="*", help="Live config paths (default: the category's entry in --map)")
    return p


def _paths_for(args: argparse.Namespace) -> List[str]:
    if args.paths:
        return list(args.paths)
    if not args.map:
        raise InstallerError(f"No paths given for {args.category} and no --map to look them up")
    mapping = load_config_map(args.map)
    if args.category not in mapping:
        raise InstallerError(f"Category {args.category} is not in {args.map}")
    return mapping[args.category]


def _print_report(report: SyncReport) -> None:
    for p in report.restored:
        console.print(f"restored  {p}")
    for p in report.adopted:
        console.print(f"adopted   {p}")
    for p in report.backups:
        console.print(f"backup    {p}")
    for p in report.missing:
        console.print(f"missing   {p}")
    if report.committed:
        console.print("committed to repository")


def main(argv: Optional[list[str]] = None) -> int:
    p = build_parser()
    try:
        args = p.parse_args(argv)
    except SystemExit as e:
        return 0 if e.code in (0, None) else 1

    # Inside a unit, stdout already feeds the orchestrator run log.
    if _env("LOG"):
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s", stream=sys.stdout)
    else:
        configure_logging(args.log_dir)

    home = args.home or str(invoking_identity().home)
    engine = ConfigSync(args.repo, home=home, dry_run=args.dry_run, commit=not args.no_commit)

    try:
        paths = _paths_for(args)
        if args.operation == "status":
            table = Table(title=f"{args.category} configurations")
            table.add_column("Live path")
            table.add_column("Repository copy")
            table.add_column("State")
            for entry in engine.status(args.category, paths):
                table.add_row(str(entry.live_path), str(entry.repo_path), entry.state.value)
            console.print(table)
            return 0
        report = getattr(engine, args.operation)(args.category, paths)
    except (InstallerError, OSError, ValueError, yaml.YAMLError) as e:
        logger.error("%s", e)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    _print_report(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

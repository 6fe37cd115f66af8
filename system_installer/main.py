from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

import yaml
from rich.table import Table

from .catalog import Catalog, Unit, split_tokens, window_units
from .config import PHASE_MATCH_MODES, InstallerConfig, load_installer_config
from .config_sync import ConfigSync
from .context import UnitContext
from .errors import InstallerError
from .executor import ExecutionOptions, RebootSignals, Runner, UnitExecutor, run_unit_process
from .lib.env import PATHS
from .lib.prompt import confirm as ask_confirm
from .lib.prompt import console
from .lib.system import Identity, is_root, trigger_reboot
from .logging_utils import LOG_LEVELS, LOG_MODES, configure_logging
from .pipeline import PipelineResult, RebootPolicy, run_pipeline
from .state_store import StateStore

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def plan_units(cfg: InstallerConfig, *, phases: Sequence[str] = (), skip_phases: Sequence[str] = ()) -> list[Unit]:
    catalog = Catalog(cfg.catalog_dir, reboot_marker_text=cfg.reboot_marker_text)
    return catalog.plan(include=phases, exclude=skip_phases, mode=cfg.phase_match)


def run(
    cfg: InstallerConfig,
    *,
    phases: Sequence[str] = (),
    skip_phases: Sequence[str] = (),
    force: bool = False,
    interactive: bool = False,
    auto_reboot: bool = False,
    dry_run: bool = False,
    reset: bool = False,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    log_path: Optional[str] = None,
    identity: Optional[Identity] = None,
    runner: Runner = run_unit_process,
    confirm: Callable[[str, bool], bool] = ask_confirm,
    reboot: Callable[..., None] = trigger_reboot,
) -> PipelineResult:
    """Run the installer, persisting progress for resume."""

    work = plan_units(cfg, phases=phases, skip_phases=skip_phases)
    work = window_units(work, start_at=start_at, stop_after=stop_after, mode=cfg.phase_match)
    store = StateStore.in_dir(cfg.state_dir, dry_run=dry_run)

    if reset:
        for phase in sorted({u.phase for u in work}):
            removed = store.reset(phase)
            if removed:
                logger.info("Reset %d completed units in %s", len(removed), phase)

    ctx = UnitContext.create(
        repo_root=cfg.repo_root,
        state_dir=cfg.state_dir,
        reboot_marker=cfg.reboot_marker_file,
        log_path=log_path,
        config_map=cfg.config_map,
        dry_run=dry_run,
        interactive=interactive,
        identity=identity,
    )
    sync = ConfigSync(cfg.repo_root, home=ctx.identity.home, dry_run=dry_run)
    signals = RebootSignals(marker_file=Path(cfg.reboot_marker_file), system_flag=Path(cfg.system_reboot_flag))

    executor = UnitExecutor(
        store=store,
        context=ctx,
        signals=signals,
        options=ExecutionOptions(force=force, interactive=interactive, dry_run=dry_run),
        sync=sync,
        runner=runner,
        confirm=confirm,
    )
    policy = RebootPolicy(
        auto_reboot=auto_reboot,
        interactive=interactive,
        dry_run=dry_run,
        confirm=confirm,
        reboot=reboot,
    )
    return run_pipeline(work=work, store=store, executor=executor, reboot=policy)


def show_plan(
    cfg: InstallerConfig,
    *,
    phases: Sequence[str] = (),
    skip_phases: Sequence[str] = (),
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
) -> None:
    work = plan_units(cfg, phases=phases, skip_phases=skip_phases)
    work = window_units(work, start_at=start_at, stop_after=stop_after, mode=cfg.phase_match)
    store = StateStore.in_dir(cfg.state_dir, dry_run=True)

    table = Table(title="Installation plan")
    table.add_column("Phase")
    table.add_column("Unit")
    table.add_column("Status")
    table.add_column("Reboot")
    for unit in work:
        done = store.is_completed(unit.phase, unit.name)
        table.add_row(unit.phase, unit.name, "completed" if done else "pending", "yes" if unit.requires_reboot else "")
    console.print(table)

    marker = store.get_resume_marker()
    if marker:
        console.print(f"Resume marker: {marker}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="system-installer",
        description="Run ordered provisioning phases once each, resuming across reboots.",
    )
    p.add_argument("--config", default=None, help=f"Installer config (YAML, default {PATHS.config_default})")
    p.add_argument("--catalog", default=None, help="Directory holding the phase directories")
    p.add_argument("--state-dir", default=None, help="Directory for durable installer state")
    p.add_argument("--log-dir", default=None, help="Directory for per-run logs")
    p.add_argument("--repo", default=None, help="Configuration repository root")
    p.add_argument("--phase", action="append", default=[], help="Run only these phases (comma-separated)")
    p.add_argument("--skip-phases", action="append", default=[], help="Skip these phases (comma-separated)")
    p.add_argument("--start-at", default=None, metavar="PHASE[/UNIT]", help="Begin the run at this phase or unit")
    p.add_argument("--stop-after", default=None, metavar="PHASE[/UNIT]", help="End the run after this phase or unit")
    p.add_argument("--phase-match", choices=PHASE_MATCH_MODES, default=None, help="How phase tokens match phase keys")
    p.add_argument("--force", action="store_true", help="Run units even if marked completed")
    p.add_argument("--reset", action="store_true", help="Forget completions of the selected phases first")
    p.add_argument("--interactive", action="store_true", help="Prompt before each unit and on errors")
    p.add_argument("--auto-reboot", action="store_true", help="Reboot without asking when a unit requires it")
    p.add_argument("--dry-run", action="store_true", help="Show what would be executed without executing")
    p.add_argument("--list", action="store_true", help="Show the installation plan and exit")
    p.add_argument("--verbose", action="store_true", help="Same as --log-level DEBUG --log-mode full")
    p.add_argument("--log-mode", choices=tuple(LOG_MODES), default="normal", help="Console display mode")
    p.add_argument("--log-level", choices=LOG_LEVELS, default="INFO", type=str.upper, help="Console log level")
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    p = build_parser()
    try:
        args = p.parse_args(argv)
    except SystemExit as e:
        return 0 if e.code in (0, None) else 1

    if args.verbose:
        args.log_level, args.log_mode = "DEBUG", "full"

    try:
        cfg = load_installer_config(args.config or PATHS.config_default, required=bool(args.config))
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"ERROR: cannot load installer config: {e}", file=sys.stderr)
        return 1

    cfg = cfg.with_overrides(
        catalog_dir=args.catalog,
        state_dir=args.state_dir,
        log_dir=args.log_dir,
        repo_root=args.repo,
        phase_match=args.phase_match,
    )
    phases = split_tokens(args.phase)
    skip_phases = split_tokens(args.skip_phases)

    if args.list:
        try:
            show_plan(cfg, phases=phases, skip_phases=skip_phases, start_at=args.start_at, stop_after=args.stop_after)
        except InstallerError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        return 0

    log_path = configure_logging(cfg.log_dir, mode=args.log_mode, level=args.log_level)

    logger.info("=== System Installer (v%s) ===", VERSION)
    logger.info("Starting installation with options:")
    logger.info("  Catalog: %s", cfg.catalog_dir)
    logger.info("  Interactive: %s", args.interactive)
    logger.info("  Auto-reboot: %s", args.auto_reboot)
    logger.info("  Dry-run: %s", args.dry_run)
    logger.info("  Force: %s", args.force)
    logger.info("  Log mode: %s", args.log_mode)
    logger.info("  Log level: %s", args.log_level)
    if phases:
        logger.info("  Phases to run: %s", " ".join(phases))
    if skip_phases:
        logger.info("  Phases to skip: %s", " ".join(skip_phases))
    if args.start_at:
        logger.info("  Start at: %s", args.start_at)
    if args.stop_after:
        logger.info("  Stop after: %s", args.stop_after)

    if cfg.require_root and not args.dry_run and not is_root():
        logger.error("This installer must be run as root")
        return 1

    try:
        run(
            cfg,
            phases=phases,
            skip_phases=skip_phases,
            force=args.force,
            interactive=args.interactive,
            auto_reboot=args.auto_reboot,
            dry_run=args.dry_run,
            reset=args.reset,
            start_at=args.start_at,
            stop_after=args.stop_after,
            log_path=log_path,
        )
    except InstallerError as e:
        logger.error("%s", e)
        return 1
    except Exception:
        logger.exception("Installer failed")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

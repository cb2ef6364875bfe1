#!/usr/bin/env python3
# rforge/modules/cli.py
"""
rforge CLI

  rforge [--config PATH] [-v] rebuild [--full]   rebuild every installed package
  rforge [--config PATH] [-v] build NAME...      build named packages and their build deps

Must run as root. Exit status: 0 all good, 1 some package failed,
2 startup error (privileges, configuration, ledger).
"""

from __future__ import annotations

import os
import sys
import argparse
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from rforge import __version__
from rforge.modules.config import load_snapshot
from rforge.modules.errors import ConfigError, PrivilegeError, RforgeError
from rforge.modules.logging import configure, get_logger, get_metrics
from rforge.modules.orchestrator import BatchReport, Orchestrator

logger = get_logger("cli")
console = Console()


# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {msg}")


def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {msg}")


def print_err(msg: str):
    console.print(f"[bold red]✖[/] {msg}")


def print_info(msg: str):
    console.print(f"[cyan]{msg}[/cyan]")


def print_summary(report: BatchReport) -> None:
    table = Table(title="rforge summary")
    table.add_column("package")
    table.add_column("result")
    table.add_column("detail", overflow="fold")
    for name in report.built:
        table.add_row(name, "[green]built[/]", "")
    for name in report.ledgered:
        table.add_row(name, "[dim]already built[/]", "")
    for name in report.skipped:
        table.add_row(name, "[yellow]skipped[/]", "no viable candidate")
    for name, err in report.failed.items():
        table.add_row(name, "[red]failed[/]", err)
    console.print(table)
    warnings = get_metrics().get("WARNING", 0)
    if report.ok:
        print_ok(f"{len(report.built)} built, {len(report.skipped)} skipped ({warnings} warnings)")
    else:
        print_err(f"{len(report.failed)} failed: {', '.join(report.failed)}")


def require_root() -> None:
    if os.geteuid() != 0:
        raise PrivilegeError("rforge provisions containers and system packages; run it as root")


# -----------------------
# Argparse wiring
# -----------------------
def make_parser():
    ap = argparse.ArgumentParser(prog="rforge", description="Rebuild RPM packages from source with local flags")
    ap.add_argument("--version", action="version", version=f"rforge {__version__}")
    ap.add_argument("--config", help="INI override file (default: $RFORGE_CONFIG or /etc/rforge/rforge.conf)")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging on the console")
    sub = ap.add_subparsers(dest="cmd")

    p_rebuild = sub.add_parser("rebuild", help="rebuild every installed package")
    p_rebuild.add_argument("--full", action="store_true", help="accepted for compatibility; has no effect")

    p_build = sub.add_parser("build", help="build packages and their build requirements")
    p_build.add_argument("names", nargs="+", metavar="NAME")

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 2

    try:
        require_root()
        snapshot = load_snapshot(args.config)
        log_cfg = snapshot.settings.logging.model_dump()
        if args.verbose:
            log_cfg["level"] = "DEBUG"
        configure(log_cfg)
        orch = Orchestrator.from_snapshot(snapshot)
        if args.cmd == "rebuild":
            if args.full:
                logger.debug("--full has no effect; every installed package is considered")
            print_info("Rebuilding installed packages...")
            report = orch.rebuild_all()
        else:
            print_info(f"Building {', '.join(args.names)}...")
            report = orch.build_many(args.names)
    except ConfigError as e:
        print_err("invalid configuration:")
        for issue in e.issues:
            print_err(f"  {issue}")
        return 2
    except RforgeError as e:
        print_err(f"Command failed: {e}")
        return 2

    print_summary(report)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())

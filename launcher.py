#!/usr/bin/env python3
"""
RouteAudit - Command line launcher
Subcommands:
1. crawl  - crawl a site and write the quick/deep snapshots
2. probe  - probe the URLs listed in a target file
3. audit  - crawl, then probe the chosen snapshot
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.resolve()
sys.path.insert(0, str(PROJECT_ROOT))

from routeaudit.audit import AuditReport, AuditRunner
from routeaudit.config import MODES, AuditConfig, ensure_dirs, get_config
from routeaudit.crawler import Crawler
from routeaudit.inputs import InputError, load_targets, select_targets
from routeaudit.log import setup_logging
from routeaudit.models import SEVERITIES

# Rich for pretty terminal output
from rich.console import Console
from rich.table import Table

console = Console()

EXIT_INPUT_ERROR = 2

BANNER = r"""
  ____             _          _             _ _ _
 |  _ \ ___  _   _| |_ ___   / \  _   _  __| (_) |_
 | |_) / _ \| | | | __/ _ \ / _ \| | | |/ _` | | __|
 |  _ < (_) | |_| | ||  __// ___ \ |_| | (_| | | |_
 |_| \_\___/ \__,_|\__\___/_/   \_\__,_|\__,_|_|\__|

            RouteAudit v0.1.0
            Crawl + OWASP Top 10 probe engine
"""

LEGAL_NOTE = "Only audit systems you own or are explicitly authorized to test."

SEVERITY_STYLES = {"critical": "bold red", "high": "red", "medium": "yellow", "low": "cyan"}


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--output-dir", type=Path, default=None, help="Directory for JSON artifacts")
    common.add_argument("--config", type=Path, default=None, help="User config JSON (default: data/config.json)")
    common.add_argument("--no-ai", action="store_true", help="Use only the deterministic planner and static solutions")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    p = argparse.ArgumentParser(prog="routeaudit", description="Crawl a web property and probe its routes.")
    sub = p.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("crawl", parents=[common], help="Crawl a site and write crawl snapshots")
    crawl.add_argument("url", help="Absolute http(s) start URL")
    crawl.add_argument("--max-pages", type=int, default=None, help="Page budget (default 20)")
    crawl.add_argument("--spa", action="store_true", help="Click, scroll and cycle hash routes to wake single-page apps")

    probe = sub.add_parser("probe", parents=[common], help="Probe URLs from a target file")
    probe.add_argument("input", type=Path, help="JSON array of URLs or {pages, apiEndpoints}")
    probe.add_argument("--mode", choices=MODES, default="deep")
    probe.add_argument("--select-targets", action="store_true", help="Filter and cap targets before probing")

    audit = sub.add_parser("audit", parents=[common], help="Crawl, then probe the quick or deep snapshot")
    audit.add_argument("url", help="Absolute http(s) start URL")
    audit.add_argument("--mode", choices=MODES, default="deep")
    audit.add_argument("--max-pages", type=int, default=None, help="Page budget (default 20)")
    audit.add_argument("--spa", action="store_true", help="Click, scroll and cycle hash routes to wake single-page apps")
    audit.add_argument("--select-targets", action="store_true", help="Filter and cap targets before probing")
    return p


def load_config(args: argparse.Namespace) -> AuditConfig:
    config = get_config(config_path=args.config, output_dir=args.output_dir)
    if args.no_ai:
        config.ai["enabled"] = False
    if getattr(args, "spa", False):
        config.crawl.spa_interactions = True
    ensure_dirs(config.output_dir)
    return config


def print_summary(report: AuditReport):
    summary = report.summary
    by_sev = summary["bySeverity"]

    table = Table(title=f"OWASP Top 10 results ({report.mode})", show_lines=False)
    table.add_column("OWASP category")
    for sev in SEVERITIES:
        table.add_column(sev.capitalize(), justify="right", style=SEVERITY_STYLES[sev])

    rows = {}
    for item in report.findings:
        owasp = item.to_dict()["owasp"]
        rows.setdefault(owasp, {s: 0 for s in SEVERITIES})[item.severity] += 1
    for owasp in sorted(rows):
        table.add_row(owasp, *(str(rows[owasp][s]) for s in SEVERITIES))

    console.print()
    if report.findings:
        console.print(table)
    else:
        console.print("[green]No vulnerabilities detected (or targets are well-secured)[/green]")

    console.print(
        f"\n[bold]Summary:[/bold] {summary['total']} finding(s) across {len(report.targets)} target(s)  "
        + "  ".join(f"[{SEVERITY_STYLES[s]}]{s}: {by_sev[s]}[/]" for s in SEVERITIES)
    )
    score = summary["securityScore"]
    style = "green" if score >= 80 else ("yellow" if score >= 50 else "red")
    console.print(f"[bold]Security score:[/bold] [{style}]{score}/100[/]")
    console.print("\n[bold]Artifacts[/bold]")
    for name, path in report.files.items():
        console.print(f"  {name:<13} {path}")


async def cmd_crawl(args: argparse.Namespace, config: AuditConfig) -> int:
    crawler = Crawler(config.crawl, output_dir=config.output_dir)
    result = await crawler.crawl(args.url, max_pages=args.max_pages)
    console.print(f"\n[green]Crawl complete[/green]: {len(result.deep.pages)} page(s), "
                  f"{len(result.deep.api_endpoints)} API endpoint(s), {result.failed_pages} failed")
    console.print(f"  quick snapshot: {len(result.quick.pages)} page(s), {len(result.quick.api_endpoints)} endpoint(s)")
    console.print(f"[dim]  Output: {config.output_dir}[/dim]")
    return 0


async def cmd_probe(args: argparse.Namespace, config: AuditConfig) -> int:
    targets = load_targets(args.input)
    console.print(f"Found {len(targets)} URL(s) in {args.input}")
    if args.select_targets:
        targets = select_targets(targets)
        console.print(f"Selected {len(targets)} URL(s) for testing")
        if not targets:
            raise InputError("No suitable URLs found for testing after filtering")
    runner = AuditRunner(config)
    try:
        report = await runner.probe(targets, mode=args.mode)
    finally:
        await runner.close()
    print_summary(report)
    return 0


async def cmd_audit(args: argparse.Namespace, config: AuditConfig) -> int:
    runner = AuditRunner(config)
    try:
        report = await runner.run(args.url, mode=args.mode, max_pages=args.max_pages, select=args.select_targets)
    finally:
        await runner.close()
    print_summary(report)
    return 0


COMMANDS = {"crawl": cmd_crawl, "probe": cmd_probe, "audit": cmd_audit}


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose, console=console)

    console.print(BANNER, style="bold cyan")
    console.print(f"[dim]{LEGAL_NOTE}[/dim]\n")

    try:
        config = load_config(args)
        ai_state = f"{config.ai['provider']} ({config.ai['model'] or 'default model'})" if config.ai["enabled"] else "off"
        console.print(f"  Output:  {config.output_dir}")
        console.print(f"  AI:      {ai_state}")
        console.print("-" * 40)
        return await COMMANDS[args.command](args, config)
    except InputError as e:
        console.print(f"[red]x {e}[/red]")
        return EXIT_INPUT_ERROR


def run():
    """Console-script entry point."""
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Goodbye![/yellow]")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    run()

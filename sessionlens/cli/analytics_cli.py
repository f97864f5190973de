#!/usr/bin/env python3
"""
SessionLens CLI
===============

Batch commands for ingesting hook-event logs and working with patterns.

Usage:
    sessionlens ingest --days 7
    sessionlens ingest --today
    sessionlens counts
    sessionlens detect [--no-export]
    sessionlens patterns [--type TYPE] [--limit N]
    sessionlens prime [--project PATH]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.markup import escape

from sessionlens.config import LensConfig
from sessionlens.ingestion import SessionIngestor
from sessionlens.output import (
    console,
    create_table,
    icon,
    pattern_table,
    print_banner,
    print_error_panel,
    print_header,
    print_info,
    print_key_value_table,
    print_muted,
    print_success,
    print_table,
    setup_rich_logging,
    spinner,
)
from sessionlens.patterns import PatternDetector, get_priming_patterns
from sessionlens.records import PatternType
from sessionlens.store import AnalyticsStore, SchemaInitError


def get_config(args) -> LensConfig:
    """Load configuration, letting command-line flags win."""
    config = LensConfig.load()
    if getattr(args, "db", None):
        config.db_path = Path(args.db)
    if getattr(args, "log_dir", None):
        config.log_dir = Path(args.log_dir)
    return config


# =============================================================================
# Commands
# =============================================================================

async def cmd_ingest(args, config: LensConfig) -> None:
    """Ingest the trailing N days (or today) of log files."""
    async with await AnalyticsStore.open(config.db_path) as store:
        ingestor = SessionIngestor(store, config.log_dir)
        with spinner(f"Ingesting logs from {config.log_dir}..."):
            if args.today:
                result = await ingestor.ingest_today()
            else:
                result = await ingestor.ingest_days(args.days)

    if not result.files_read:
        print_info("No data for the requested days")
        return

    print_key_value_table(
        {
            "Files read": result.files_read,
            "Files missing": result.files_missing,
            "Lines skipped": f"[sl.warn]{result.lines_skipped}[/]" if result.lines_skipped else 0,
            "Sessions": result.sessions,
            "Tool usages": result.tool_usages,
            "Agent spawns": result.agent_spawns,
            "Sequences": result.sequences,
            "Skill usages": result.skill_usages,
        },
        title="Ingestion",
    )
    print_success(f"Ingested {result.sessions} session(s)")


async def cmd_counts(args, config: LensConfig) -> None:
    """Print row counts for every table."""
    async with await AnalyticsStore.open(config.db_path) as store:
        counts = await store.table_counts()

    print_header("Table Counts")
    table = create_table(columns=["Table", "Rows"])
    for name, count in counts.items():
        table.add_row(name, f"[sl.number]{count}[/]" if count else f"[sl.muted]{count}[/]")
    print_table(table)


async def cmd_detect(args, config: LensConfig) -> None:
    """Run every detector and persist the results."""
    export_dir = None
    if config.export_pattern_documents and not args.no_export:
        export_dir = config.patterns_dir

    async with await AnalyticsStore.open(config.db_path) as store:
        detector = PatternDetector(store, export_dir=export_dir, stable_ids=config.stable_pattern_ids)
        with spinner("Detecting patterns..."):
            patterns = await detector.run()

    if not patterns:
        print_info("Not enough data to detect any patterns yet")
        return

    print_header("Detected Patterns")
    print_table(pattern_table(patterns))
    print_success(f"Stored {len(patterns)} pattern(s)")
    if export_dir is not None:
        print_muted(f"Pattern documents written to {export_dir}")


async def cmd_patterns(args, config: LensConfig) -> None:
    """List stored patterns by confidence."""
    pattern_type = PatternType(args.type) if args.type else None
    async with await AnalyticsStore.open(config.db_path) as store:
        patterns = await store.list_patterns(pattern_type=pattern_type, limit=args.limit)

    if not patterns:
        print_info("No patterns stored")
        return

    print_header("Patterns")
    print_table(pattern_table(patterns))


async def cmd_prime(args, config: LensConfig) -> None:
    """Show the patterns a new session in a project would be primed with."""
    project = args.project or str(Path.cwd())
    async with await AnalyticsStore.open(config.db_path) as store:
        patterns = await get_priming_patterns(store, project_path=project)

    if not patterns:
        print_info(f"No priming patterns for {project}")
        return

    print_header(f"Priming: {escape(project)}")
    for p in patterns:
        marker = icon("star") if p.auto_apply else icon("bullet")
        console.print(f"[sl.accent]{marker}[/] [sl.number]{p.pattern_id}[/] {escape(p.recommendation)}")


def main(argv=None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="sessionlens",
        description="Session analytics and pattern detection for hook-event logs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Ingest the last week of logs
    sessionlens ingest --days 7

    # Detect patterns without writing pattern documents
    sessionlens detect --no-export

    # Show the ten most confident failure patterns
    sessionlens patterns --type failure --limit 10

    # Patterns for a new session in the current project
    sessionlens prime
        """
    )
    parser.add_argument("--db", help="Analytics database path")
    parser.add_argument("--log-dir", help="Directory holding daily event logs")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Ingest daily event logs")
    window = ingest_parser.add_mutually_exclusive_group()
    window.add_argument("--days", "-d", type=int, default=1, help="Trailing days to ingest")
    window.add_argument("--today", action="store_true", help="Ingest today's log only")

    # Counts command
    subparsers.add_parser("counts", help="Show table row counts")

    # Detect command
    detect_parser = subparsers.add_parser("detect", help="Run pattern detection")
    detect_parser.add_argument("--no-export", action="store_true", help="Skip writing pattern documents")

    # Patterns command
    patterns_parser = subparsers.add_parser("patterns", help="List stored patterns")
    patterns_parser.add_argument("--type", "-t", choices=[t.value for t in PatternType], help="Filter by type")
    patterns_parser.add_argument("--limit", "-n", type=int, help="Maximum patterns to show")

    # Prime command
    prime_parser = subparsers.add_parser("prime", help="Show priming patterns for a project")
    prime_parser.add_argument("--project", "-p", help="Project path (default: current directory)")

    args = parser.parse_args(argv)

    if not args.command:
        print_banner(subtitle="Session analytics and pattern detection")
        console.print()
        parser.print_help()
        return 1

    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)
    config = get_config(args)

    commands = {
        "ingest": cmd_ingest,
        "counts": cmd_counts,
        "detect": cmd_detect,
        "patterns": cmd_patterns,
        "prime": cmd_prime,
    }

    try:
        asyncio.run(commands[args.command](args, config))
    except SchemaInitError as e:
        print_error_panel(str(e), title="Database Error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

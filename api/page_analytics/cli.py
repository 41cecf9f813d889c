#!/usr/bin/env python3
"""
Page Analytics command line

Diagnostics and maintenance for the page analytics pipeline.

Usage:
    page-analytics status            Show why data might not be collected
    page-analytics process           Drain the queue and prune expired rows now
    page-analytics flush-excluded    Remove data for paths the current rules exclude

Options:
    --dry-run     (flush-excluded) List the paths without deleting anything
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def cmd_status(db, settings) -> int:
    from .services.diagnostics import collect_status

    status = collect_status(db, settings)
    for line in status.render_lines():
        print(line)
    for hint in status.hints:
        logger.warning(hint)
    return 0


def cmd_process(db, settings) -> int:
    from .services.cron import run_analytics_cron

    result = run_analytics_cron(db, settings)
    logger.info(
        f"Processed {result.drain.claimed} item(s) in {result.drain.batches} batch(es): "
        f"{result.drain.merged_keys} merge(s), {result.drain.malformed} malformed, "
        f"{result.pruned_rows} row(s) pruned"
    )
    return 1 if result.drain.aborted else 0


def cmd_flush_excluded(db, settings, dry_run: bool = False) -> int:
    from .services.daily_counters import DailyCounterStore
    from .services.maintenance import find_excluded_paths, flush_excluded
    from .utils.path_classifier import PathClassifier

    store = DailyCounterStore(db)
    classifier = PathClassifier(settings)

    if dry_run:
        paths = find_excluded_paths(store, classifier)
        logger.info(f"DRY RUN - {len(paths)} path(s) would be removed")
        for path in paths:
            print(path)
        return 0

    removed = flush_excluded(store, classifier)
    logger.info(f"Removed analytics data for {len(removed)} excluded path(s)")
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(prog="page-analytics", description="Page analytics diagnostics and maintenance")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("status", help="Show queue size, last run and config")
    subparsers.add_parser("process", help="Drain the queue and prune expired rows now")
    flush_parser = subparsers.add_parser("flush-excluded", help="Remove data for excluded paths")
    flush_parser.add_argument("--dry-run", action="store_true", help="Preview without making changes")
    args = parser.parse_args(argv)

    from .db import SessionLocal
    from .deps import get_settings

    settings = get_settings()
    db = SessionLocal()
    try:
        if args.command == "status":
            return cmd_status(db, settings)
        if args.command == "process":
            return cmd_process(db, settings)
        return cmd_flush_excluded(db, settings, dry_run=args.dry_run)
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())

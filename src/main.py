"""
Tool Telemetry Rollups - Command Line Entry Point

Usage:
    telemetry-rollups init-db
    telemetry-rollups health
    telemetry-rollups daily [--date 2025-01-15]
    telemetry-rollups backfill [--days 90]
    telemetry-rollups compact [--cutoff-days 90]
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import List, Optional

import structlog

from src.config import get_settings
from src.config.logging import configure_logging
from src.database.connection import (
    check_database_health,
    close_database,
    create_schema,
    get_session_factory,
    init_database,
    verify_schema,
)
from src.pipeline.daily import DailyJob

logger = structlog.get_logger(__name__)
settings = get_settings()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="telemetry-rollups",
        description="Tool telemetry rollup and retention jobs",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create missing tables (development databases)")
    commands.add_parser("health", help="Check store connectivity")

    daily = commands.add_parser("daily", help="Rollups for the run date and the day before, then compaction")
    daily.add_argument("--date", type=date.fromisoformat, default=None, help="Run date, YYYY-MM-DD (default: today UTC)")

    backfill = commands.add_parser("backfill", help="Recompute rollups for past dates")
    backfill.add_argument("--days", type=int, default=settings.analytics.backfill_days)

    compact = commands.add_parser("compact", help="Compact raw downloads past the retention window")
    compact.add_argument("--cutoff-days", type=int, default=settings.analytics.retention_days)

    return parser


async def run_command(args: argparse.Namespace) -> int:
    await init_database(args.database_url)
    try:
        if args.command == "init-db":
            await create_schema()
            return 0

        if args.command == "health":
            health = await check_database_health()
            print(json.dumps(health, indent=2))
            return 0 if health["status"] == "healthy" else 1

        await verify_schema()
        job = DailyJob(get_session_factory())

        if args.command == "daily":
            report = await job.run(args.date)
            print(json.dumps(report.to_dict(), indent=2))
            return 0 if report.ok else 1

        if args.command == "backfill":
            result = await job.backfill(days=args.days)
            print(json.dumps({
                "days": args.days,
                "days_processed": result.days_processed,
                "mau_days_processed": result.mau_days_processed,
                "version_days_processed": result.version_days_processed,
                "failed_days": [d.isoformat() for d in result.failed_days],
            }, indent=2))
            return 0 if not result.failed_days else 1

        if args.command == "compact":
            result = await job.compact(cutoff_days=args.cutoff_days)
            print(json.dumps({
                "aggregated": result.aggregated,
                "deleted": result.deleted,
                "failed_days": [d.isoformat() for d in result.failed_days],
            }, indent=2))
            return 0 if not result.failed_days else 1
    finally:
        await close_database()

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    logger.info("Starting command", command=args.command, app=settings.app_name, env=settings.app_env)
    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())

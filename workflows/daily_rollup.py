"""
Prefect Workflow Orchestration - Daily Telemetry Rollups

Scheduled wrapper around the daily job:
- The job itself (step order, per-date isolation, compaction) lives in
  src.pipeline.daily.DailyJob
- A run with failed steps raises PartialRunError so Prefect retries it;
  re-running the job for the same date is safe
"""

from datetime import date
from typing import Optional

import structlog
from prefect import flow, get_run_logger, task

from src.config import get_settings
from src.config.logging import configure_logging
from src.core.dates import utc_today
from src.core.exceptions import PartialRunError
from src.database.connection import close_database, get_session_factory, init_database
from src.pipeline.daily import DailyJob

logger = structlog.get_logger(__name__)
settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="run_daily_job",
    description="Rollups for the run date and the day before, then retention compaction",
    retries=settings.scheduler.task_retries,
    retry_delay_seconds=settings.scheduler.task_retry_delay_seconds,
)
async def run_daily_job(run_date: date) -> dict:
    report = await DailyJob(get_session_factory()).run(run_date)
    summary = report.to_dict()

    if not report.ok:
        logger.warning("Daily job incomplete", run_date=summary["run_date"], failed_steps=len(report.failed_steps))
        raise PartialRunError(summary)
    return summary


@task(
    name="run_backfill",
    description="Recompute rollups for a range of past dates",
    retries=settings.scheduler.task_retries,
    retry_delay_seconds=settings.scheduler.task_retry_delay_seconds,
)
async def run_backfill(days: int, end_date: date) -> dict:
    result = await DailyJob(get_session_factory()).backfill(days=days, today=end_date)
    summary = {
        "days": days,
        "end_date": end_date.isoformat(),
        "days_processed": result.days_processed,
        "mau_days_processed": result.mau_days_processed,
        "version_days_processed": result.version_days_processed,
        "failed_days": [d.isoformat() for d in result.failed_days],
    }

    if result.failed_days:
        raise PartialRunError(summary)
    return summary


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="daily_telemetry_rollup",
    description="Daily rollups for yesterday and today, then retention compaction",
    retries=settings.scheduler.flow_retries,
    retry_delay_seconds=300,
)
async def daily_telemetry_rollup(run_date: Optional[date] = None) -> dict:
    """
    Daily telemetry rollup pipeline.

    Runs DailyJob once for ``run_date`` (default: today, UTC). When retries
    are exhausted the last report is returned with its failed steps.
    """
    flow_logger = get_run_logger()
    configure_logging()

    run_date = run_date or utc_today()
    flow_logger.info(f"Starting daily telemetry rollup for {run_date}")

    await init_database()
    try:
        summary = await run_daily_job(run_date)
    except PartialRunError as e:
        flow_logger.error(f"Daily job for {run_date} still failing after retries")
        summary = e.summary
    finally:
        await close_database()

    flow_logger.info(f"Daily telemetry rollup finished: {summary['status']}")
    return summary


@flow(
    name="backfill_telemetry_rollups",
    description="Recompute rollups for a range of past dates",
)
async def backfill_telemetry_rollups(days: Optional[int] = None, end_date: Optional[date] = None) -> dict:
    flow_logger = get_run_logger()
    configure_logging()

    days = days or settings.analytics.backfill_days
    end_date = end_date or utc_today()
    flow_logger.info(f"Backfilling {days} days of rollups ending {end_date}")

    await init_database()
    try:
        summary = await run_backfill(days, end_date)
    except PartialRunError as e:
        flow_logger.error(f"Backfill dates failed after retries: {e.summary['failed_days']}")
        summary = e.summary
    finally:
        await close_database()

    return summary


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    import asyncio

    asyncio.run(daily_telemetry_rollup())

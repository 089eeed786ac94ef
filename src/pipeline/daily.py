"""
Daily Rollup Job

Runs once per trigger, in this order:
1. Download rollups for yesterday, then today
2. Version-check rollups for yesterday, then today
3. MAU snapshots for yesterday, then today
4. Retention compaction

Each (step, date) gets its own session. A failing step is logged and
reported but never stops the remaining steps; re-running the whole job is
safe because every rollup replaces its rows and compaction only deletes
rows it has summarized.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Awaitable, Callable, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.dates import Clock, utc_today
from src.retention.compactor import CompactionResult, RetentionCompactor
from src.rollups.aggregator import BackfillResult, RollupAggregator

logger = structlog.get_logger(__name__)


@dataclass
class StepOutcome:
    step: str
    day: Optional[date]
    status: str
    error: Optional[str] = None


@dataclass
class DailyJobReport:
    run_date: date
    steps: List[StepOutcome] = field(default_factory=list)
    compaction: Optional[CompactionResult] = None

    @property
    def failed_steps(self) -> List[StepOutcome]:
        return [s for s in self.steps if s.status == "failed"]

    @property
    def ok(self) -> bool:
        if self.failed_steps:
            return False
        return self.compaction is None or not self.compaction.failed_days

    def to_dict(self) -> dict:
        return {
            "run_date": self.run_date.isoformat(),
            "status": "success" if self.ok else "partial_failure",
            "steps": [
                {
                    "step": s.step,
                    "day": s.day.isoformat() if s.day else None,
                    "status": s.status,
                    "error": s.error,
                }
                for s in self.steps
            ],
            "compaction": None if self.compaction is None else {
                "aggregated": self.compaction.aggregated,
                "deleted": self.compaction.deleted,
                "failed_days": [d.isoformat() for d in self.compaction.failed_days],
            },
        }


class DailyJob:
    """
    Example:
        job = DailyJob(get_session_factory())
        report = await job.run()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        aggregator: Optional[RollupAggregator] = None,
        compactor: Optional[RetentionCompactor] = None,
        clock: Optional[Clock] = None,
    ):
        self.session_factory = session_factory
        self.aggregator = aggregator or RollupAggregator()
        self.compactor = compactor or RetentionCompactor(clock=clock)
        self.clock = clock

    async def run(self, run_date: Optional[date] = None) -> DailyJobReport:
        """Run every step for ``run_date`` (default: today, UTC) and its previous day."""
        today = run_date or utc_today(self.clock)
        days = (today - timedelta(days=1), today)
        report = DailyJobReport(run_date=today)
        logger.info("Daily job started", run_date=today.isoformat())

        for day in days:
            await self._step(report, "rollups", day, self.aggregator.compute_rollups)
        for day in days:
            await self._step(report, "version_stats", day, self.aggregator.compute_version_stats)
        for day in days:
            await self._step(report, "mau_stats", day, self.aggregator.compute_mau_stats)

        await self._compact(report)

        log = logger.info if report.ok else logger.warning
        log(
            "Daily job finished",
            run_date=today.isoformat(),
            failed_steps=len(report.failed_steps),
            compacted_rows=report.compaction.deleted if report.compaction else 0,
        )
        return report

    async def backfill(self, days: Optional[int] = None, today: Optional[date] = None) -> BackfillResult:
        async with self.session_factory() as db:
            return await self.aggregator.backfill(db, days=days, today=today or utc_today(self.clock))

    async def compact(self, cutoff_days: Optional[int] = None, today: Optional[date] = None) -> CompactionResult:
        async with self.session_factory() as db:
            return await self.compactor.compact(db, cutoff_days=cutoff_days, today=today)

    async def _step(
        self,
        report: DailyJobReport,
        name: str,
        day: date,
        action: Callable[[AsyncSession, date], Awaitable[object]],
    ) -> None:
        try:
            async with self.session_factory() as db:
                await action(db, day)
        except Exception as e:
            # Already rolled back by the aggregator; the next date still runs
            logger.error("Daily job step failed", step=name, day=day.isoformat(), error=str(e))
            report.steps.append(StepOutcome(name, day, "failed", str(e)))
            return
        report.steps.append(StepOutcome(name, day, "success"))

    async def _compact(self, report: DailyJobReport) -> None:
        try:
            report.compaction = await self.compact(today=report.run_date)
        except Exception as e:
            logger.error("Compaction step failed", error=str(e))
            report.steps.append(StepOutcome("compaction", None, "failed", str(e)))
            return
        report.steps.append(StepOutcome("compaction", None, "success"))

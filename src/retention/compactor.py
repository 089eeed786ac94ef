"""
Retention Compactor

Moves raw download events older than the retention window into
``daily_raw_summaries`` and deletes them, one UTC day per transaction.

For each eligible day D:
1. Capture the highest raw row id for D, so rows tracked while compaction
   runs are left alone.
2. Group rows ``id <= max_id`` by (tool, backend, version, platform) and add
   each group's counts into its summary row (NULL-aware lookup, then update
   or insert).
3. Verify the summaries for D grew by exactly the raw row count.
4. Delete exactly those raw rows and verify the deleted count.
5. Commit. Any failure rolls back the whole day, leaving its raw rows in
   place, and compaction moves on to the next day.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.core.dates import Clock, utc_today
from src.core.exceptions import CompactionIntegrityError
from src.core.metrics import COMPACTED_ROWS, COMPACTION_FAILURES
from src.database.models import DailyRawSummary, DownloadEvent

logger = structlog.get_logger(__name__)
settings = get_settings()


@dataclass
class CompactionResult:
    """Summary groups written and raw rows deleted in one compaction run"""
    aggregated: int = 0
    deleted: int = 0
    compacted_days: List[date] = field(default_factory=list)
    failed_days: List[date] = field(default_factory=list)


class RetentionCompactor:
    """
    Example:
        compactor = RetentionCompactor()
        async with get_db() as db:
            result = await compactor.compact(db, cutoff_days=90)
    """

    def __init__(self, retention_days: Optional[int] = None, clock: Optional[Clock] = None):
        self.retention_days = retention_days or settings.analytics.retention_days
        self.clock = clock

    def cutoff_date(self, cutoff_days: Optional[int] = None, today: Optional[date] = None) -> date:
        """First date that is kept raw; every earlier date is compacted."""
        cutoff_days = self.retention_days if cutoff_days is None else cutoff_days
        if cutoff_days < 0:
            raise ValueError("cutoff_days must not be negative")
        return (today or utc_today(self.clock)) - timedelta(days=cutoff_days)

    async def compact(
        self, db: AsyncSession, cutoff_days: Optional[int] = None, today: Optional[date] = None
    ) -> CompactionResult:
        cutoff = self.cutoff_date(cutoff_days, today)
        result = CompactionResult()

        days = (
            await db.execute(
                select(DownloadEvent.day).where(DownloadEvent.day < cutoff).distinct().order_by(DownloadEvent.day)
            )
        ).scalars().all()

        if not days:
            logger.info("Nothing to compact", cutoff=cutoff.isoformat())
            return result

        for day in days:
            try:
                aggregated, deleted = await self._compact_day(db, day)
                await db.commit()
            except (CompactionIntegrityError, SQLAlchemyError) as e:
                await db.rollback()
                result.failed_days.append(day)
                COMPACTION_FAILURES.inc()
                logger.error(
                    "Compaction failed, raw rows kept",
                    day=day.isoformat(),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            result.aggregated += aggregated
            result.deleted += deleted
            result.compacted_days.append(day)
            COMPACTED_ROWS.inc(deleted)
            logger.info("Day compacted", day=day.isoformat(), groups=aggregated, deleted=deleted)

        logger.info(
            "Compaction complete",
            cutoff=cutoff.isoformat(),
            aggregated=result.aggregated,
            deleted=result.deleted,
            failed_days=[d.isoformat() for d in result.failed_days],
        )
        return result

    async def _compact_day(self, db: AsyncSession, day: date) -> Tuple[int, int]:
        max_id = (
            await db.execute(select(func.max(DownloadEvent.id)).where(DownloadEvent.day == day))
        ).scalar_one_or_none()
        if max_id is None:
            return 0, 0

        scope = (DownloadEvent.day == day, DownloadEvent.id <= max_id)
        groups = (
            await db.execute(
                select(
                    DownloadEvent.tool_id,
                    DownloadEvent.backend_id,
                    DownloadEvent.version,
                    DownloadEvent.platform_id,
                    func.count().label("count"),
                    func.count(func.distinct(DownloadEvent.client_hash)).label("unique_clients"),
                )
                .where(*scope)
                .group_by(
                    DownloadEvent.tool_id,
                    DownloadEvent.backend_id,
                    DownloadEvent.version,
                    DownloadEvent.platform_id,
                )
            )
        ).all()
        raw_count = sum(g.count for g in groups)

        before = await self._summary_total(db, day)
        for group in groups:
            await self._merge_summary(db, day, group)
        written = await self._summary_total(db, day) - before
        if written != raw_count:
            raise CompactionIntegrityError(day, raw_count, written, "summarize")

        deleted = (
            await db.execute(
                delete(DownloadEvent).where(*scope).execution_options(synchronize_session=False)
            )
        ).rowcount
        if deleted != raw_count:
            raise CompactionIntegrityError(day, raw_count, deleted, "delete")

        return len(groups), deleted

    @staticmethod
    async def _summary_total(db: AsyncSession, day: date) -> int:
        total = await db.execute(
            select(func.coalesce(func.sum(DailyRawSummary.count), 0)).where(DailyRawSummary.date == day)
        )
        return int(total.scalar_one())

    @staticmethod
    async def _merge_summary(db: AsyncSession, day: date, group) -> None:
        # backend and platform are nullable, so the group is matched with
        # IS NOT DISTINCT FROM rather than a unique constraint
        existing = (
            await db.execute(
                select(DailyRawSummary.id).where(
                    DailyRawSummary.date == day,
                    DailyRawSummary.tool_id == group.tool_id,
                    DailyRawSummary.version == group.version,
                    DailyRawSummary.backend_id.is_not_distinct_from(group.backend_id),
                    DailyRawSummary.platform_id.is_not_distinct_from(group.platform_id),
                )
            )
        ).scalars().first()

        if existing is not None:
            await db.execute(
                update(DailyRawSummary)
                .where(DailyRawSummary.id == existing)
                .execution_options(synchronize_session=False)
                .values(
                    count=DailyRawSummary.count + group.count,
                    unique_clients=DailyRawSummary.unique_clients + group.unique_clients,
                )
            )
        else:
            await db.execute(
                insert(DailyRawSummary).values(
                    tool_id=group.tool_id,
                    backend_id=group.backend_id,
                    version=group.version,
                    platform_id=group.platform_id,
                    date=day,
                    count=group.count,
                    unique_clients=group.unique_clients,
                )
            )

"""
Rollup Aggregator

Recomputes the per-date summary tables from download and version-check
facts. The download and version-check entry points replace the rows they own
for the date inside one transaction (delete, then insert the freshly computed
rows), so running them again for the same date with the same facts yields the
same rows, and keys that no longer have facts disappear. Zero-valued rows are
never written. MAU snapshots are upserted instead, and kept once their window
reaches compacted days.

Per date D:
1. Download facts come from every configured source (raw events and
   compacted summaries) and are summed per key.
2. daily_tool_stats, daily_backend_stats, daily_tool_backend_stats and
   daily_stats are rebuilt from those totals.
3. daily_combined_stats counts distinct clients over the union of download
   and version-check client hashes for D.
4. daily_version_stats and daily_mau_stats have their own entry points.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import delete, func, insert, select, union
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.core.dates import utc_today
from src.core.metrics import ROLLUP_RUNS
from src.database.dialect import insert_for
from src.database.models import (
    DOWNLOAD_ROLLUP_MODELS,
    DailyBackendStats,
    DailyCombinedStats,
    DailyMauStats,
    DailyRawSummary,
    DailyStats,
    DailyToolBackendStats,
    DailyToolStats,
    DailyVersionStats,
    DownloadEvent,
    VersionCheckEvent,
)
from src.rollups.sources import DownloadFactSource, FactTotals, default_sources

logger = structlog.get_logger(__name__)
settings = get_settings()


@dataclass
class RollupResult:
    """Rows written by one download rollup run"""
    day: date
    daily_stats: bool
    combined_stats: bool
    tool_stats: int
    backend_stats: int
    tool_backend_stats: int


@dataclass
class BackfillResult:
    """Dates that produced rollup rows during a backfill"""
    days_processed: int = 0
    mau_days_processed: int = 0
    version_days_processed: int = 0
    failed_days: List[date] = field(default_factory=list)


class RollupAggregator:
    """
    Idempotent per-date rollup computation.

    Example:
        aggregator = RollupAggregator()
        async with get_db() as db:
            result = await aggregator.compute_rollups(db, date(2025, 1, 14))
    """

    def __init__(
        self,
        sources: Optional[Sequence[DownloadFactSource]] = None,
        mau_window_days: Optional[int] = None,
    ):
        self.sources = tuple(sources) if sources is not None else default_sources()
        self.mau_window_days = mau_window_days or settings.analytics.mau_window_days

    # -------------------------------------------------------------------------
    # Download rollups
    # -------------------------------------------------------------------------

    async def compute_rollups(self, db: AsyncSession, day: date) -> RollupResult:
        """Rebuild every download rollup table for ``day``."""
        try:
            totals, by_tool, by_backend, by_tool_backend = await self._collect(db, day)
            combined = await self._combined_clients(db, day)

            for model in DOWNLOAD_ROLLUP_MODELS:
                await db.execute(delete(model).where(model.date == day))

            if totals.downloads > 0:
                await db.execute(
                    insert(DailyStats).values(
                        date=day,
                        total_downloads=totals.downloads,
                        unique_clients=totals.unique_clients,
                    )
                )
            if combined > 0:
                await db.execute(insert(DailyCombinedStats).values(date=day, unique_clients=combined))

            await self._insert_rows(db, DailyToolStats, [
                {"date": day, "tool_id": tool_id, "downloads": t.downloads, "unique_clients": t.unique_clients}
                for tool_id, t in by_tool.items()
                if t.downloads > 0
            ])
            await self._insert_rows(db, DailyBackendStats, [
                {"date": day, "backend_type": backend_type, "downloads": t.downloads, "unique_clients": t.unique_clients}
                for backend_type, t in by_backend.items()
                if t.downloads > 0
            ])
            await self._insert_rows(db, DailyToolBackendStats, [
                {"date": day, "tool_id": tool_id, "backend_type": backend_type, "downloads": downloads}
                for (tool_id, backend_type), downloads in by_tool_backend.items()
                if downloads > 0
            ])

            await db.commit()
        except Exception:
            await db.rollback()
            ROLLUP_RUNS.labels(rollup="downloads", status="error").inc()
            logger.exception("Download rollup failed", day=day.isoformat())
            raise

        result = RollupResult(
            day=day,
            daily_stats=totals.downloads > 0,
            combined_stats=combined > 0,
            tool_stats=sum(1 for t in by_tool.values() if t.downloads > 0),
            backend_stats=sum(1 for t in by_backend.values() if t.downloads > 0),
            tool_backend_stats=sum(1 for n in by_tool_backend.values() if n > 0),
        )
        ROLLUP_RUNS.labels(rollup="downloads", status="success").inc()
        logger.info(
            "Download rollups computed",
            day=day.isoformat(),
            downloads=totals.downloads,
            tool_stats=result.tool_stats,
            backend_stats=result.backend_stats,
            tool_backend_stats=result.tool_backend_stats,
            combined_dau=combined,
        )
        return result

    async def _collect(
        self, db: AsyncSession, day: date
    ) -> Tuple[FactTotals, Dict[int, FactTotals], Dict[str, FactTotals], Dict[Tuple[int, str], int]]:
        totals = FactTotals()
        by_tool: Dict[int, FactTotals] = {}
        by_backend: Dict[str, FactTotals] = {}
        by_tool_backend: Dict[Tuple[int, str], int] = {}

        for source in self.sources:
            totals = totals + await source.totals(db, day)
            for tool_id, t in (await source.by_tool(db, day)).items():
                by_tool[tool_id] = by_tool.get(tool_id, FactTotals()) + t
            for backend_type, t in (await source.by_backend_type(db, day)).items():
                by_backend[backend_type] = by_backend.get(backend_type, FactTotals()) + t
            for key, downloads in (await source.by_tool_backend_type(db, day)).items():
                by_tool_backend[key] = by_tool_backend.get(key, 0) + downloads

        return totals, by_tool, by_backend, by_tool_backend

    async def _combined_clients(self, db: AsyncSession, day: date) -> int:
        """Distinct clients over downloads and version checks for ``day``."""
        selects = [select(VersionCheckEvent.client_hash).where(VersionCheckEvent.day == day)]
        extra = 0
        for source in self.sources:
            hashes = source.client_hashes(day)
            if hashes is not None:
                selects.append(hashes)
            else:
                extra += (await source.totals(db, day)).unique_clients

        # UNION (not UNION ALL) already removes duplicate hashes
        clients = union(*selects).subquery()
        exact = (await db.execute(select(func.count()).select_from(clients))).scalar_one()
        return int(exact) + extra

    @staticmethod
    async def _insert_rows(db: AsyncSession, model, rows: List[dict]) -> None:
        if rows:
            await db.execute(insert(model), rows)

    # -------------------------------------------------------------------------
    # Version-check rollup
    # -------------------------------------------------------------------------

    async def compute_version_stats(self, db: AsyncSession, day: date) -> bool:
        """Rebuild daily_version_stats for ``day``. Returns True if a row was written."""
        try:
            row = (
                await db.execute(
                    select(
                        func.count().label("total"),
                        func.count(func.distinct(VersionCheckEvent.client_hash)).label("unique_clients"),
                    )
                    .select_from(VersionCheckEvent)
                    .where(VersionCheckEvent.day == day)
                )
            ).one()

            await db.execute(delete(DailyVersionStats).where(DailyVersionStats.date == day))
            written = (row.total or 0) > 0
            if written:
                await db.execute(
                    insert(DailyVersionStats).values(
                        date=day, total_checks=row.total, unique_clients=row.unique_clients
                    )
                )
            await db.commit()
        except Exception:
            await db.rollback()
            ROLLUP_RUNS.labels(rollup="version_checks", status="error").inc()
            logger.exception("Version-check rollup failed", day=day.isoformat())
            raise

        ROLLUP_RUNS.labels(rollup="version_checks", status="success").inc()
        logger.info("Version-check rollup computed", day=day.isoformat(), checks=row.total or 0)
        return written

    # -------------------------------------------------------------------------
    # MAU snapshot
    # -------------------------------------------------------------------------

    def mau_window(self, day: date) -> Tuple[date, date]:
        """Inclusive first and last date of the MAU window ending at ``day``."""
        return day - timedelta(days=self.mau_window_days - 1), day

    async def compute_mau_stats(self, db: AsyncSession, day: date) -> bool:
        """
        Snapshot the trailing-window distinct client count as of ``day``.

        Reads raw downloads and version checks; returns True if a row was
        written. A stored snapshot is never replaced by a smaller window
        view: when raw downloads inside the window have been compacted the
        existing row is kept, and a zero count writes nothing.
        """
        first, last = self.mau_window(day)
        try:
            existing = (
                await db.execute(select(DailyMauStats.mau).where(DailyMauStats.date == day))
            ).scalar_one_or_none()
            if existing is not None and await self._window_compacted(db, first, last):
                logger.info(
                    "MAU snapshot kept, window reaches compacted days",
                    day=day.isoformat(),
                    mau=existing,
                    window_start=first.isoformat(),
                )
                return False

            clients = union(
                select(DownloadEvent.client_hash).where(DownloadEvent.day.between(first, last)),
                select(VersionCheckEvent.client_hash).where(VersionCheckEvent.day.between(first, last)),
            ).subquery()
            mau = int((await db.execute(select(func.count()).select_from(clients))).scalar_one())

            if mau > 0:
                stmt = insert_for(db, DailyMauStats).values(date=day, mau=mau)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[DailyMauStats.date],
                    set_={"mau": stmt.excluded.mau},
                )
                await db.execute(stmt)
            await db.commit()
        except Exception:
            await db.rollback()
            ROLLUP_RUNS.labels(rollup="mau", status="error").inc()
            logger.exception("MAU rollup failed", day=day.isoformat())
            raise

        ROLLUP_RUNS.labels(rollup="mau", status="success").inc()
        logger.info("MAU snapshot computed", day=day.isoformat(), mau=mau, window_start=first.isoformat())
        return mau > 0

    @staticmethod
    async def _window_compacted(db: AsyncSession, first: date, last: date) -> bool:
        row = await db.execute(
            select(DailyRawSummary.id).where(DailyRawSummary.date.between(first, last)).limit(1)
        )
        return row.first() is not None

    # -------------------------------------------------------------------------
    # Backfill
    # -------------------------------------------------------------------------

    async def backfill(self, db: AsyncSession, days: Optional[int] = None, today: Optional[date] = None) -> BackfillResult:
        """
        Recompute all rollups for the last ``days`` dates, today included.

        A date whose rollups fail is logged and listed in ``failed_days``;
        the remaining dates still run.
        """
        days = days or settings.analytics.backfill_days
        today = today or utc_today()
        result = BackfillResult()

        for offset in range(days):
            day = today - timedelta(days=offset)
            try:
                rollup = await self.compute_rollups(db, day)
                if rollup.daily_stats:
                    result.days_processed += 1
                if await self.compute_version_stats(db, day):
                    result.version_days_processed += 1
                if await self.compute_mau_stats(db, day):
                    result.mau_days_processed += 1
            except Exception as e:
                # Already rolled back by the failing step
                logger.error("Backfill date failed", day=day.isoformat(), error=str(e))
                result.failed_days.append(day)

        log = logger.warning if result.failed_days else logger.info
        log(
            "Backfill complete",
            days=days,
            days_processed=result.days_processed,
            mau_days_processed=result.mau_days_processed,
            failed_days=[d.isoformat() for d in result.failed_days],
        )
        return result


async def backfill_rollups(db: AsyncSession, days: Optional[int] = None, today: Optional[date] = None) -> BackfillResult:
    """Recompute rollups for the last ``days`` dates with the default sources."""
    return await RollupAggregator().backfill(db, days=days, today=today)

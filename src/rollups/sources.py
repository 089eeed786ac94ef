"""
Download fact sources for a single date.

Download facts for a date can live in two places: raw ``download_events``
(recent dates) and ``daily_raw_summaries`` (dates past the retention cutoff).
Both implement ``DownloadFactSource``; the aggregator asks every source for
the same grouped totals and sums them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional, Tuple

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database.models import Backend, DailyRawSummary, DownloadEvent

settings = get_settings()


@dataclass
class FactTotals:
    """Download count and distinct-client count for one group"""
    downloads: int = 0
    unique_clients: int = 0

    def __add__(self, other: "FactTotals") -> "FactTotals":
        return FactTotals(
            downloads=self.downloads + other.downloads,
            unique_clients=self.unique_clients + other.unique_clients,
        )


class DownloadFactSource(ABC):
    """Grouped download facts for one UTC date"""

    name: str = "source"

    def __init__(self, unknown_backend_type: Optional[str] = None):
        self.unknown_backend_type = unknown_backend_type or settings.analytics.unknown_backend_type

    @abstractmethod
    async def totals(self, db: AsyncSession, day: date) -> FactTotals:
        """All downloads for ``day``"""

    @abstractmethod
    async def by_tool(self, db: AsyncSession, day: date) -> Dict[int, FactTotals]:
        """Downloads for ``day`` keyed by tool id"""

    @abstractmethod
    async def by_backend_type(self, db: AsyncSession, day: date) -> Dict[str, FactTotals]:
        """Downloads for ``day`` keyed by backend type"""

    @abstractmethod
    async def by_tool_backend_type(self, db: AsyncSession, day: date) -> Dict[Tuple[int, str], int]:
        """Download counts for ``day`` keyed by (tool id, backend type)"""

    def client_hashes(self, day: date) -> Optional[Select]:
        """
        Selectable of client hashes for ``day``, or None when the source
        no longer holds client identities.
        """
        return None

    def _type_key(self, backend_type: Optional[str]) -> str:
        return backend_type or self.unknown_backend_type

    def _merge_counts(self, rows) -> Dict[Tuple[int, str], int]:
        # NULL backends and backends typed "unknown" land on the same key
        merged: Dict[Tuple[int, str], int] = {}
        for r in rows:
            key = (r.tool_id, self._type_key(r.backend_type))
            merged[key] = merged.get(key, 0) + int(r.downloads)
        return merged


class RawDownloadSource(DownloadFactSource):
    """Facts read from ``download_events``"""

    name = "raw"

    async def totals(self, db: AsyncSession, day: date) -> FactTotals:
        row = (
            await db.execute(
                select(
                    func.count().label("downloads"),
                    func.count(func.distinct(DownloadEvent.client_hash)).label("unique_clients"),
                )
                .select_from(DownloadEvent)
                .where(DownloadEvent.day == day)
            )
        ).one()
        return FactTotals(row.downloads or 0, row.unique_clients or 0)

    async def by_tool(self, db: AsyncSession, day: date) -> Dict[int, FactTotals]:
        rows = await db.execute(
            select(
                DownloadEvent.tool_id,
                func.count().label("downloads"),
                func.count(func.distinct(DownloadEvent.client_hash)).label("unique_clients"),
            )
            .where(DownloadEvent.day == day)
            .group_by(DownloadEvent.tool_id)
        )
        return {r.tool_id: FactTotals(r.downloads, r.unique_clients) for r in rows}

    async def by_backend_type(self, db: AsyncSession, day: date) -> Dict[str, FactTotals]:
        rows = await db.execute(
            select(
                Backend.backend_type,
                func.count().label("downloads"),
                func.count(func.distinct(DownloadEvent.client_hash)).label("unique_clients"),
            )
            .select_from(DownloadEvent)
            .outerjoin(Backend, DownloadEvent.backend_id == Backend.id)
            .where(DownloadEvent.day == day)
            .group_by(Backend.backend_type)
        )
        merged: Dict[str, FactTotals] = {}
        for r in rows:
            key = self._type_key(r.backend_type)
            merged[key] = merged.get(key, FactTotals()) + FactTotals(r.downloads, r.unique_clients)
        return merged

    async def by_tool_backend_type(self, db: AsyncSession, day: date) -> Dict[Tuple[int, str], int]:
        rows = await db.execute(
            select(DownloadEvent.tool_id, Backend.backend_type, func.count().label("downloads"))
            .select_from(DownloadEvent)
            .outerjoin(Backend, DownloadEvent.backend_id == Backend.id)
            .where(DownloadEvent.day == day)
            .group_by(DownloadEvent.tool_id, Backend.backend_type)
        )
        return self._merge_counts(rows)

    def client_hashes(self, day: date) -> Select:
        return select(DownloadEvent.client_hash).where(DownloadEvent.day == day)


class CompactedSummarySource(DownloadFactSource):
    """
    Facts read from ``daily_raw_summaries``.

    Summaries keep per-group distinct counts only, so distinct clients are
    summed across groups (an upper bound).
    """

    name = "compacted"

    def _sums(self):
        return (
            func.coalesce(func.sum(DailyRawSummary.count), 0).label("downloads"),
            func.coalesce(func.sum(DailyRawSummary.unique_clients), 0).label("unique_clients"),
        )

    async def totals(self, db: AsyncSession, day: date) -> FactTotals:
        row = (await db.execute(select(*self._sums()).where(DailyRawSummary.date == day))).one()
        return FactTotals(int(row.downloads), int(row.unique_clients))

    async def by_tool(self, db: AsyncSession, day: date) -> Dict[int, FactTotals]:
        rows = await db.execute(
            select(DailyRawSummary.tool_id, *self._sums())
            .where(DailyRawSummary.date == day)
            .group_by(DailyRawSummary.tool_id)
        )
        return {r.tool_id: FactTotals(int(r.downloads), int(r.unique_clients)) for r in rows}

    async def by_backend_type(self, db: AsyncSession, day: date) -> Dict[str, FactTotals]:
        rows = await db.execute(
            select(Backend.backend_type, *self._sums())
            .select_from(DailyRawSummary)
            .outerjoin(Backend, DailyRawSummary.backend_id == Backend.id)
            .where(DailyRawSummary.date == day)
            .group_by(Backend.backend_type)
        )
        merged: Dict[str, FactTotals] = {}
        for r in rows:
            key = self._type_key(r.backend_type)
            merged[key] = merged.get(key, FactTotals()) + FactTotals(int(r.downloads), int(r.unique_clients))
        return merged

    async def by_tool_backend_type(self, db: AsyncSession, day: date) -> Dict[Tuple[int, str], int]:
        rows = await db.execute(
            select(
                DailyRawSummary.tool_id,
                Backend.backend_type,
                func.coalesce(func.sum(DailyRawSummary.count), 0).label("downloads"),
            )
            .select_from(DailyRawSummary)
            .outerjoin(Backend, DailyRawSummary.backend_id == Backend.id)
            .where(DailyRawSummary.date == day)
            .group_by(DailyRawSummary.tool_id, Backend.backend_type)
        )
        return self._merge_counts(rows)


def default_sources() -> Tuple[DownloadFactSource, ...]:
    return (RawDownloadSource(), CompactedSummarySource())

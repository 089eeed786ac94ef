"""
Backend statistics over the dashboard window.
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database.models import DailyBackendStats, DailyToolBackendStats, Tool
from src.queries.base import resolve_today
from src.queries.schemas import BackendCount, BackendStats, ToolCount

settings = get_settings()


def _window_start(today: Optional[date]) -> date:
    return resolve_today(today) - timedelta(days=settings.analytics.dashboard_window_days)


async def get_downloads_by_backend(db: AsyncSession, today: Optional[date] = None) -> List[BackendCount]:
    """Downloads per backend type, highest first."""
    rows = await db.execute(
        select(DailyBackendStats.backend_type, func.sum(DailyBackendStats.downloads).label("count"))
        .where(DailyBackendStats.date >= _window_start(today))
        .group_by(DailyBackendStats.backend_type)
    )
    counts = [BackendCount(backend=r.backend_type, count=int(r.count)) for r in rows]
    return sorted(counts, key=lambda c: (-c.count, c.backend))


async def get_top_tools_by_backend(
    db: AsyncSession, limit: Optional[int] = None, today: Optional[date] = None
) -> Dict[str, List[ToolCount]]:
    """Top ``limit`` tools within each backend type."""
    limit = limit or settings.analytics.top_tools_per_backend
    rows = await db.execute(
        select(
            Tool.name,
            DailyToolBackendStats.backend_type,
            func.sum(DailyToolBackendStats.downloads).label("count"),
        )
        .select_from(DailyToolBackendStats)
        .join(Tool, DailyToolBackendStats.tool_id == Tool.id)
        .where(DailyToolBackendStats.date >= _window_start(today))
        .group_by(Tool.name, DailyToolBackendStats.backend_type)
    )

    by_type: Dict[str, Dict[str, int]] = defaultdict(dict)
    for r in rows:
        backend_type = r.backend_type or settings.analytics.unknown_backend_type
        by_type[backend_type][r.name] = by_type[backend_type].get(r.name, 0) + int(r.count)

    return {
        backend_type: [
            ToolCount(tool=name, count=count)
            for name, count in sorted(tools.items(), key=lambda item: (-item[1], item[0]))[:limit]
        ]
        for backend_type, tools in by_type.items()
    }


async def get_backend_stats(db: AsyncSession, today: Optional[date] = None) -> BackendStats:
    return BackendStats(
        downloads_by_backend=await get_downloads_by_backend(db, today=today),
        top_tools_by_backend=await get_top_tools_by_backend(db, today=today),
    )

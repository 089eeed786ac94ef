"""
Download statistics

Per-tool breakdowns, all-time top tools, 30-day per-tool totals and the
current MAU snapshot.
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database.models import (
    DailyMauStats,
    DailyRawSummary,
    DailyToolStats,
    DownloadEvent,
    Platform,
    Tool,
)
from src.queries.base import degrade_gracefully, resolve_today
from src.queries.schemas import (
    DailyCount,
    DownloadStats,
    MonthlyCount,
    OsCount,
    ToolCount,
    TopTools,
    VersionCount,
)

logger = structlog.get_logger(__name__)
settings = get_settings()

MONTHLY_WINDOW_DAYS = 365


async def get_download_stats(db: AsyncSession, tool: str, today: Optional[date] = None) -> DownloadStats:
    """
    Download breakdown for one tool.

    ``total`` and ``monthly`` include compacted summaries; the version, OS
    and daily breakdowns come from raw events only.
    """
    today = resolve_today(today)
    tool_id = (await db.execute(select(Tool.id).where(Tool.name == tool))).scalar_one_or_none()
    if tool_id is None:
        logger.debug("Download stats requested for unknown tool", tool=tool)
        return DownloadStats()

    raw_total = (
        await db.execute(select(func.count()).select_from(DownloadEvent).where(DownloadEvent.tool_id == tool_id))
    ).scalar_one()
    summary_total = (
        await db.execute(
            select(func.coalesce(func.sum(DailyRawSummary.count), 0)).where(DailyRawSummary.tool_id == tool_id)
        )
    ).scalar_one()

    version_rows = await db.execute(
        select(DownloadEvent.version, func.count().label("count"))
        .where(DownloadEvent.tool_id == tool_id)
        .group_by(DownloadEvent.version)
        .order_by(func.count().desc(), DownloadEvent.version)
    )
    os_rows = await db.execute(
        select(Platform.os, func.count().label("count"))
        .select_from(DownloadEvent)
        .outerjoin(Platform, DownloadEvent.platform_id == Platform.id)
        .where(DownloadEvent.tool_id == tool_id)
        .group_by(Platform.os)
        .order_by(func.count().desc())
    )

    window = settings.analytics.dashboard_window_days
    daily_rows = await db.execute(
        select(DownloadEvent.day, func.count().label("count"))
        .where(
            DownloadEvent.tool_id == tool_id,
            DownloadEvent.day >= today - timedelta(days=window),
            DownloadEvent.day < today,
        )
        .group_by(DownloadEvent.day)
        .order_by(DownloadEvent.day)
    )

    # Grouped per day in SQL, bucketed per month here to stay dialect neutral
    monthly: Dict[str, int] = defaultdict(int)
    since = today - timedelta(days=MONTHLY_WINDOW_DAYS)
    raw_days = await db.execute(
        select(DownloadEvent.day, func.count().label("count"))
        .where(DownloadEvent.tool_id == tool_id, DownloadEvent.day >= since)
        .group_by(DownloadEvent.day)
    )
    for r in raw_days:
        monthly[r.day.strftime("%Y-%m")] += r.count
    summary_days = await db.execute(
        select(DailyRawSummary.date, func.sum(DailyRawSummary.count).label("count"))
        .where(DailyRawSummary.tool_id == tool_id, DailyRawSummary.date >= since)
        .group_by(DailyRawSummary.date)
    )
    for r in summary_days:
        monthly[r.date.strftime("%Y-%m")] += int(r.count)

    return DownloadStats(
        total=int(raw_total) + int(summary_total),
        by_version=[VersionCount(version=r.version, count=r.count) for r in version_rows],
        by_os=[OsCount(os=r.os, count=r.count) for r in os_rows],
        daily=[DailyCount(date=r.day, count=r.count) for r in daily_rows],
        monthly=[MonthlyCount(month=m, count=c) for m, c in sorted(monthly.items())],
    )


async def get_top_tools(db: AsyncSession, limit: Optional[int] = None) -> TopTools:
    """All-time most downloaded tools across raw events and compacted summaries."""
    limit = limit or settings.analytics.top_tools_limit

    counts: Dict[str, int] = defaultdict(int)
    raw = await db.execute(
        select(Tool.name, func.count().label("count"))
        .select_from(DownloadEvent)
        .join(Tool, DownloadEvent.tool_id == Tool.id)
        .group_by(Tool.name)
    )
    for r in raw:
        counts[r.name] += r.count
    compacted = await db.execute(
        select(Tool.name, func.sum(DailyRawSummary.count).label("count"))
        .select_from(DailyRawSummary)
        .join(Tool, DailyRawSummary.tool_id == Tool.id)
        .group_by(Tool.name)
    )
    for r in compacted:
        counts[r.name] += int(r.count)

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]
    return TopTools(
        total=sum(counts.values()),
        tools=[ToolCount(tool=name, count=count) for name, count in ranked],
    )


async def get_30_day_downloads(db: AsyncSession, today: Optional[date] = None) -> Dict[str, int]:
    """Per-tool downloads over the dashboard window, read from daily_tool_stats."""
    today = resolve_today(today)
    start = today - timedelta(days=settings.analytics.dashboard_window_days)
    rows = await db.execute(
        select(Tool.name, func.sum(DailyToolStats.downloads).label("count"))
        .select_from(DailyToolStats)
        .join(Tool, DailyToolStats.tool_id == Tool.id)
        .where(DailyToolStats.date >= start)
        .group_by(Tool.name)
    )
    return {r.name: int(r.count) for r in rows}


@degrade_gracefully(lambda *args, **kwargs: 0)
async def get_mau(db: AsyncSession, today: Optional[date] = None) -> int:
    """Today's MAU snapshot, else yesterday's, else 0."""
    today = resolve_today(today)
    mau = (
        await db.execute(
            select(DailyMauStats.mau)
            .where(DailyMauStats.date.in_([today, today - timedelta(days=1)]))
            .order_by(DailyMauStats.date.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    return mau or 0

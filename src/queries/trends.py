"""
Trend series: DAU/MAU history, version-check activity, sparklines, version
trends and trending tools.

Series cover complete days only and are zero-filled, so charts get one point
per date even when a rollup row is absent.
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database.models import (
    DailyCombinedStats,
    DailyMauStats,
    DailyRawSummary,
    DailyToolStats,
    DailyVersionStats,
    DownloadEvent,
    Tool,
    VersionCheckEvent,
)
from src.queries.base import complete_days, degrade_gracefully, resolve_today
from src.queries.schemas import (
    DauMauHistory,
    DauMauPoint,
    DauPoint,
    TrendingTool,
    VersionCheckDauMau,
    VersionShare,
    VersionTimelinePoint,
    VersionTrends,
)

settings = get_settings()

VERSION_SHARE_LIMIT = 20
VERSION_TIMELINE_LIMIT = 10
TREND_WEEK_DAYS = 7
RECENT_DAYS = 3


@degrade_gracefully(lambda *args, **kwargs: DauMauHistory())
async def get_dau_mau_history(db: AsyncSession, days: int = 30, today: Optional[date] = None) -> DauMauHistory:
    """Combined DAU and MAU for each complete day, plus the current MAU."""
    today = resolve_today(today)
    start = today - timedelta(days=days)

    dau = dict(
        (
            await db.execute(
                select(DailyCombinedStats.date, DailyCombinedStats.unique_clients).where(
                    DailyCombinedStats.date >= start, DailyCombinedStats.date < today
                )
            )
        ).all()
    )
    mau = dict(
        (
            await db.execute(
                select(DailyMauStats.date, DailyMauStats.mau).where(
                    DailyMauStats.date >= start, DailyMauStats.date <= today
                )
            )
        ).all()
    )

    daily = [DauMauPoint(date=d, dau=dau.get(d, 0), mau=mau.get(d, 0)) for d in complete_days(today, days)]
    current = mau.get(today)
    if current is None:
        current = daily[-1].mau if daily else 0
    return DauMauHistory(daily=daily, current_mau=current)


@degrade_gracefully(lambda *args, **kwargs: VersionCheckDauMau())
async def get_version_check_dau_mau(
    db: AsyncSession, days: int = 30, today: Optional[date] = None
) -> VersionCheckDauMau:
    """
    Version-check DAU per complete day from the rollup, and a live distinct
    count of version-checking clients over the MAU window.
    """
    today = resolve_today(today)
    start = today - timedelta(days=days)

    dau = dict(
        (
            await db.execute(
                select(DailyVersionStats.date, DailyVersionStats.unique_clients).where(
                    DailyVersionStats.date >= start
                )
            )
        ).all()
    )
    window_start = today - timedelta(days=settings.analytics.mau_window_days - 1)
    current = (
        await db.execute(
            select(func.count(func.distinct(VersionCheckEvent.client_hash))).where(
                VersionCheckEvent.day >= window_start
            )
        )
    ).scalar_one()

    return VersionCheckDauMau(
        daily=[DauPoint(date=d, dau=dau.get(d, 0)) for d in complete_days(today, days)],
        current_mau=current or 0,
    )


async def get_batch_sparklines(
    db: AsyncSession, tools: Sequence[str], today: Optional[date] = None
) -> Dict[str, List[int]]:
    """
    Daily downloads for each named tool over the last complete days.

    Unknown tool names are omitted from the result.
    """
    if not tools:
        return {}

    today = resolve_today(today)
    days = complete_days(today, settings.analytics.sparkline_days)

    known = dict((await db.execute(select(Tool.id, Tool.name).where(Tool.name.in_(list(tools))))).all())
    if not known:
        return {}

    rows = await db.execute(
        select(DailyToolStats.tool_id, DailyToolStats.date, DailyToolStats.downloads).where(
            DailyToolStats.tool_id.in_(list(known)),
            DailyToolStats.date >= days[0],
            DailyToolStats.date < today,
        )
    )
    by_tool: Dict[int, Dict[date, int]] = {tool_id: {} for tool_id in known}
    for r in rows:
        by_tool[r.tool_id][r.date] = r.downloads

    return {known[tool_id]: [series.get(d, 0) for d in days] for tool_id, series in by_tool.items()}


def classify_trend(first_week: int, last_week: int) -> str:
    """growing above +10%, declining below -10%, else stable"""
    if first_week > 0 and last_week > first_week * 1.1:
        return "growing"
    if first_week > 0 and last_week < first_week * 0.9:
        return "declining"
    return "stable"


@degrade_gracefully(lambda *args, **kwargs: VersionTrends())
async def get_version_trends(
    db: AsyncSession, tool: str, days: int = 30, today: Optional[date] = None
) -> VersionTrends:
    """
    Version shares of one tool's downloads since ``today - days`` and a daily
    timeline for its most downloaded versions.

    Counts include compacted summaries. Each version's trend compares its
    first week of the timeline with its last week.
    """
    today = resolve_today(today)
    tool_id = (await db.execute(select(Tool.id).where(Tool.name == tool))).scalar_one_or_none()
    if tool_id is None:
        return VersionTrends()

    start = today - timedelta(days=days)
    per_day: Dict[date, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    raw = await db.execute(
        select(DownloadEvent.day, DownloadEvent.version, func.count().label("count"))
        .where(DownloadEvent.tool_id == tool_id, DownloadEvent.day >= start)
        .group_by(DownloadEvent.day, DownloadEvent.version)
    )
    for r in raw:
        per_day[r.day][r.version] += r.count
    compacted = await db.execute(
        select(DailyRawSummary.date, DailyRawSummary.version, func.sum(DailyRawSummary.count).label("count"))
        .where(DailyRawSummary.tool_id == tool_id, DailyRawSummary.date >= start)
        .group_by(DailyRawSummary.date, DailyRawSummary.version)
    )
    for r in compacted:
        per_day[r.date][r.version] += int(r.count)

    totals: Dict[str, int] = defaultdict(int)
    for counts in per_day.values():
        for version, count in counts.items():
            totals[version] += count
    overall = sum(totals.values())
    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))[:VERSION_SHARE_LIMIT]

    charted = [version for version, _ in ranked[:VERSION_TIMELINE_LIMIT]]
    timeline = [
        VersionTimelinePoint(date=d, counts={v: per_day.get(d, {}).get(v, 0) for v in charted})
        for d in complete_days(today, days)
    ]

    last_week_start = max(days - TREND_WEEK_DAYS, TREND_WEEK_DAYS)
    versions = []
    for version, count in ranked:
        series = [point.counts.get(version, 0) for point in timeline]
        versions.append(
            VersionShare(
                version=version,
                downloads=count,
                share=count / overall * 100 if overall else 0.0,
                trend=classify_trend(sum(series[:TREND_WEEK_DAYS]), sum(series[last_week_start:])),
            )
        )

    return VersionTrends(versions=versions, timeline=timeline)


@degrade_gracefully(lambda *args, **kwargs: [])
async def get_trending_tools(
    db: AsyncSession, limit: Optional[int] = None, today: Optional[date] = None
) -> List[TrendingTool]:
    """
    Tools whose last three complete days beat their own baseline.

    The score is the percentage by which the average of the last three
    complete days exceeds the average of the 27 days before them; tools
    without such a rise score 0. Only daily_tool_stats is read.
    """
    limit = limit or settings.analytics.trending_tools_limit
    today = resolve_today(today)
    window = complete_days(today, settings.analytics.dashboard_window_days + 1)
    sparkline_days = complete_days(today, settings.analytics.sparkline_days)

    rows = await db.execute(
        select(Tool.name, DailyToolStats.date, DailyToolStats.downloads)
        .select_from(DailyToolStats)
        .join(Tool, DailyToolStats.tool_id == Tool.id)
        .where(DailyToolStats.date >= window[0], DailyToolStats.date < today)
    )
    by_tool: Dict[str, Dict[date, int]] = defaultdict(dict)
    for r in rows:
        by_tool[r.name][r.date] = r.downloads

    recent, baseline = window[-RECENT_DAYS:], window[:-RECENT_DAYS]
    trending = []
    for name, series in by_tool.items():
        recent_avg = sum(series.get(d, 0) for d in recent) / len(recent)
        baseline_avg = sum(series.get(d, 0) for d in baseline) / len(baseline) if baseline else 0
        score = 0.0
        if baseline_avg > 0 and recent_avg > baseline_avg:
            score = (recent_avg / baseline_avg - 1) * 100
        trending.append(
            TrendingTool(
                name=name,
                downloads_30d=sum(series.values()),
                trending_score=score,
                sparkline=[series.get(d, 0) for d in sparkline_days],
            )
        )

    trending.sort(key=lambda t: (-t.trending_score, -t.downloads_30d, t.name))
    return trending[:limit]

"""
Growth metrics

Week-over-week and month-over-month download growth, overall and per tool,
read from the daily rollups. Periods are trailing windows ending today:
this week is ``[today - 7, today]``, last week ``[today - 14, today - 7)``,
and likewise 30 and 60 days for the months.
"""

from datetime import date, timedelta
from typing import Dict, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database.models import DailyStats, DailyToolStats, Tool
from src.queries.base import complete_days, degrade_gracefully, resolve_today
from src.queries.schemas import GrowthMetrics, PeriodGrowth, ToolGrowth, ToolWeekGrowth

logger = structlog.get_logger(__name__)
settings = get_settings()

WEEK_DAYS = 7
MONTH_DAYS = 30
# Tools below this in both weeks are left out of the movers lists
MIN_WEEKLY_DOWNLOADS = 10
MOVERS_LIMIT = 10


def percent_change(current: int, previous: int) -> Optional[float]:
    if previous <= 0:
        return None
    return (current - previous) / previous * 100


def period_bounds(today: date, days: int) -> Tuple[date, date]:
    """Start of the current period and start of the one before it."""
    return today - timedelta(days=days), today - timedelta(days=2 * days)


async def _period_totals(db: AsyncSession, column, date_column, today: date, *where) -> PeriodGrowth:
    async def total(*conditions) -> int:
        value = (
            await db.execute(select(func.coalesce(func.sum(column), 0)).where(*where, *conditions))
        ).scalar_one()
        return int(value)

    week_start, prev_week_start = period_bounds(today, WEEK_DAYS)
    month_start, prev_month_start = period_bounds(today, MONTH_DAYS)

    this_week = await total(date_column >= week_start)
    last_week = await total(date_column >= prev_week_start, date_column < week_start)
    this_month = await total(date_column >= month_start)
    last_month = await total(date_column >= prev_month_start, date_column < month_start)

    return PeriodGrowth(
        wow=percent_change(this_week, last_week),
        mom=percent_change(this_month, last_month),
        this_week=this_week,
        last_week=last_week,
        this_month=this_month,
        last_month=last_month,
    )


async def _weekly_tool_totals(db: AsyncSession, start: date, end: Optional[date] = None) -> Dict[str, int]:
    conditions = [DailyToolStats.date >= start]
    if end is not None:
        conditions.append(DailyToolStats.date < end)
    rows = await db.execute(
        select(Tool.name, func.sum(DailyToolStats.downloads).label("downloads"))
        .select_from(DailyToolStats)
        .join(Tool, DailyToolStats.tool_id == Tool.id)
        .where(*conditions)
        .group_by(Tool.name)
    )
    return {r.name: int(r.downloads) for r in rows}


@degrade_gracefully(lambda *args, **kwargs: GrowthMetrics())
async def get_growth_metrics(db: AsyncSession, today: Optional[date] = None) -> GrowthMetrics:
    """
    Overall growth from daily_stats plus the biggest weekly movers.

    A tool with downloads this week but none last week counts as +100%.
    Ties keep tool-name order.
    """
    today = resolve_today(today)
    overall = await _period_totals(db, DailyStats.total_downloads, DailyStats.date, today)

    week_start, prev_week_start = period_bounds(today, WEEK_DAYS)
    this_week = await _weekly_tool_totals(db, week_start)
    last_week = await _weekly_tool_totals(db, prev_week_start, week_start)

    movers = []
    for name in sorted(set(this_week) | set(last_week)):
        current, previous = this_week.get(name, 0), last_week.get(name, 0)
        if current < MIN_WEEKLY_DOWNLOADS and previous < MIN_WEEKLY_DOWNLOADS:
            continue
        wow = percent_change(current, previous)
        if wow is None and current > 0:
            wow = 100.0
        movers.append(ToolWeekGrowth(tool=name, this_week=current, last_week=previous, wow=wow))

    growing = sorted((m for m in movers if m.wow is not None and m.wow > 0), key=lambda m: -m.wow)
    declining = sorted((m for m in movers if m.wow is not None and m.wow < 0), key=lambda m: m.wow)

    return GrowthMetrics(
        overall=overall,
        top_growing=growing[:MOVERS_LIMIT],
        top_declining=declining[:MOVERS_LIMIT],
    )


async def get_tool_growth(db: AsyncSession, tool: str, today: Optional[date] = None) -> ToolGrowth:
    """Growth periods and a complete-day sparkline for one tool."""
    today = resolve_today(today)
    tool_id = (await db.execute(select(Tool.id).where(Tool.name == tool))).scalar_one_or_none()
    if tool_id is None:
        logger.debug("Growth requested for unknown tool", tool=tool)
        return ToolGrowth()

    periods = await _period_totals(
        db, DailyToolStats.downloads, DailyToolStats.date, today, DailyToolStats.tool_id == tool_id
    )

    days = complete_days(today, settings.analytics.sparkline_days)
    series = dict(
        (
            await db.execute(
                select(DailyToolStats.date, DailyToolStats.downloads).where(
                    DailyToolStats.tool_id == tool_id,
                    DailyToolStats.date >= days[0],
                    DailyToolStats.date < today,
                )
            )
        ).all()
    )

    return ToolGrowth(**periods.model_dump(), sparkline=[series.get(d, 0) for d in days])

"""
Version discovery reporting over ``version_updates``.
"""

from datetime import date, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models import VersionUpdate
from src.queries.base import degrade_gracefully, resolve_today
from src.queries.schemas import DailyCount, VersionUpdates


def _empty(days: int = 30, *args, **kwargs) -> VersionUpdates:
    return VersionUpdates(days=days)


@degrade_gracefully(_empty)
async def get_version_updates(db: AsyncSession, days: int = 30, today: Optional[date] = None) -> VersionUpdates:
    """Versions discovered per day over ``days`` dates ending yesterday, zero-filled."""
    today = resolve_today(today)
    start = today - timedelta(days=days)

    per_day = dict(
        (
            await db.execute(
                select(VersionUpdate.date, func.sum(VersionUpdate.versions_added))
                .where(VersionUpdate.date >= start)
                .group_by(VersionUpdate.date)
            )
        ).all()
    )
    totals = (
        await db.execute(
            select(
                func.coalesce(func.sum(VersionUpdate.versions_added), 0).label("total"),
                func.count(func.distinct(VersionUpdate.tool_id)).label("unique_tools"),
            ).where(VersionUpdate.date >= start)
        )
    ).one()

    total = int(totals.total)
    return VersionUpdates(
        daily=[
            DailyCount(date=d, count=int(per_day.get(d, 0)))
            for d in (start + timedelta(days=i) for i in range(days))
        ],
        total_updates=total,
        unique_tools=totals.unique_tools or 0,
        avg_per_day=round(total / days, 1) if days > 0 else 0.0,
        days=days,
    )

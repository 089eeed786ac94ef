"""
Version update accumulation.

Called by the version-sync job whenever new releases of a tool are found.
Unlike the rollup tables, ``version_updates`` is accumulated by addition:
recording 3 then 2 new versions for the same tool and date leaves 5.
"""

from datetime import date
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.dates import Clock, utc_today
from src.database.dialect import insert_for
from src.database.models import VersionUpdate
from src.tracking.resolver import DimensionResolver

logger = structlog.get_logger(__name__)


async def record_version_updates(
    db: AsyncSession,
    tool: str,
    versions_added: int,
    day: Optional[date] = None,
    resolver: Optional[DimensionResolver] = None,
    clock: Optional[Clock] = None,
) -> int:
    """
    Add ``versions_added`` to the tool's count for ``day`` (default: today, UTC).

    Returns the tool id the count was recorded against.
    """
    if versions_added < 0:
        raise ValueError("versions_added must not be negative")

    resolver = resolver or DimensionResolver()
    tool_id = await resolver.tool_id(db, tool)
    day = day or utc_today(clock)

    if versions_added == 0:
        return tool_id

    stmt = insert_for(db, VersionUpdate).values(date=day, tool_id=tool_id, versions_added=versions_added)
    stmt = stmt.on_conflict_do_update(
        index_elements=[VersionUpdate.date, VersionUpdate.tool_id],
        set_={"versions_added": VersionUpdate.versions_added + stmt.excluded.versions_added},
    )
    await db.execute(stmt)
    await db.commit()

    logger.info("Version updates recorded", tool=tool, day=day.isoformat(), versions_added=versions_added)
    return tool_id

"""
Event Tracker

Records download and version-check events with per-UTC-day deduplication.

The same-day identity tuple is protected by a unique constraint on
``(identity..., day)``. The tracker checks for an existing row first to
avoid a write on the common duplicate path, then inserts with
``ON CONFLICT DO NOTHING``; a conflicting insert means another request won
the race and is reported as deduplicated.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.dates import Clock, day_start, to_epoch, utc_now
from src.core.exceptions import TransientStoreError
from src.core.metrics import EVENTS_TRACKED
from src.database.dialect import insert_for
from src.database.models import DownloadEvent, VersionCheckEvent
from src.tracking.resolver import DimensionResolver

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TrackResult:
    """
    Outcome of a tracking call.

    ``deduplicated`` is not an error: it only says the event was already
    counted for this UTC day.
    """
    deduplicated: bool


class EventTracker:
    """
    Per-request tracking entry points.

    Example:
        tracker = EventTracker()
        async with get_db() as db:
            result = await tracker.track_download(
                db, "node", "20.11.0", client_hash, "linux", "x64", "core:node"
            )
    """

    def __init__(self, resolver: Optional[DimensionResolver] = None, clock: Optional[Clock] = None):
        self.resolver = resolver or DimensionResolver()
        self.clock = clock or utc_now

    async def track_download(
        self,
        db: AsyncSession,
        tool: str,
        version: str,
        client_hash: str,
        os: Optional[str] = None,
        arch: Optional[str] = None,
        backend_full: Optional[str] = None,
    ) -> TrackResult:
        """Record one download unless this tool/version/client was seen today."""
        if not version:
            raise ValueError("Version must not be empty")
        if not client_hash:
            raise ValueError("Client hash must not be empty")

        try:
            tool_id = await self.resolver.tool_id(db, tool)
            backend_id = await self.resolver.backend_id(db, backend_full)
            platform_id = await self.resolver.platform_id(db, os, arch)

            now = self._now()
            created_at = to_epoch(now)
            today = now.date()

            existing = await db.execute(
                select(DownloadEvent.id)
                .where(
                    DownloadEvent.tool_id == tool_id,
                    DownloadEvent.version == version,
                    DownloadEvent.client_hash == client_hash,
                    DownloadEvent.created_at >= day_start(today),
                )
                .limit(1)
            )
            if existing.first() is not None:
                return self._deduplicated("download", tool=tool, version=version)

            stmt = (
                insert_for(db, DownloadEvent)
                .values(
                    tool_id=tool_id,
                    backend_id=backend_id,
                    version=version,
                    platform_id=platform_id,
                    client_hash=client_hash,
                    created_at=created_at,
                    day=today,
                )
                .on_conflict_do_nothing()
            )
            result = await db.execute(stmt)
        except (OperationalError, InterfaceError, asyncio.TimeoutError) as e:
            EVENTS_TRACKED.labels(kind="download", result="error").inc()
            logger.warning("Download tracking failed", tool=tool, error=str(e))
            raise TransientStoreError(f"Store unavailable while tracking download: {e}") from e

        if result.rowcount == 0:
            return self._deduplicated("download", tool=tool, version=version, raced=True)

        EVENTS_TRACKED.labels(kind="download", result="recorded").inc()
        logger.debug("Download recorded", tool=tool, version=version, day=today.isoformat())
        return TrackResult(deduplicated=False)

    async def track_version_check(self, db: AsyncSession, client_hash: str) -> TrackResult:
        """Record one CLI version check unless this client was seen today."""
        if not client_hash:
            raise ValueError("Client hash must not be empty")

        try:
            now = self._now()
            created_at = to_epoch(now)
            today = now.date()

            existing = await db.execute(
                select(VersionCheckEvent.id)
                .where(
                    VersionCheckEvent.client_hash == client_hash,
                    VersionCheckEvent.created_at >= day_start(today),
                )
                .limit(1)
            )
            if existing.first() is not None:
                return self._deduplicated("version_check")

            stmt = (
                insert_for(db, VersionCheckEvent)
                .values(client_hash=client_hash, created_at=created_at, day=today)
                .on_conflict_do_nothing()
            )
            result = await db.execute(stmt)
        except (OperationalError, InterfaceError, asyncio.TimeoutError) as e:
            EVENTS_TRACKED.labels(kind="version_check", result="error").inc()
            logger.warning("Version check tracking failed", error=str(e))
            raise TransientStoreError(f"Store unavailable while tracking version check: {e}") from e

        if result.rowcount == 0:
            return self._deduplicated("version_check", raced=True)

        EVENTS_TRACKED.labels(kind="version_check", result="recorded").inc()
        return TrackResult(deduplicated=False)

    def _now(self) -> datetime:
        now = self.clock()
        if now.tzinfo is None:
            raise ValueError("Tracker clock must return timezone-aware datetimes")
        return now.astimezone(timezone.utc)

    @staticmethod
    def _deduplicated(kind: str, raced: bool = False, **context) -> TrackResult:
        EVENTS_TRACKED.labels(kind=kind, result="deduplicated").inc()
        logger.debug("Event deduplicated", kind=kind, raced=raced, **context)
        return TrackResult(deduplicated=True)

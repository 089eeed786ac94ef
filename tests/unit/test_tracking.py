"""
Unit Tests - Dimension Resolution and Event Tracking
"""
import asyncio
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from src.core.dates import day_start
from src.core.exceptions import TransientStoreError
from src.database.models import Backend, DownloadEvent, Platform, Tool, VersionCheckEvent
from src.tracking.resolver import DimensionCache, DimensionKind, DimensionResolver
from src.tracking.tracker import EventTracker

TODAY = date(2025, 1, 15)


async def count_rows(db, model, *where) -> int:
    return (await db.execute(select(func.count()).select_from(model).where(*where))).scalar_one()


class TestDimensionResolver:
    """Tests for DimensionResolver"""

    @pytest.mark.asyncio
    async def test_tool_resolution_is_stable(self, test_db, resolver):
        """Test the same tool name always maps to the same id"""
        first = await resolver.tool_id(test_db, "node")
        second = await resolver.resolve(test_db, DimensionKind.TOOL, "node")

        assert first == second
        assert await count_rows(test_db, Tool) == 1

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(self, test_db, resolver, dimension_cache):
        """Test cached ids are returned without touching the session"""
        tool_id = await resolver.tool_id(test_db, "go")
        assert dimension_cache.get(DimensionKind.TOOL, "go") == tool_id

        class NoStore:
            async def execute(self, *args, **kwargs):
                raise AssertionError("store should not be queried")

        assert await resolver.tool_id(NoStore(), "go") == tool_id

    @pytest.mark.asyncio
    async def test_existing_row_found_by_fresh_resolver(self, test_db, resolver):
        """Test a resolver with an empty cache reads the existing row"""
        tool_id = await resolver.tool_id(test_db, "python")

        other = DimensionResolver(cache=DimensionCache())
        assert await other.tool_id(test_db, "python") == tool_id
        assert await count_rows(test_db, Tool) == 1

    @pytest.mark.asyncio
    async def test_backend_type_derived_on_create(self, test_db, resolver):
        """Test the backend type is the prefix before the separator"""
        backend_id = await resolver.backend_id(test_db, "aqua:BurntSushi/ripgrep")
        backend = (await test_db.execute(select(Backend).where(Backend.id == backend_id))).scalar_one()

        assert backend.full == "aqua:BurntSushi/ripgrep"
        assert backend.backend_type == "aqua"

    @pytest.mark.asyncio
    async def test_backend_without_prefix_is_unknown(self, test_db, resolver):
        """Test an identifier with an empty prefix is typed unknown"""
        backend_id = await resolver.backend_id(test_db, ":something")
        backend = (await test_db.execute(select(Backend).where(Backend.id == backend_id))).scalar_one()

        assert backend.backend_type == "unknown"

    @pytest.mark.asyncio
    async def test_missing_backend_and_platform_short_circuit(self, resolver):
        """Test absent keys resolve to None without a store"""

        class NoStore:
            async def execute(self, *args, **kwargs):
                raise AssertionError("store should not be queried")

        assert await resolver.backend_id(NoStore(), None) is None
        assert await resolver.backend_id(NoStore(), "") is None
        assert await resolver.platform_id(NoStore(), None, None) is None
        assert await resolver.resolve(NoStore(), DimensionKind.PLATFORM, None) is None

    @pytest.mark.asyncio
    async def test_platform_null_aware_identity(self, test_db, resolver):
        """Test (os, None) and (os, arch) are distinct platforms and repeatable"""
        linux_only = await resolver.platform_id(test_db, "linux", None)
        linux_x64 = await resolver.platform_id(test_db, "linux", "x64")

        fresh = DimensionResolver(cache=DimensionCache())
        assert await fresh.platform_id(test_db, "linux", None) == linux_only
        assert await fresh.resolve(test_db, "platform", ("linux", "x64")) == linux_x64
        assert linux_only != linux_x64
        assert await count_rows(test_db, Platform) == 2

        row = (await test_db.execute(select(Platform).where(Platform.id == linux_only))).scalar_one()
        assert row.os == "linux"
        assert row.arch is None

    @pytest.mark.asyncio
    async def test_empty_tool_name_rejected(self, test_db, resolver):
        """Test tools require a name"""
        with pytest.raises(ValueError):
            await resolver.tool_id(test_db, "")

    @pytest.mark.asyncio
    async def test_concurrent_resolution_converges(self, session_factory):
        """Test concurrent resolvers agree on one id and one row"""

        async def resolve_once():
            resolver = DimensionResolver(cache=DimensionCache())
            async with session_factory() as db:
                return await resolver.backend_id(db, "aqua:org/tool")

        ids = await asyncio.gather(*(resolve_once() for _ in range(5)))

        assert len(set(ids)) == 1
        async with session_factory() as db:
            assert await count_rows(db, Backend, Backend.full == "aqua:org/tool") == 1


class TestDimensionCache:
    """Tests for DimensionCache"""

    def test_put_keeps_first_value(self):
        """Test the cache is append-only"""
        cache = DimensionCache()

        assert cache.put(DimensionKind.TOOL, "node", 1) == 1
        assert cache.put(DimensionKind.TOOL, "node", 2) == 1
        assert cache.get(DimensionKind.TOOL, "node") == 1

    def test_kinds_are_separate(self):
        """Test equal keys of different kinds do not collide"""
        cache = DimensionCache()
        cache.put(DimensionKind.TOOL, "x", 1)
        cache.put(DimensionKind.BACKEND, "x", 7)

        assert cache.get(DimensionKind.TOOL, "x") == 1
        assert cache.get(DimensionKind.BACKEND, "x") == 7
        assert cache.size() == 2
        assert cache.size(DimensionKind.PLATFORM) == 0


class TestEventTracker:
    """Tests for EventTracker"""

    @pytest.mark.asyncio
    async def test_download_dedup_within_day(self, test_db, tracker, clock):
        """Test N calls in one UTC day store one row"""
        clock.set_day(TODAY, hour=0)
        first = await tracker.track_download(test_db, "node", "20.11.0", "client-a", "linux", "x64", "core:node")
        assert first.deduplicated is False

        for hours in (1, 5, 23):
            clock.set_day(TODAY, hour=hours)
            result = await tracker.track_download(test_db, "node", "20.11.0", "client-a", "linux", "x64", "core:node")
            assert result.deduplicated is True

        assert await count_rows(test_db, DownloadEvent) == 1

    @pytest.mark.asyncio
    async def test_download_day_boundary_reset(self, test_db, record_download):
        """Test the same identity is counted again the next UTC day"""
        assert (await record_download(TODAY, "node", "client-a")).deduplicated is False
        assert (await record_download(TODAY, "node", "client-a")).deduplicated is True
        assert (await record_download(TODAY + timedelta(days=1), "node", "client-a")).deduplicated is False

        assert await count_rows(test_db, DownloadEvent) == 2

    @pytest.mark.asyncio
    async def test_midnight_boundary(self, test_db, tracker, clock):
        """Test 23:59:59 and 00:00:00 fall on different days"""
        clock.set_day(TODAY, hour=23)
        clock.advance(minutes=59, seconds=59)
        assert (await tracker.track_download(test_db, "go", "1.22.2", "client-a")).deduplicated is False

        clock.advance(seconds=1)
        assert (await tracker.track_download(test_db, "go", "1.22.2", "client-a")).deduplicated is False

        days = (await test_db.execute(select(DownloadEvent.day).order_by(DownloadEvent.id))).scalars().all()
        assert days == [TODAY, TODAY + timedelta(days=1)]

    @pytest.mark.asyncio
    async def test_identity_includes_version_and_tool(self, test_db, record_download):
        """Test different version or tool is a new event"""
        assert (await record_download(TODAY, "node", "client-a", "20.11.0")).deduplicated is False
        assert (await record_download(TODAY, "node", "client-a", "22.1.0")).deduplicated is False
        assert (await record_download(TODAY, "go", "client-a", "20.11.0")).deduplicated is False
        assert (await record_download(TODAY, "node", "client-b", "20.11.0")).deduplicated is False

        assert await count_rows(test_db, DownloadEvent) == 4

    @pytest.mark.asyncio
    async def test_event_columns(self, test_db, record_download, clock):
        """Test the stored row carries dimensions, epoch seconds and the UTC day"""
        await record_download(TODAY, "node", "client-a", "20.11.0", "core:node", "linux", None)
        event = (await test_db.execute(select(DownloadEvent))).scalar_one()

        assert event.created_at == int(clock.now.timestamp())
        assert event.day == TODAY
        assert event.backend_id is not None
        assert event.platform_id is not None

    @pytest.mark.asyncio
    async def test_download_without_backend_or_platform(self, test_db, record_download):
        """Test optional dimensions are stored as NULL"""
        await record_download(TODAY, "kubectl", "client-a")
        event = (await test_db.execute(select(DownloadEvent))).scalar_one()

        assert event.backend_id is None
        assert event.platform_id is None

    @pytest.mark.asyncio
    async def test_version_check_dedup_is_client_only(self, test_db, record_version_check):
        """Test version checks collapse per client per day"""
        assert (await record_version_check(TODAY, "client-a")).deduplicated is False
        assert (await record_version_check(TODAY, "client-a")).deduplicated is True
        assert (await record_version_check(TODAY, "client-b")).deduplicated is False
        assert (await record_version_check(TODAY + timedelta(days=1), "client-a")).deduplicated is False

        assert await count_rows(test_db, VersionCheckEvent) == 3

    @pytest.mark.asyncio
    async def test_race_loser_reports_deduplicated(self, test_db, tracker, clock):
        """Test the unique constraint turns a lost race into deduplicated"""
        await tracker.track_download(test_db, "node", "20.11.0", "client-a")
        await test_db.commit()

        # Hide the row from the existence check so only the unique constraint
        # sees it, as for a racer that checked before the first insert landed
        await test_db.execute(update(DownloadEvent).values(created_at=day_start(TODAY) - 1))
        await test_db.commit()

        result = await tracker.track_download(test_db, "node", "20.11.0", "client-a")

        assert result.deduplicated is True
        assert await count_rows(test_db, DownloadEvent) == 1

    @pytest.mark.asyncio
    async def test_validation(self, test_db, tracker):
        """Test empty identity fields are rejected"""
        with pytest.raises(ValueError):
            await tracker.track_download(test_db, "node", "", "client-a")
        with pytest.raises(ValueError):
            await tracker.track_download(test_db, "node", "1.0.0", "")
        with pytest.raises(ValueError):
            await tracker.track_version_check(test_db, "")

    @pytest.mark.asyncio
    async def test_naive_clock_rejected(self, test_db, resolver):
        """Test the tracker refuses naive datetimes"""
        from datetime import datetime

        naive = EventTracker(resolver=resolver, clock=lambda: datetime(2025, 1, 15, 12))
        with pytest.raises(ValueError):
            await naive.track_version_check(test_db, "client-a")

    @pytest.mark.asyncio
    async def test_store_failure_is_transient_error(self, clock):
        """Test connection failures surface as TransientStoreError"""

        class FailingStore:
            async def execute(self, *args, **kwargs):
                raise OperationalError("SELECT 1", {}, Exception("connection lost"))

        cache = DimensionCache()
        cache.put(DimensionKind.TOOL, "node", 1)
        tracker = EventTracker(resolver=DimensionResolver(cache=cache), clock=clock)

        with pytest.raises(TransientStoreError):
            await tracker.track_download(FailingStore(), "node", "1.0.0", "client-a")
        with pytest.raises(TransientStoreError):
            await tracker.track_version_check(FailingStore(), "client-a")

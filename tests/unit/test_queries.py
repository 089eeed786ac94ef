"""
Unit Tests - Query Layer
"""
from datetime import date, timedelta

import pytest
from sqlalchemy import text

from src.database.models import (
    DailyCombinedStats,
    DailyMauStats,
    DailyRawSummary,
    DailyStats,
    DailyToolStats,
    DailyVersionStats,
)
from src.queries import (
    get_30_day_downloads,
    get_backend_stats,
    get_batch_sparklines,
    get_dau_mau_history,
    get_download_stats,
    get_downloads_by_backend,
    get_growth_metrics,
    get_mau,
    get_tool_growth,
    get_top_tools,
    get_top_tools_by_backend,
    get_trending_tools,
    get_version_check_dau_mau,
    get_version_trends,
    get_version_updates,
)
from src.rollups.aggregator import RollupAggregator
from src.rollups.version_updates import record_version_updates

TODAY = date(2025, 1, 15)
YESTERDAY = TODAY - timedelta(days=1)


@pytest.fixture
def seed_downloads(test_db, record_download):
    """Downloads over the last days with rollups computed"""

    async def _seed():
        await record_download(YESTERDAY, "node", "a", "20.11.0", "core:node", "linux", "x64")
        await record_download(YESTERDAY, "node", "b", "22.1.0", "core:node", "macos", "arm64")
        await record_download(YESTERDAY, "ripgrep", "a", "14.1.0", "aqua:BurntSushi/ripgrep", "linux", "x64")
        await record_download(TODAY - timedelta(days=3), "node", "c", "20.11.0", "core:node")
        await record_download(TODAY, "node", "d", "20.11.0", "core:node")

        aggregator = RollupAggregator()
        for offset in range(4):
            await aggregator.compute_rollups(test_db, TODAY - timedelta(days=offset))

    return _seed


async def add_tool_days(db, resolver, tool: str, downloads_by_day: dict) -> None:
    tool_id = await resolver.tool_id(db, tool)
    db.add_all([
        DailyToolStats(date=day, tool_id=tool_id, downloads=n, unique_clients=n)
        for day, n in downloads_by_day.items()
    ])
    await db.commit()


class TestDownloadStats:
    """Tests for download statistics reads"""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, test_db):
        """Test an unknown tool returns an empty breakdown"""
        stats = await get_download_stats(test_db, "nope", today=TODAY)

        assert stats.total == 0
        assert stats.by_version == []
        assert stats.daily == []

    @pytest.mark.asyncio
    async def test_tool_breakdown(self, test_db, seed_downloads, resolver):
        """Test totals include summaries and daily excludes today"""
        await seed_downloads()
        node = await resolver.tool_id(test_db, "node")
        test_db.add(DailyRawSummary(
            tool_id=node, backend_id=None, version="18.0.0", platform_id=None,
            date=TODAY - timedelta(days=200), count=10, unique_clients=4,
        ))
        await test_db.commit()

        stats = await get_download_stats(test_db, "node", today=TODAY)

        assert stats.total == 14
        assert stats.by_version[0].version == "20.11.0"
        assert stats.by_version[0].count == 3
        assert {o.os: o.count for o in stats.by_os} == {"linux": 1, "macos": 1, None: 2}
        assert [(d.date, d.count) for d in stats.daily] == [(TODAY - timedelta(days=3), 1), (YESTERDAY, 2)]
        months = {m.month: m.count for m in stats.monthly}
        assert months["2025-01"] == 4
        assert months[(TODAY - timedelta(days=200)).strftime("%Y-%m")] == 10

    @pytest.mark.asyncio
    async def test_top_tools(self, test_db, seed_downloads):
        """Test all-time ranking and the limit"""
        await seed_downloads()

        top = await get_top_tools(test_db, limit=1)

        assert top.total == 5
        assert [(t.tool, t.count) for t in top.tools] == [("node", 4)]

    @pytest.mark.asyncio
    async def test_30_day_downloads(self, test_db, seed_downloads):
        """Test per-tool sums come from daily_tool_stats"""
        await seed_downloads()

        assert await get_30_day_downloads(test_db, today=TODAY) == {"node": 4, "ripgrep": 1}

    @pytest.mark.asyncio
    async def test_mau_prefers_today_then_yesterday(self, test_db):
        """Test the MAU snapshot fallback order"""
        assert await get_mau(test_db, today=TODAY) == 0

        test_db.add(DailyMauStats(date=YESTERDAY, mau=7))
        await test_db.commit()
        assert await get_mau(test_db, today=TODAY) == 7

        test_db.add(DailyMauStats(date=TODAY, mau=9))
        await test_db.commit()
        assert await get_mau(test_db, today=TODAY) == 9


class TestBackendStats:
    """Tests for backend reads"""

    @pytest.mark.asyncio
    async def test_downloads_by_backend(self, test_db, seed_downloads):
        """Test backend types sorted by downloads"""
        await seed_downloads()

        rows = await get_downloads_by_backend(test_db, today=TODAY)

        assert [(r.backend, r.count) for r in rows] == [("core", 4), ("aqua", 1)]

    @pytest.mark.asyncio
    async def test_top_tools_by_backend(self, test_db, seed_downloads):
        """Test top tools are grouped per backend type"""
        await seed_downloads()

        top = await get_top_tools_by_backend(test_db, limit=5, today=TODAY)

        assert [(t.tool, t.count) for t in top["core"]] == [("node", 4)]
        assert [(t.tool, t.count) for t in top["aqua"]] == [("ripgrep", 1)]

    @pytest.mark.asyncio
    async def test_backend_stats_combines_both(self, test_db, seed_downloads):
        """Test the combined backend read"""
        await seed_downloads()

        stats = await get_backend_stats(test_db, today=TODAY)

        assert stats.downloads_by_backend[0].backend == "core"
        assert set(stats.top_tools_by_backend) == {"core", "aqua"}


class TestTrends:
    """Tests for DAU/MAU history and sparklines"""

    @pytest.mark.asyncio
    async def test_dau_mau_history_zero_filled(self, test_db):
        """Test one point per complete day and current MAU"""
        test_db.add_all([
            DailyCombinedStats(date=YESTERDAY, unique_clients=4),
            DailyMauStats(date=YESTERDAY, mau=11),
            DailyMauStats(date=TODAY, mau=12),
        ])
        await test_db.commit()

        history = await get_dau_mau_history(test_db, days=7, today=TODAY)

        assert len(history.daily) == 6
        assert history.daily[0].date == TODAY - timedelta(days=6)
        assert history.daily[-1].date == YESTERDAY
        assert (history.daily[-1].dau, history.daily[-1].mau) == (4, 11)
        assert history.daily[0].dau == 0
        assert history.current_mau == 12

    @pytest.mark.asyncio
    async def test_dau_mau_history_falls_back_to_last_day(self, test_db):
        """Test current MAU without a snapshot for today"""
        test_db.add(DailyMauStats(date=YESTERDAY, mau=11))
        await test_db.commit()

        history = await get_dau_mau_history(test_db, days=3, today=TODAY)

        assert history.current_mau == 11

    @pytest.mark.asyncio
    async def test_version_check_dau_mau(self, test_db, record_version_check):
        """Test version-check DAU from the rollup and live MAU"""
        await record_version_check(TODAY - timedelta(days=40), "old")
        await record_version_check(TODAY - timedelta(days=2), "a")
        await record_version_check(TODAY, "b")
        test_db.add(DailyVersionStats(date=TODAY - timedelta(days=2), total_checks=1, unique_clients=1))
        await test_db.commit()

        result = await get_version_check_dau_mau(test_db, days=5, today=TODAY)

        assert [p.dau for p in result.daily] == [0, 0, 1, 0]
        assert result.current_mau == 2

    @pytest.mark.asyncio
    async def test_batch_sparklines(self, test_db, seed_downloads):
        """Test 13 complete days per known tool"""
        await seed_downloads()

        lines = await get_batch_sparklines(test_db, ["node", "ripgrep", "missing"], today=TODAY)

        assert set(lines) == {"node", "ripgrep"}
        assert len(lines["node"]) == 13
        assert lines["node"][-1] == 2
        assert lines["node"][-3] == 1
        assert sum(lines["ripgrep"]) == 1

    @pytest.mark.asyncio
    async def test_batch_sparklines_empty(self, test_db):
        """Test no tools means no sparklines"""
        assert await get_batch_sparklines(test_db, [], today=TODAY) == {}


class TestGrowth:
    """Tests for week-over-week and month-over-month growth"""

    @pytest.fixture
    def seed_growth(self, test_db, resolver):
        async def _seed():
            test_db.add_all([
                DailyStats(date=date(2025, 1, 10), total_downloads=30, unique_clients=10),
                DailyStats(date=date(2025, 1, 3), total_downloads=20, unique_clients=10),
                DailyStats(date=date(2024, 12, 1), total_downloads=50, unique_clients=10),
            ])
            await test_db.commit()
            await add_tool_days(test_db, resolver, "node", {date(2025, 1, 10): 20, date(2025, 1, 3): 10})
            await add_tool_days(test_db, resolver, "go", {date(2025, 1, 10): 5, date(2025, 1, 3): 15})
            await add_tool_days(test_db, resolver, "tiny", {date(2025, 1, 10): 3, date(2025, 1, 3): 1})
            await add_tool_days(test_db, resolver, "fresh", {date(2025, 1, 10): 12})

        return _seed

    @pytest.mark.asyncio
    async def test_overall_periods(self, test_db, seed_growth):
        """Test trailing week and month totals and percentages"""
        await seed_growth()

        growth = await get_growth_metrics(test_db, today=TODAY)

        assert (growth.overall.this_week, growth.overall.last_week) == (30, 20)
        assert growth.overall.wow == 50.0
        assert (growth.overall.this_month, growth.overall.last_month) == (50, 50)
        assert growth.overall.mom == 0.0

    @pytest.mark.asyncio
    async def test_movers(self, test_db, seed_growth):
        """Test growing and declining tools, low-volume tools skipped"""
        await seed_growth()

        growth = await get_growth_metrics(test_db, today=TODAY)

        assert [(t.tool, t.wow) for t in growth.top_growing] == [("fresh", 100.0), ("node", 100.0)]
        assert [t.tool for t in growth.top_declining] == ["go"]
        assert round(growth.top_declining[0].wow, 2) == -66.67

    @pytest.mark.asyncio
    async def test_empty_store(self, test_db):
        """Test no rollups means no percentages"""
        growth = await get_growth_metrics(test_db, today=TODAY)

        assert growth.overall.wow is None
        assert growth.overall.mom is None
        assert growth.top_growing == []

    @pytest.mark.asyncio
    async def test_tool_growth(self, test_db, seed_growth):
        """Test per-tool periods and sparkline"""
        await seed_growth()

        growth = await get_tool_growth(test_db, "node", today=TODAY)

        assert (growth.this_week, growth.last_week, growth.wow) == (20, 10, 100.0)
        assert (growth.this_month, growth.last_month, growth.mom) == (30, 0, None)
        assert len(growth.sparkline) == 13
        assert growth.sparkline[1] == 10
        assert growth.sparkline[8] == 20
        assert sum(growth.sparkline) == 30

    @pytest.mark.asyncio
    async def test_tool_growth_unknown_tool(self, test_db):
        """Test an unknown tool has no growth"""
        growth = await get_tool_growth(test_db, "nope", today=TODAY)

        assert growth.wow is None
        assert growth.mom is None
        assert growth.sparkline == []


class TestVersionTrends:
    """Tests for get_version_trends"""

    @pytest.mark.asyncio
    async def test_shares_timeline_and_trends(self, test_db, record_download, resolver):
        """Test shares include summaries and trends compare first and last week"""
        await record_download(date(2025, 1, 2), "node", "a", "20")
        await record_download(date(2025, 1, 2), "node", "b", "20")
        await record_download(date(2025, 1, 13), "node", "a", "20")
        await record_download(date(2025, 1, 3), "node", "c", "22")
        for client in ("c", "d", "e"):
            await record_download(date(2025, 1, 12), "node", client, "22")
        await record_download(date(2025, 1, 4), "node", "f", "18")
        await record_download(date(2025, 1, 11), "node", "f", "18")
        test_db.add(DailyRawSummary(
            tool_id=await resolver.tool_id(test_db, "node"), backend_id=None, version="16",
            platform_id=None, date=date(2025, 1, 5), count=5, unique_clients=5,
        ))
        await test_db.commit()

        trends = await get_version_trends(test_db, "node", days=14, today=TODAY)

        assert [(v.version, v.downloads, v.trend) for v in trends.versions] == [
            ("16", 5, "declining"),
            ("22", 4, "growing"),
            ("20", 3, "declining"),
            ("18", 2, "stable"),
        ]
        assert round(trends.versions[0].share, 2) == 35.71
        assert len(trends.timeline) == 13
        assert trends.timeline[0].date == date(2025, 1, 2)
        assert trends.timeline[0].counts == {"16": 0, "22": 0, "20": 2, "18": 0}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, test_db):
        """Test an unknown tool has no versions"""
        trends = await get_version_trends(test_db, "nope", today=TODAY)

        assert trends.versions == []
        assert trends.timeline == []


class TestTrendingTools:
    """Tests for get_trending_tools"""

    @pytest.mark.asyncio
    async def test_recent_momentum_ranks_first(self, test_db, resolver):
        """Test the score compares the last 3 complete days with the 27 before"""
        window = [TODAY - timedelta(days=i) for i in range(30, 0, -1)]
        rising = {d: 1 for d in window[:-3]}
        rising.update({d: 5 for d in window[-3:]})
        rising[TODAY] = 100
        await add_tool_days(test_db, resolver, "rising", rising)
        await add_tool_days(test_db, resolver, "steady", {d: 2 for d in window})
        await add_tool_days(test_db, resolver, "new", {d: 3 for d in window[-3:]})

        trending = await get_trending_tools(test_db, limit=2, today=TODAY)

        assert [(t.name, t.trending_score, t.downloads_30d) for t in trending] == [
            ("rising", 400.0, 42),
            ("steady", 0.0, 60),
        ]
        assert trending[0].sparkline == [1] * 10 + [5] * 3

    @pytest.mark.asyncio
    async def test_no_rollups(self, test_db):
        """Test an empty store has no trending tools"""
        assert await get_trending_tools(test_db, today=TODAY) == []


class TestVersionUpdatesRead:
    """Tests for get_version_updates"""

    @pytest.mark.asyncio
    async def test_zero_filled_summary(self, test_db, resolver):
        """Test daily series, totals and average"""
        await record_version_updates(test_db, "node", 3, day=YESTERDAY, resolver=resolver)
        await record_version_updates(test_db, "go", 2, day=YESTERDAY, resolver=resolver)
        await record_version_updates(test_db, "node", 1, day=TODAY - timedelta(days=4), resolver=resolver)

        result = await get_version_updates(test_db, days=5, today=TODAY)

        assert [d.date for d in result.daily] == [TODAY - timedelta(days=5 - i) for i in range(5)]
        assert [d.count for d in result.daily] == [0, 1, 0, 0, 5]
        assert result.total_updates == 6
        assert result.unique_tools == 2
        assert result.avg_per_day == 1.2
        assert result.days == 5


class TestGracefulDegradation:
    """Tests for reads against missing tables"""

    @pytest.mark.asyncio
    async def test_missing_tables_return_empty(self, test_db):
        """Test MAU, history and version update reads degrade to empty results"""
        for table in ("daily_mau_stats", "daily_combined_stats", "version_updates", "daily_version_stats"):
            await test_db.execute(text(f"DROP TABLE {table}"))
        await test_db.commit()

        assert await get_mau(test_db, today=TODAY) == 0

        history = await get_dau_mau_history(test_db, days=7, today=TODAY)
        assert history.daily == []
        assert history.current_mau == 0

        checks = await get_version_check_dau_mau(test_db, days=7, today=TODAY)
        assert checks.daily == []

        updates = await get_version_updates(test_db, days=7, today=TODAY)
        assert updates.daily == []
        assert updates.total_updates == 0
        assert updates.days == 7

    @pytest.mark.asyncio
    async def test_missing_rollup_tables(self, test_db):
        """Test growth and trending reads degrade to empty results"""
        for table in ("daily_stats", "daily_tool_stats"):
            await test_db.execute(text(f"DROP TABLE {table}"))
        await test_db.commit()

        growth = await get_growth_metrics(test_db, today=TODAY)
        assert growth.overall.this_week == 0
        assert growth.top_growing == []

        assert await get_trending_tools(test_db, today=TODAY) == []

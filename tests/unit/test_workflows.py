"""
Unit Tests - Prefect Task Bodies
"""
from datetime import date

import pytest
import pytest_asyncio

from src.core.exceptions import PartialRunError
from src.database.connection import close_database, create_schema, init_database
from src.rollups.aggregator import RollupAggregator
from workflows.daily_rollup import run_backfill, run_daily_job

TODAY = date(2025, 1, 15)


@pytest_asyncio.fixture
async def workflow_database(tmp_path):
    """Module-level engine the workflow tasks pick up"""
    engine = await init_database(f"sqlite+aiosqlite:///{tmp_path / 'flow.db'}")
    await create_schema(engine)

    yield engine

    await close_database()


async def broken(self, db, day):
    raise RuntimeError("rollup exploded")


class TestWorkflowTasks:
    """Tests for the tasks wrapping DailyJob"""

    @pytest.mark.asyncio
    async def test_daily_task_returns_job_report(self, workflow_database):
        """Test the task reports the daily job's own step order"""
        summary = await run_daily_job.fn(TODAY)

        assert summary["status"] == "success"
        assert [(s["step"], s["day"]) for s in summary["steps"]] == [
            ("rollups", "2025-01-14"), ("rollups", "2025-01-15"),
            ("version_stats", "2025-01-14"), ("version_stats", "2025-01-15"),
            ("mau_stats", "2025-01-14"), ("mau_stats", "2025-01-15"),
            ("compaction", None),
        ]

    @pytest.mark.asyncio
    async def test_daily_task_raises_on_failed_steps(self, workflow_database, monkeypatch):
        """Test a partial run raises with the report attached"""
        monkeypatch.setattr(RollupAggregator, "compute_rollups", broken)

        with pytest.raises(PartialRunError) as exc_info:
            await run_daily_job.fn(TODAY)

        summary = exc_info.value.summary
        assert summary["status"] == "partial_failure"
        assert [s["step"] for s in summary["steps"] if s["status"] == "failed"] == ["rollups", "rollups"]

    @pytest.mark.asyncio
    async def test_backfill_task(self, workflow_database, monkeypatch):
        """Test backfill summaries and failed dates"""
        summary = await run_backfill.fn(2, TODAY)
        assert summary["failed_days"] == []

        monkeypatch.setattr(RollupAggregator, "compute_rollups", broken)
        with pytest.raises(PartialRunError) as exc_info:
            await run_backfill.fn(2, TODAY)

        assert exc_info.value.summary["failed_days"] == ["2025-01-15", "2025-01-14"]

"""
Test Suite Configuration
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings
from src.database.connection import build_engine, build_session_factory, create_schema
from src.tracking.resolver import DimensionCache, DimensionResolver
from src.tracking.tracker import EventTracker

TODAY = date(2025, 1, 15)


class MutableClock:
    """Timezone-aware clock the tests move by hand"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set_day(self, day: date, hour: int = 12) -> None:
        self.now = datetime.combine(day, time(hour=hour), tzinfo=timezone.utc)

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    """Create test settings"""
    monkeypatch.setenv("APP_ENV", "testing")
    monkeypatch.setenv("DEBUG", "true")
    return Settings()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime.combine(TODAY, time(hour=12), tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """File-backed SQLite engine so separate sessions share one database"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'telemetry.db'}", echo=False)
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def dimension_cache() -> DimensionCache:
    return DimensionCache()


@pytest.fixture
def resolver(dimension_cache) -> DimensionResolver:
    return DimensionResolver(cache=dimension_cache)


@pytest.fixture
def tracker(resolver, clock) -> EventTracker:
    return EventTracker(resolver=resolver, clock=clock)


@pytest.fixture
def record_download(test_db, tracker, clock):
    """Track one download at noon UTC on ``day`` and commit it"""

    async def _record(
        day: date,
        tool: str,
        client: str,
        version: str = "1.0.0",
        backend: Optional[str] = None,
        os: Optional[str] = None,
        arch: Optional[str] = None,
    ):
        clock.set_day(day)
        result = await tracker.track_download(test_db, tool, version, client, os, arch, backend)
        await test_db.commit()
        return result

    return _record


@pytest.fixture
def record_version_check(test_db, tracker, clock):
    """Track one version check at noon UTC on ``day`` and commit it"""

    async def _record(day: date, client: str):
        clock.set_day(day)
        result = await tracker.track_version_check(test_db, client)
        await test_db.commit()
        return result

    return _record

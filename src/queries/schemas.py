"""
Read models returned by the query layer.
"""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class VersionCount(BaseModel):
    version: str
    count: int


class OsCount(BaseModel):
    os: Optional[str]
    count: int


class DailyCount(BaseModel):
    date: date
    count: int


class MonthlyCount(BaseModel):
    """Downloads in one calendar month, ``month`` formatted YYYY-MM"""
    month: str
    count: int


class DownloadStats(BaseModel):
    """Per-tool download breakdown"""
    total: int = 0
    by_version: List[VersionCount] = Field(default_factory=list)
    by_os: List[OsCount] = Field(default_factory=list)
    daily: List[DailyCount] = Field(default_factory=list)
    monthly: List[MonthlyCount] = Field(default_factory=list)


class ToolCount(BaseModel):
    tool: str
    count: int


class TopTools(BaseModel):
    total: int
    tools: List[ToolCount]


class BackendCount(BaseModel):
    backend: str
    count: int


class BackendStats(BaseModel):
    downloads_by_backend: List[BackendCount]
    top_tools_by_backend: Dict[str, List[ToolCount]]


class DauMauPoint(BaseModel):
    date: date
    dau: int
    mau: int


class DauMauHistory(BaseModel):
    daily: List[DauMauPoint] = Field(default_factory=list)
    current_mau: int = 0


class DauPoint(BaseModel):
    date: date
    dau: int


class VersionCheckDauMau(BaseModel):
    daily: List[DauPoint] = Field(default_factory=list)
    current_mau: int = 0


class VersionUpdates(BaseModel):
    """Version discovery summary over the trailing ``days`` dates"""
    daily: List[DailyCount] = Field(default_factory=list)
    total_updates: int = 0
    unique_tools: int = 0
    avg_per_day: float = 0.0
    days: int


class PeriodGrowth(BaseModel):
    """
    Downloads in the trailing week and month against the period before.

    ``wow`` and ``mom`` are percentages, None when the earlier period had no
    downloads.
    """
    wow: Optional[float] = None
    mom: Optional[float] = None
    this_week: int = 0
    last_week: int = 0
    this_month: int = 0
    last_month: int = 0


class ToolWeekGrowth(BaseModel):
    tool: str
    this_week: int
    last_week: int
    wow: Optional[float]


class GrowthMetrics(BaseModel):
    overall: PeriodGrowth = Field(default_factory=PeriodGrowth)
    top_growing: List[ToolWeekGrowth] = Field(default_factory=list)
    top_declining: List[ToolWeekGrowth] = Field(default_factory=list)


class ToolGrowth(PeriodGrowth):
    sparkline: List[int] = Field(default_factory=list)


class VersionShare(BaseModel):
    """One version's downloads and percentage share; ``trend`` is growing, declining or stable"""
    version: str
    downloads: int
    share: float
    trend: str = "stable"


class VersionTimelinePoint(BaseModel):
    date: date
    counts: Dict[str, int]


class VersionTrends(BaseModel):
    versions: List[VersionShare] = Field(default_factory=list)
    timeline: List[VersionTimelinePoint] = Field(default_factory=list)


class TrendingTool(BaseModel):
    name: str
    downloads_30d: int
    trending_score: float
    sparkline: List[int]

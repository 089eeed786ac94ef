"""
Queries Module

Read-only reporting over rollup, summary and fact tables.
"""
from .backends import get_backend_stats, get_downloads_by_backend, get_top_tools_by_backend
from .growth import get_growth_metrics, get_tool_growth
from .stats import get_30_day_downloads, get_download_stats, get_mau, get_top_tools
from .trends import (
    get_batch_sparklines,
    get_dau_mau_history,
    get_trending_tools,
    get_version_check_dau_mau,
    get_version_trends,
)
from .versions import get_version_updates

__all__ = [
    "get_backend_stats",
    "get_downloads_by_backend",
    "get_top_tools_by_backend",
    "get_growth_metrics",
    "get_tool_growth",
    "get_30_day_downloads",
    "get_download_stats",
    "get_mau",
    "get_top_tools",
    "get_batch_sparklines",
    "get_dau_mau_history",
    "get_trending_tools",
    "get_version_check_dau_mau",
    "get_version_trends",
    "get_version_updates",
]

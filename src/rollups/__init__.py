"""
Rollups Module

Per-date summary computation and version update accumulation.
"""
from .aggregator import BackfillResult, RollupAggregator, RollupResult, backfill_rollups
from .sources import (
    CompactedSummarySource,
    DownloadFactSource,
    FactTotals,
    RawDownloadSource,
    default_sources,
)
from .version_updates import record_version_updates

__all__ = [
    "BackfillResult",
    "RollupAggregator",
    "RollupResult",
    "backfill_rollups",
    "CompactedSummarySource",
    "DownloadFactSource",
    "FactTotals",
    "RawDownloadSource",
    "default_sources",
    "record_version_updates",
]

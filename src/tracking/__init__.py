"""
Tracking Module - dimension resolution and deduplicated event recording
"""
from .resolver import DimensionCache, DimensionKind, DimensionResolver, get_process_cache
from .tracker import EventTracker, TrackResult

__all__ = [
    "DimensionCache",
    "DimensionKind",
    "DimensionResolver",
    "get_process_cache",
    "EventTracker",
    "TrackResult",
]

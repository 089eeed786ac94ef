"""
Core Module - shared errors, date helpers and metrics
"""
from .exceptions import (
    TelemetryError,
    TransientStoreError,
    SchemaNotReadyError,
    CompactionIntegrityError,
    PartialRunError,
)
from .dates import utc_now, utc_today, day_start, backend_type_of

__all__ = [
    "TelemetryError",
    "TransientStoreError",
    "SchemaNotReadyError",
    "CompactionIntegrityError",
    "PartialRunError",
    "utc_now",
    "utc_today",
    "day_start",
    "backend_type_of",
]

"""Error taxonomy for tracking, rollups and compaction."""

from datetime import date
from typing import Optional


class TelemetryError(Exception):
    """Base class for all telemetry errors"""


class TransientStoreError(TelemetryError):
    """The store timed out or the connection failed; the request may be retried."""


class SchemaNotReadyError(TelemetryError):
    """A table the operation depends on does not exist yet."""

    def __init__(self, table: str, message: Optional[str] = None):
        self.table = table
        super().__init__(message or f"Table not available: {table}")


class CompactionIntegrityError(TelemetryError):
    """Summaries written for a day do not match the raw rows about to be deleted."""

    def __init__(self, day: date, expected: int, actual: int, stage: str):
        self.day = day
        self.expected = expected
        self.actual = actual
        self.stage = stage
        super().__init__(
            f"Compaction for {day.isoformat()} failed at {stage}: "
            f"expected {expected} rows, got {actual}"
        )


class PartialRunError(TelemetryError):
    """A scheduled run finished, but some steps or dates failed."""

    def __init__(self, summary: dict):
        self.summary = summary
        super().__init__("Run finished with failed steps or dates")

"""Prometheus counters for the tracking path and the scheduled job."""

from prometheus_client import Counter

EVENTS_TRACKED = Counter(
    "telemetry_events_tracked_total",
    "Telemetry events received by the tracker",
    ["kind", "result"],
)

DIMENSIONS_CREATED = Counter(
    "telemetry_dimensions_resolved_total",
    "Dimension lookups that reached the store",
    ["kind", "outcome"],
)

ROLLUP_RUNS = Counter(
    "telemetry_rollup_runs_total",
    "Rollup computations by rollup kind and status",
    ["rollup", "status"],
)

COMPACTED_ROWS = Counter(
    "telemetry_compacted_rows_total",
    "Raw download rows removed by compaction",
)

COMPACTION_FAILURES = Counter(
    "telemetry_compaction_failed_days_total",
    "Days whose compaction was rolled back",
)

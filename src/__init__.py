"""Tool telemetry tracking, rollups and retention."""

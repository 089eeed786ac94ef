"""
Database Models - Telemetry Star Schema

This module defines the data models for tool download and CLI version-check
telemetry. The schema consists of:

Dimension Tables (append-only, never deleted):
- Tool: tool names
- Backend: full backend identifiers ("aqua:org/repo") and their type prefix
- Platform: (os, arch) pairs

Fact Tables (append-only, at most one row per identity per UTC day):
- DownloadEvent: one successful tool-version fetch
- VersionCheckEvent: one CLI heartbeat

Rollup Tables (owned by the aggregator, replaced per date):
- DailyStats, DailyToolStats, DailyBackendStats, DailyToolBackendStats
- DailyVersionStats, DailyCombinedStats, DailyMauStats

Accumulated / Compacted Tables:
- VersionUpdate: versions discovered per tool per day (additive)
- DailyRawSummary: download events past the retention window
"""

import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# DIMENSION TABLES
# =============================================================================

class Tool(Base):
    """Tool dimension, keyed by tool name."""
    __tablename__ = "tools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)


class Backend(Base):
    """
    Backend dimension.

    ``backend_type`` is derived from ``full`` once, when the row is created,
    so rollups can group by type without string functions in SQL.
    """
    __tablename__ = "backends"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    backend_type: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        Index("ix_backends_type", "backend_type"),
    )


class Platform(Base):
    """
    Platform dimension.

    ``os`` and ``arch`` are individually nullable. Uniqueness of the pair,
    NULLs included, is carried by ``platform_key``.
    """
    __tablename__ = "platforms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    os: Mapped[Optional[str]] = mapped_column(String(64))
    arch: Mapped[Optional[str]] = mapped_column(String(64))
    platform_key: Mapped[str] = mapped_column(String(130), unique=True, nullable=False)

    @staticmethod
    def key_for(os: Optional[str], arch: Optional[str]) -> str:
        return f"{os or ''}:{arch or ''}"


# =============================================================================
# FACT TABLES
# =============================================================================

class DownloadEvent(Base):
    """
    Download Fact Table

    One row per (tool, version, client) per UTC day. ``created_at`` is epoch
    seconds; ``day`` is its UTC calendar date.
    """
    __tablename__ = "download_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tool_id: Mapped[int] = mapped_column(ForeignKey("tools.id"), nullable=False)
    backend_id: Mapped[Optional[int]] = mapped_column(ForeignKey("backends.id"))
    version: Mapped[str] = mapped_column(String(128), nullable=False)
    platform_id: Mapped[Optional[int]] = mapped_column(ForeignKey("platforms.id"))
    client_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    day: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("tool_id", "version", "client_hash", "day", name="uq_download_events_daily"),
        Index("ix_download_events_day", "day"),
        Index("ix_download_events_created_at", "created_at"),
        Index("ix_download_events_tool", "tool_id"),
        Index("ix_download_events_dedup", "tool_id", "version", "client_hash", "created_at"),
    )


class VersionCheckEvent(Base):
    """Version-check Fact Table, one row per client per UTC day."""
    __tablename__ = "version_check_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    day: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("client_hash", "day", name="uq_version_check_events_daily"),
        Index("ix_version_check_events_day", "day"),
        Index("ix_version_check_events_created_at", "created_at"),
    )


# =============================================================================
# ROLLUP TABLES
# =============================================================================

class DailyStats(Base):
    """Global downloads and DAU per date"""
    __tablename__ = "daily_stats"

    date: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    total_downloads: Mapped[int] = mapped_column(Integer, nullable=False)
    unique_clients: Mapped[int] = mapped_column(Integer, nullable=False)


class DailyToolStats(Base):
    """Per-tool downloads and distinct clients per date"""
    __tablename__ = "daily_tool_stats"

    date: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    tool_id: Mapped[int] = mapped_column(ForeignKey("tools.id"), primary_key=True)
    downloads: Mapped[int] = mapped_column(Integer, nullable=False)
    unique_clients: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_daily_tool_stats_tool", "tool_id"),
    )


class DailyBackendStats(Base):
    """Per-backend-type downloads and distinct clients per date"""
    __tablename__ = "daily_backend_stats"

    date: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    backend_type: Mapped[str] = mapped_column(String(64), primary_key=True)
    downloads: Mapped[int] = mapped_column(Integer, nullable=False)
    unique_clients: Mapped[int] = mapped_column(Integer, nullable=False)


class DailyToolBackendStats(Base):
    """Per-tool per-backend-type downloads (no distinct clients)"""
    __tablename__ = "daily_tool_backend_stats"

    date: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    tool_id: Mapped[int] = mapped_column(ForeignKey("tools.id"), primary_key=True)
    backend_type: Mapped[str] = mapped_column(String(64), primary_key=True)
    downloads: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_daily_tool_backend_stats_type", "backend_type"),
    )


class DailyVersionStats(Base):
    """Version-check volume and DAU per date"""
    __tablename__ = "daily_version_stats"

    date: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    total_checks: Mapped[int] = mapped_column(Integer, nullable=False)
    unique_clients: Mapped[int] = mapped_column(Integer, nullable=False)


class DailyCombinedStats(Base):
    """Distinct clients across downloads and version checks per date"""
    __tablename__ = "daily_combined_stats"

    date: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    unique_clients: Mapped[int] = mapped_column(Integer, nullable=False)


class DailyMauStats(Base):
    """Trailing-window distinct clients as of each date"""
    __tablename__ = "daily_mau_stats"

    date: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    mau: Mapped[int] = mapped_column(Integer, nullable=False)


# =============================================================================
# ACCUMULATED / COMPACTED TABLES
# =============================================================================

class VersionUpdate(Base):
    """Newly discovered versions per tool per date (accumulated by addition)"""
    __tablename__ = "version_updates"

    date: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    tool_id: Mapped[int] = mapped_column(ForeignKey("tools.id"), primary_key=True)
    versions_added: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class DailyRawSummary(Base):
    """
    Compacted download events.

    One row per (tool, backend, version, platform, date) for dates past the
    retention window. Backend and platform may be NULL, so lookups compare
    them NULL-aware instead of relying on a unique constraint.
    """
    __tablename__ = "daily_raw_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tool_id: Mapped[int] = mapped_column(ForeignKey("tools.id"), nullable=False)
    backend_id: Mapped[Optional[int]] = mapped_column(ForeignKey("backends.id"))
    version: Mapped[str] = mapped_column(String(128), nullable=False)
    platform_id: Mapped[Optional[int]] = mapped_column(ForeignKey("platforms.id"))
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    unique_clients: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_daily_raw_summaries_date", "date"),
        Index("ix_daily_raw_summaries_tool", "tool_id"),
        Index(
            "ix_daily_raw_summaries_group",
            "tool_id", "version", "date", "backend_id", "platform_id",
        ),
    )


# Rollup tables the aggregator replaces per date
DOWNLOAD_ROLLUP_MODELS = (
    DailyStats,
    DailyToolStats,
    DailyBackendStats,
    DailyToolBackendStats,
    DailyCombinedStats,
)

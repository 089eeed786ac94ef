"""
UTC calendar helpers.

Every day boundary in the system is a UTC calendar day; event timestamps are
stored as whole epoch seconds.
"""

from datetime import date, datetime, time, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today(clock: Optional[Clock] = None) -> date:
    return (clock or utc_now)().astimezone(timezone.utc).date()


def to_epoch(moment: datetime) -> int:
    """Epoch seconds, second precision. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def day_start(day: date) -> int:
    """Epoch seconds of 00:00:00 UTC on ``day``."""
    return to_epoch(datetime.combine(day, time.min, tzinfo=timezone.utc))


def backend_type_of(full: Optional[str], separator: str = ":", unknown: str = "unknown") -> str:
    """
    Scheme prefix of a backend identifier.

    "aqua:org/repo" -> "aqua"; a missing identifier or an empty prefix
    yields ``unknown``.
    """
    if not full:
        return unknown
    prefix = full.split(separator, 1)[0].strip()
    return prefix or unknown

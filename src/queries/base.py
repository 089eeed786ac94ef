"""
Shared helpers for the read-only query layer.
"""

import functools
from datetime import date, timedelta
from typing import Any, Callable, List, Optional

import structlog
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.dates import utc_today
from src.core.exceptions import SchemaNotReadyError

logger = structlog.get_logger(__name__)

# Raised by SQLite ("no such table") and PostgreSQL (undefined table)
MISSING_TABLE_ERRORS = (OperationalError, ProgrammingError, SchemaNotReadyError)


def degrade_gracefully(fallback: Callable[..., Any]):
    """
    Return ``fallback(*args, **kwargs)`` instead of failing when the tables
    a reporting query reads are missing.

    The wrapped coroutine must take the session as its first argument; the
    session is rolled back so the caller can keep using it.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(db: AsyncSession, *args, **kwargs):
            try:
                return await func(db, *args, **kwargs)
            except MISSING_TABLE_ERRORS as e:
                await db.rollback()
                logger.warning(
                    "Reporting query degraded to empty result",
                    query=func.__name__,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return fallback(*args, **kwargs)

        return wrapper

    return decorator


def resolve_today(today: Optional[date] = None) -> date:
    return today or utc_today()


def complete_days(today: date, days: int) -> List[date]:
    """
    The ``days - 1`` complete dates before ``today``, oldest first.

    The current date is excluded because its rollups are still partial.
    """
    return [today - timedelta(days=i) for i in range(days - 1, 0, -1)]

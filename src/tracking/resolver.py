"""
Dimension Resolver

Maps natural identity strings (tool name, full backend identifier, os/arch
pair) to integer surrogate keys. Lookups go through a process-wide cache
first; misses fall back to select, then insert-or-ignore and re-select, so
concurrent resolvers converge on the row that actually won the insert.

Resolution commits the session when it creates a row, so call it before
any other writes of the same unit of work.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.core.dates import backend_type_of
from src.core.exceptions import TelemetryError
from src.core.metrics import DIMENSIONS_CREATED
from src.database.dialect import insert_for
from src.database.models import Backend, Platform, Tool

logger = structlog.get_logger(__name__)
settings = get_settings()


class DimensionKind(str, Enum):
    """Supported dimensions"""
    TOOL = "tool"
    BACKEND = "backend"
    PLATFORM = "platform"


@dataclass
class DimensionCache:
    """
    Natural key -> surrogate id mapping shared by every tracking call.

    Append-only and never evicted: dimension rows are immutable once created,
    so a cached id can never go stale. Dict reads and writes are atomic for
    coroutines on one event loop and under the GIL for threads, and a racing
    second write stores the same authoritative id.
    """
    _entries: Dict[DimensionKind, Dict[Hashable, int]] = field(
        default_factory=lambda: {kind: {} for kind in DimensionKind}
    )

    def get(self, kind: DimensionKind, key: Hashable) -> Optional[int]:
        return self._entries[kind].get(key)

    def put(self, kind: DimensionKind, key: Hashable, surrogate_id: int) -> int:
        return self._entries[kind].setdefault(key, surrogate_id)

    def size(self, kind: Optional[DimensionKind] = None) -> int:
        if kind is not None:
            return len(self._entries[kind])
        return sum(len(entries) for entries in self._entries.values())


# Shared by default so every resolver in the process sees the same ids
_process_cache = DimensionCache()


def get_process_cache() -> DimensionCache:
    return _process_cache


class DimensionResolver:
    """
    Get-or-create for tool, backend and platform dimensions.

    Example:
        resolver = DimensionResolver()
        tool_id = await resolver.tool_id(db, "node")
        backend_id = await resolver.backend_id(db, "core:node")
    """

    def __init__(
        self,
        cache: Optional[DimensionCache] = None,
        backend_separator: Optional[str] = None,
        unknown_backend_type: Optional[str] = None,
    ):
        self.cache = cache if cache is not None else get_process_cache()
        self.backend_separator = backend_separator or settings.analytics.backend_type_separator
        self.unknown_backend_type = unknown_backend_type or settings.analytics.unknown_backend_type

    async def resolve(self, db: AsyncSession, kind: DimensionKind, natural_key: Any) -> Optional[int]:
        """
        Resolve ``natural_key`` for ``kind``.

        Tools take a name; backends take the full identifier or None;
        platforms take an ``(os, arch)`` tuple or None.
        """
        kind = DimensionKind(kind)
        if kind == DimensionKind.TOOL:
            return await self.tool_id(db, natural_key)
        if kind == DimensionKind.BACKEND:
            return await self.backend_id(db, natural_key)
        if natural_key is None:
            return None
        os_name, arch = natural_key
        return await self.platform_id(db, os_name, arch)

    async def tool_id(self, db: AsyncSession, name: str) -> int:
        if not name:
            raise ValueError("Tool name must not be empty")
        return await self._get_or_create(
            db,
            DimensionKind.TOOL,
            name,
            Tool,
            (Tool.name == name,),
            {"name": name},
        )

    async def backend_id(self, db: AsyncSession, full: Optional[str]) -> Optional[int]:
        if not full:
            return None
        return await self._get_or_create(
            db,
            DimensionKind.BACKEND,
            full,
            Backend,
            (Backend.full == full,),
            {
                "full": full,
                "backend_type": backend_type_of(full, self.backend_separator, self.unknown_backend_type),
            },
        )

    async def platform_id(self, db: AsyncSession, os: Optional[str], arch: Optional[str]) -> Optional[int]:
        if not os and not arch:
            return None
        os, arch = os or None, arch or None
        key = Platform.key_for(os, arch)
        return await self._get_or_create(
            db,
            DimensionKind.PLATFORM,
            key,
            Platform,
            (Platform.platform_key == key,),
            {"os": os, "arch": arch, "platform_key": key},
        )

    async def _get_or_create(
        self,
        db: AsyncSession,
        kind: DimensionKind,
        cache_key: Hashable,
        model,
        where: Tuple,
        values: Dict[str, Any],
    ) -> int:
        cached = self.cache.get(kind, cache_key)
        if cached is not None:
            return cached

        lookup = select(model.id).where(*where)
        existing = (await db.execute(lookup)).scalar_one_or_none()
        if existing is not None:
            DIMENSIONS_CREATED.labels(kind=kind.value, outcome="found").inc()
            return self.cache.put(kind, cache_key, existing)

        # A concurrent resolver may insert the same key first; ignore the
        # conflict and read back whichever row won.
        stmt = insert_for(db, model).values(**values).on_conflict_do_nothing()
        result = await db.execute(stmt)
        # Cached ids must refer to committed rows
        await db.commit()
        surrogate_id = (await db.execute(lookup)).scalar_one_or_none()
        if surrogate_id is None:
            raise TelemetryError(f"{kind.value} {cache_key!r} missing after insert")

        outcome = "created" if result.rowcount else "conflict"
        DIMENSIONS_CREATED.labels(kind=kind.value, outcome=outcome).inc()
        logger.info("Dimension resolved", kind=kind.value, key=str(cache_key), id=surrogate_id, outcome=outcome)
        return self.cache.put(kind, cache_key, surrogate_id)

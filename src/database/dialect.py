"""
Dialect-specific INSERT constructs.

``ON CONFLICT`` clauses live on the dialect's own ``insert()``; PostgreSQL and
SQLite share the same ``on_conflict_do_nothing`` / ``on_conflict_do_update``
API, so callers only need the right constructor.
"""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_name(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


def insert_for(db: AsyncSession, model):
    """Return a dialect ``insert()`` for ``model`` supporting ON CONFLICT."""
    name = dialect_name(db)
    try:
        return _INSERTS[name](model)
    except KeyError:
        raise NotImplementedError(f"ON CONFLICT inserts are not supported for dialect: {name}") from None

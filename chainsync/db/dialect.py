"""Dialect-specific INSERT builders for ON CONFLICT writes."""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def insert_for(session: Session, model):
    """Return an INSERT supporting ``on_conflict_do_*`` for the session's database.

    Raises:
        RuntimeError: If the database dialect has no ON CONFLICT support here
    """
    dialect = session.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}") from None
    return insert(model)

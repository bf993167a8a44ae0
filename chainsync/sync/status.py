"""Sync-status ledger: one bookkeeping row per entity type."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from chainsync.db.dialect import insert_for
from chainsync.db.models import ENTITY_ORDER, EntityType, SyncHealth, SyncStatus, utcnow
from chainsync.sync.store import table_counts


def ensure_status_row(session: Session, entity_type: EntityType) -> None:
    """Create the ledger row for an entity type if it is missing."""
    stmt = (
        insert_for(session, SyncStatus)
        .values(entity_type=entity_type.value)
        .on_conflict_do_nothing(index_elements=[SyncStatus.entity_type])
    )
    session.execute(stmt)


def seed_sync_status(session: Session) -> None:
    """Seed a healthy ledger row for every entity type."""
    for entity_type in ENTITY_ORDER:
        ensure_status_row(session, entity_type)


def record_sync(
    session: Session,
    entity_type: EntityType,
    count: int,
    block_number: Optional[int] = None,
) -> None:
    """Record a successful write of ``count`` records.

    Runs as one UPDATE so concurrent writers never lose increments. The block
    watermark only moves forward.
    """
    ensure_status_row(session, entity_type)

    now = utcnow()
    values: Dict[str, Any] = {
        "total_synced": SyncStatus.total_synced + count,
        "last_synced_at": now,
        "updated_at": now,
    }
    if block_number is not None:
        values["last_block_number"] = case(
            (SyncStatus.last_block_number < block_number, block_number),
            else_=SyncStatus.last_block_number,
        )

    session.execute(
        update(SyncStatus)
        .where(SyncStatus.entity_type == entity_type.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def set_health(
    session: Session,
    entity_type: EntityType,
    status: SyncHealth,
    error_message: Optional[str] = None,
) -> None:
    """Set the health flag. Clears the error message unless one is given.

    A healthy mark also stamps ``last_synced_at``: a clean sweep counts as a
    sync even when the indexer had nothing of this type.
    """
    ensure_status_row(session, entity_type)
    now = utcnow()
    values: Dict[str, Any] = {
        "status": status.value,
        "error_message": error_message,
        "updated_at": now,
    }
    if status == SyncHealth.HEALTHY:
        values["last_synced_at"] = now

    session.execute(
        update(SyncStatus)
        .where(SyncStatus.entity_type == entity_type.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def derive_health(entry: SyncStatus, stale_after_seconds: int, now: datetime) -> str:
    """Report ``lagging`` for a healthy entry that has not synced recently."""
    last_synced_at = _as_utc(entry.last_synced_at)
    if (
        entry.status == SyncHealth.HEALTHY.value
        and last_synced_at is not None
        and now - last_synced_at > timedelta(seconds=stale_after_seconds)
    ):
        return SyncHealth.LAGGING.value
    return entry.status


def status_rows(
    session: Session,
    stale_after_seconds: int,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Ledger rows ordered by entity type, with derived health."""
    now = now or utcnow()
    entries = session.execute(
        select(SyncStatus)
        .order_by(SyncStatus.entity_type)
        .execution_options(populate_existing=True)
    ).scalars().all()

    rows = []
    for entry in entries:
        last_synced_at = _as_utc(entry.last_synced_at)
        rows.append({
            "entity_type": entry.entity_type,
            "last_block_number": entry.last_block_number,
            "last_synced_at": last_synced_at.isoformat() if last_synced_at else None,
            "total_synced": entry.total_synced,
            "status": derive_health(entry, stale_after_seconds, now),
            "error_message": entry.error_message,
        })
    return rows


def status_report(session: Session, stale_after_seconds: int) -> Dict[str, Any]:
    """Ledger rows plus live table counts, as served by the status endpoint."""
    now = utcnow()
    return {
        "syncStatus": status_rows(session, stale_after_seconds, now),
        "counts": table_counts(session),
        "lastChecked": now.isoformat(),
    }

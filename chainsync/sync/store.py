"""Read helpers and administrative operations on the cache tables."""

from typing import Dict, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from chainsync.db.models import (
    ENTITY_MODELS,
    ENTITY_ORDER,
    Badge,
    Campaign,
    Donation,
    DonationSource,
)
from chainsync.log import get_logger

logger = get_logger(__name__)

# Donation id used for rows written by the fiat settlement path
SETTLEMENT_ID_PREFIX = "qris-"


def settlement_donation_id(order_id: str) -> str:
    return f"{SETTLEMENT_ID_PREFIX}{order_id}"


def table_counts(session: Session) -> Dict[str, int]:
    """Live row count of each entity table."""
    counts = {}
    for entity_type in ENTITY_ORDER:
        model = ENTITY_MODELS[entity_type]
        counts[f"{entity_type.value}s_count"] = session.execute(
            select(func.count()).select_from(model)
        ).scalar_one()
    return counts


def clear_cache(session: Session) -> Dict[str, int]:
    """Delete every cached entity row.

    The sync-status ledger and payment orders are kept.

    Returns:
        Number of rows deleted per table
    """
    deleted = {}
    for entity_type in reversed(ENTITY_ORDER):
        model = ENTITY_MODELS[entity_type]
        result = session.execute(delete(model))
        deleted[model.__tablename__] = result.rowcount
    logger.warning(f"Cleared blockchain cache: {deleted}")
    return deleted


def get_campaign(session: Session, campaign_id: int) -> Optional[Campaign]:
    return session.execute(
        select(Campaign).where(Campaign.id == campaign_id)
    ).scalar_one_or_none()


def find_settlement_donation(session: Session, order_id: str) -> Optional[Donation]:
    """Donation already recorded for a payment order, if any."""
    return session.execute(
        select(Donation)
        .where(or_(
            Donation.id == settlement_donation_id(order_id),
            Donation.qris_order_id == order_id,
        ))
        .limit(1)
    ).scalar_one_or_none()


def find_donation_by_tx_hash(session: Session, tx_hash: str) -> Optional[Donation]:
    """Indexer-sourced donation for a transaction hash."""
    return session.execute(
        select(Donation)
        .where(
            Donation.transaction_hash == tx_hash.lower(),
            Donation.source == DonationSource.INDEXER.value,
        )
        .limit(1)
    ).scalar_one_or_none()


def owns_badge_named(session: Session, owner: str, name: str) -> bool:
    """Whether ``owner`` holds a badge with exactly this name."""
    found = session.execute(
        select(Badge.token_id)
        .where(func.lower(Badge.owner) == owner.lower(), Badge.name == name)
        .limit(1)
    ).first()
    return found is not None

"""Idempotent writes of indexer records into the cache.

Every write is a single ``INSERT ... ON CONFLICT`` statement, so the poller and
the webhook receiver can deliver the same record concurrently and converge on
one row. Campaigns and badges update a whitelisted set of columns on conflict;
donations and withdrawals never change once stored.
"""

import time
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from chainsync.db.dialect import insert_for
from chainsync.db.models import (
    ENTITY_ORDER,
    Badge,
    Campaign,
    Donation,
    DonationSource,
    EntityType,
    Withdrawal,
    utcnow,
)
from chainsync.db.session import get_session
from chainsync.errors import NotFoundError
from chainsync.log import get_logger
from chainsync.sync.schema import (
    RECORD_MODELS,
    BadgeRecord,
    CampaignBalanceUpdate,
    CampaignRecord,
    DonationRecord,
    IndexerRecord,
    WithdrawalRecord,
    parse_batch,
    parse_record,
)
from chainsync.sync.status import record_sync
from chainsync.sync.store import find_donation_by_tx_hash, settlement_donation_id

logger = get_logger(__name__)

# Columns overwritten when a known key is re-delivered
CAMPAIGN_UPDATE_FIELDS = (
    "name",
    "creator_name",
    "owner",
    "balance",
    "target_amount",
    "last_synced_at",
    "updated_at",
)
BADGE_UPDATE_FIELDS = ("owner", "last_synced_at")

# Settlement metadata carried from a provisional donation to the indexer's row
SETTLEMENT_FIELDS = ("payment_method", "qris_order_id", "qris_gross_amount")

QRIS_PAYMENT_METHOD = "QRIS"


class WriteOutcome(str, Enum):
    """What a single write did to the store."""
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class EntityCounts:
    """Outcome tally for one entity type."""
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    def add(self, outcome: WriteOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.unchanged

    def to_dict(self) -> Dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "total": self.total,
        }


@dataclass
class BatchResult:
    """Per-entity outcome of a batch write."""
    entities: Dict[EntityType, EntityCounts] = field(default_factory=dict)

    def count(self, entity_type: EntityType) -> int:
        counts = self.entities.get(entity_type)
        return counts.total if counts else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            f"{entity_type.value}s": self.entities.get(entity_type, EntityCounts()).to_dict()
            for entity_type in ENTITY_ORDER
        }


def _exists(session: Session, column, value) -> bool:
    return session.execute(select(column).where(column == value)).first() is not None


def write_campaign(session: Session, record: CampaignRecord) -> WriteOutcome:
    """Insert a campaign or overwrite its mutable columns.

    ``creation_time`` and ``created_at`` keep their first values.
    """
    existed = _exists(session, Campaign.id, record.id)
    now = utcnow()

    stmt = insert_for(session, Campaign).values(
        id=record.id,
        name=record.name,
        creator_name=record.creator_name,
        owner=record.owner,
        balance=record.balance,
        target_amount=record.target_amount,
        creation_time=record.creation_time,
        last_synced_at=now,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Campaign.id],
        set_={name: stmt.excluded[name] for name in CAMPAIGN_UPDATE_FIELDS},
    )
    session.execute(stmt)
    return WriteOutcome.UPDATED if existed else WriteOutcome.INSERTED


def write_donation(session: Session, record: DonationRecord) -> WriteOutcome:
    """Insert a donation unless its id is already stored.

    A provisional row written by the settlement path for the same transaction
    is replaced by this one, keeping its payment metadata.
    """
    now = utcnow()
    values: Dict[str, Any] = {
        "id": record.id,
        "campaign_id": record.campaign_id,
        "donor": record.donor,
        "amount": record.amount,
        "transaction_hash": record.transaction_hash,
        "block_number": record.block_number,
        "timestamp": record.timestamp,
        "source": DonationSource.INDEXER.value,
        "last_synced_at": now,
        "created_at": now,
    }

    provisional = session.execute(
        select(Donation).where(
            Donation.transaction_hash == record.transaction_hash,
            Donation.source == DonationSource.SETTLEMENT.value,
            Donation.id != record.id,
        )
    ).scalars().first()
    carried: Dict[str, Any] = {}
    if provisional is not None:
        carried = {name: getattr(provisional, name) for name in SETTLEMENT_FIELDS}
        session.delete(provisional)
        session.flush()
        logger.info(
            f"Replacing provisional donation {provisional.id} with indexer donation {record.id}"
        )

    stmt = (
        insert_for(session, Donation)
        .values(**values, **carried)
        .on_conflict_do_nothing(index_elements=[Donation.id])
    )
    result = session.execute(stmt)
    if result.rowcount:
        return WriteOutcome.INSERTED

    if carried:
        _attach_settlement_metadata(session, record.id, carried)
    logger.debug(f"Donation {record.id} already stored")
    return WriteOutcome.UNCHANGED


def write_withdrawal(session: Session, record: WithdrawalRecord) -> WriteOutcome:
    """Insert a withdrawal unless its id is already stored."""
    now = utcnow()
    stmt = (
        insert_for(session, Withdrawal)
        .values(
            id=record.id,
            campaign_id=record.campaign_id,
            name=record.name,
            owner=record.owner,
            creator_name=record.creator_name,
            amount=record.amount,
            transaction_hash=record.transaction_hash,
            block_number=record.block_number,
            timestamp=record.timestamp,
            last_synced_at=now,
            created_at=now,
        )
        .on_conflict_do_nothing(index_elements=[Withdrawal.id])
    )
    result = session.execute(stmt)
    return WriteOutcome.INSERTED if result.rowcount else WriteOutcome.UNCHANGED


def write_badge(session: Session, record: BadgeRecord) -> WriteOutcome:
    """Insert a badge, or move an existing one to its new owner.

    Name, transaction and block never change after mint.
    """
    existed = _exists(session, Badge.token_id, record.token_id)
    now = utcnow()

    stmt = insert_for(session, Badge).values(
        token_id=record.token_id,
        owner=record.owner,
        name=record.name,
        transaction_hash=record.transaction_hash,
        block_number=record.block_number,
        timestamp=record.timestamp,
        last_synced_at=now,
        created_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Badge.token_id],
        set_={name: stmt.excluded[name] for name in BADGE_UPDATE_FIELDS},
    )
    session.execute(stmt)
    return WriteOutcome.UPDATED if existed else WriteOutcome.INSERTED


WRITERS: Dict[EntityType, Callable[[Session, Any], WriteOutcome]] = {
    EntityType.CAMPAIGN: write_campaign,
    EntityType.DONATION: write_donation,
    EntityType.WITHDRAWAL: write_withdrawal,
    EntityType.BADGE: write_badge,
}


def write_records(
    session: Session,
    entity_type: EntityType,
    records: Iterable[IndexerRecord],
) -> EntityCounts:
    """Write validated records of one type and update the ledger.

    Every record counts toward ``total_synced`` whether it was inserted or
    not. Nothing is recorded for an empty list.
    """
    writer = WRITERS[entity_type]
    counts = EntityCounts()
    highest_block: Optional[int] = None

    for record in records:
        counts.add(writer(session, record))
        block = record.block_number_hint
        if block is not None and (highest_block is None or block > highest_block):
            highest_block = block

    if counts.total:
        record_sync(session, entity_type, counts.total, highest_block)
    return counts


def _attach_settlement_metadata(session: Session, donation_id: str, metadata: Dict[str, Any]) -> None:
    session.execute(
        update(Donation)
        .where(Donation.id == donation_id, Donation.payment_method.is_(None))
        .values(**metadata)
        .execution_options(synchronize_session=False)
    )


def record_settlement_donation(
    session: Session,
    order_id: str,
    campaign_id: int,
    donor: str,
    amount: int,
    gross_amount: Decimal,
    transaction_hash: str,
    block_number: int,
    timestamp: Optional[int] = None,
) -> str:
    """Record the donation a fiat settlement produced on chain.

    If the indexer already delivered the donation for this transaction, the
    payment metadata is attached to that row. Otherwise a provisional row keyed
    ``qris-<order_id>`` is inserted, to be replaced when the indexer delivers.

    Returns:
        Id of the donation row that carries the settlement
    """
    metadata = {
        "payment_method": QRIS_PAYMENT_METHOD,
        "qris_order_id": order_id,
        "qris_gross_amount": gross_amount,
    }

    existing = find_donation_by_tx_hash(session, transaction_hash)
    if existing is not None:
        _attach_settlement_metadata(session, existing.id, metadata)
        logger.info(f"Attached order {order_id} to indexed donation {existing.id}")
        return existing.id

    donation_id = settlement_donation_id(order_id)
    now = utcnow()
    session.execute(
        insert_for(session, Donation)
        .values(
            id=donation_id,
            campaign_id=campaign_id,
            donor=donor.lower(),
            amount=amount,
            transaction_hash=transaction_hash.lower(),
            block_number=block_number,
            timestamp=timestamp if timestamp is not None else int(time.time()),
            source=DonationSource.SETTLEMENT.value,
            last_synced_at=now,
            created_at=now,
            **metadata,
        )
        .on_conflict_do_nothing(index_elements=[Donation.id])
    )
    logger.info(f"Recorded provisional donation {donation_id}")
    return donation_id


class UpsertEngine:
    """Validates indexer payloads and writes them in one transaction each.

    Payloads are validated completely before a session is opened, so an
    invalid payload never touches the store.
    """

    def __init__(self, session_scope: Callable[[], AbstractContextManager[Session]] = get_session):
        self.session_scope = session_scope

    def _write_one(self, entity_type: EntityType, payload: Any) -> WriteOutcome:
        model = RECORD_MODELS[entity_type]
        if isinstance(payload, model):
            record = payload
        else:
            record = parse_record(model, payload, entity_type.value)
        with self.session_scope() as session:
            counts = write_records(session, entity_type, [record])
        outcome = next(o for o in WriteOutcome if getattr(counts, o.value))
        logger.debug(f"{entity_type.value} {outcome.value}")
        return outcome

    def upsert_campaign(self, payload: Any) -> WriteOutcome:
        return self._write_one(EntityType.CAMPAIGN, payload)

    def insert_donation(self, payload: Any) -> WriteOutcome:
        return self._write_one(EntityType.DONATION, payload)

    def insert_withdrawal(self, payload: Any) -> WriteOutcome:
        return self._write_one(EntityType.WITHDRAWAL, payload)

    def upsert_badge(self, payload: Any) -> WriteOutcome:
        return self._write_one(EntityType.BADGE, payload)

    def sync_batch(self, payload: Any) -> BatchResult:
        """Write a ``{campaigns, donations, withdrawals, badges}`` payload.

        All items are validated first, then written in fixed entity order in a
        single transaction. Any failure rolls back every write, ledger
        included.

        Raises:
            RecordValidationError: If any item is invalid (nothing is written)
        """
        batch = parse_batch(payload)
        result = BatchResult()

        with self.session_scope() as session:
            for entity_type in ENTITY_ORDER:
                records = batch[entity_type]
                if records:
                    result.entities[entity_type] = write_records(session, entity_type, records)

        logger.info(
            "Batch synced: "
            + ", ".join(f"{et.value}={result.count(et)}" for et in ENTITY_ORDER)
        )
        return result

    def update_campaign_balance(self, payload: Any) -> None:
        """Overwrite only the balance of a known campaign.

        Raises:
            RecordValidationError: If campaignId or newBalance is invalid
            NotFoundError: If the campaign is not cached
        """
        update_record = parse_record(CampaignBalanceUpdate, payload, "campaign-balance")
        now = utcnow()

        with self.session_scope() as session:
            result = session.execute(
                update(Campaign)
                .where(Campaign.id == update_record.campaign_id)
                .values(balance=update_record.new_balance, last_synced_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                raise NotFoundError(f"Campaign {update_record.campaign_id} not found")
            record_sync(session, EntityType.CAMPAIGN, 1)

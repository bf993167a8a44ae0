"""SQLAlchemy ORM models for the blockchain cache.

The four entity tables mirror what the external indexer reports; nothing in
this service assigns their keys. ``sync_status`` holds one bookkeeping row per
entity type and ``payment_orders`` tracks fiat settlements that trigger
on-chain donations.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# uint256 fits in 78 decimal digits
TokenAmount = Numeric(78, 0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityType(str, Enum):
    """Entity types tracked by the sync status ledger."""
    CAMPAIGN = "campaign"
    DONATION = "donation"
    WITHDRAWAL = "withdrawal"
    BADGE = "badge"


# Fixed write order for batches
ENTITY_ORDER = (
    EntityType.CAMPAIGN,
    EntityType.DONATION,
    EntityType.WITHDRAWAL,
    EntityType.BADGE,
)


class SyncHealth(str, Enum):
    """Health of one entity type's sync."""
    HEALTHY = "healthy"
    LAGGING = "lagging"
    ERROR = "error"


class DonationSource(str, Enum):
    """Which path created a donation row."""
    INDEXER = "indexer"
    SETTLEMENT = "settlement"


class PaymentOrderStatus(str, Enum):
    """Lifecycle of a fiat settlement order."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    MANUAL_REVIEW = "manual_review"


class Campaign(Base):
    """Campaign model (maps to 'blockchain_campaigns' table)."""

    __tablename__ = "blockchain_campaigns"
    __table_args__ = (
        Index("idx_bc_campaigns_owner", "owner"),
        Index("idx_bc_campaigns_creation", "creation_time"),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=False)  # on-chain campaign id
    name = Column(String(255), nullable=False)
    creator_name = Column(String(255), nullable=True)
    owner = Column(String(42), nullable=False)
    balance = Column(TokenAmount, nullable=False, default=0)
    target_amount = Column(TokenAmount, nullable=False)
    creation_time = Column(BigInteger, nullable=False)  # Unix timestamp
    last_synced_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Donation(Base):
    """Donation model (maps to 'blockchain_donations' table)."""

    __tablename__ = "blockchain_donations"
    __table_args__ = (
        Index("idx_bc_donations_campaign", "campaign_id"),
        Index("idx_bc_donations_donor", "donor"),
        Index("idx_bc_donations_timestamp", "timestamp"),
        Index("idx_bc_donations_tx_hash", "transaction_hash"),
        Index("idx_bc_donations_qris_order", "qris_order_id"),
    )

    id = Column(String(255), primary_key=True)  # indexer event id
    campaign_id = Column(BigInteger, nullable=False)
    donor = Column(String(42), nullable=False)
    amount = Column(TokenAmount, nullable=False)
    transaction_hash = Column(String(66), nullable=False)
    block_number = Column(BigInteger, nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    source = Column(String(20), nullable=False, default=DonationSource.INDEXER.value)
    payment_method = Column(String(20), nullable=True)
    qris_order_id = Column(String(255), nullable=True)
    qris_gross_amount = Column(Numeric(30, 2), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Withdrawal(Base):
    """Withdrawal model (maps to 'blockchain_withdrawals' table)."""

    __tablename__ = "blockchain_withdrawals"
    __table_args__ = (
        Index("idx_bc_withdrawals_campaign", "campaign_id"),
        Index("idx_bc_withdrawals_owner", "owner"),
        Index("idx_bc_withdrawals_timestamp", "timestamp"),
    )

    id = Column(String(255), primary_key=True)
    campaign_id = Column(BigInteger, nullable=False)
    name = Column(String(255), nullable=True)
    owner = Column(String(42), nullable=False)
    creator_name = Column(String(255), nullable=True)
    amount = Column(TokenAmount, nullable=False)
    transaction_hash = Column(String(66), nullable=False)
    block_number = Column(BigInteger, nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    last_synced_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Badge(Base):
    """Badge NFT model (maps to 'blockchain_badges' table)."""

    __tablename__ = "blockchain_badges"
    __table_args__ = (
        Index("idx_bc_badges_owner", "owner"),
        Index("idx_bc_badges_timestamp", "timestamp"),
    )

    token_id = Column(BigInteger, primary_key=True, autoincrement=False)
    owner = Column(String(42), nullable=False)
    name = Column(String(255), nullable=False)
    transaction_hash = Column(String(66), nullable=False)
    block_number = Column(BigInteger, nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    last_synced_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class SyncStatus(Base):
    """Sync status model (maps to 'sync_status' table)."""

    __tablename__ = "sync_status"

    entity_type = Column(String(50), primary_key=True)  # campaign, donation, withdrawal, badge
    last_block_number = Column(BigInteger, nullable=False, default=0)
    last_synced_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    total_synced = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=SyncHealth.HEALTHY.value)
    error_message = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class PaymentOrder(Base):
    """Payment order model (maps to 'payment_orders' table)."""

    __tablename__ = "payment_orders"

    order_id = Column(String(255), primary_key=True)
    campaign_id = Column(BigInteger, nullable=False)
    gross_amount = Column(Numeric(30, 2), nullable=False)
    token_amount = Column(TokenAmount, nullable=False)
    status = Column(String(20), nullable=False, default=PaymentOrderStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    mint_tx_hash = Column(String(66), nullable=True)
    approve_tx_hash = Column(String(66), nullable=True)
    donate_tx_hash = Column(String(66), nullable=True)
    failed_step = Column(String(20), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


ENTITY_MODELS = {
    EntityType.CAMPAIGN: Campaign,
    EntityType.DONATION: Donation,
    EntityType.WITHDRAWAL: Withdrawal,
    EntityType.BADGE: Badge,
}

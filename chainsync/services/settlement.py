"""Fiat settlement: turn a confirmed QR payment into an on-chain donation.

A payment order row guards every settlement. Claiming it is a single UPDATE
from ``pending``/``retry`` to ``processing``, so two deliveries of the same
notification never both reach the chain. Once a donation for the order exists
the notification is answered from the store.
"""

import hashlib
import hmac
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Dict, NoReturn, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from chainsync.chain.errors import CampaignNotFoundOnChainError, ChainWriteError, NonceConflictError
from chainsync.chain.writer import ChainWriter, MintAndDonateResult
from chainsync.config import Config
from chainsync.db.dialect import insert_for
from chainsync.db.models import PaymentOrder, PaymentOrderStatus, utcnow
from chainsync.db.session import get_session
from chainsync.errors import (
    AuthorizationError,
    ChainSyncError,
    ConflictError,
    NotFoundError,
    RecordValidationError,
    ServiceUnavailableError,
)
from chainsync.log import get_logger
from chainsync.sync.schema import parse_record
from chainsync.sync.store import find_settlement_donation, get_campaign
from chainsync.sync.upsert import record_settlement_donation

logger = get_logger(__name__)

SETTLED_STATUSES = frozenset({"settlement", "capture"})

CLAIMABLE_STATUSES = (PaymentOrderStatus.PENDING.value, PaymentOrderStatus.RETRY.value)


class SettlementNotification(BaseModel):
    """Payment gateway notification body."""

    model_config = ConfigDict(coerce_numbers_to_str=True, str_strip_whitespace=True, extra="ignore")

    order_id: str = Field(min_length=1)
    transaction_status: str = Field(min_length=1)
    gross_amount: str = Field(min_length=1)
    campaign_id: int = Field(ge=0)
    status_code: Optional[str] = None
    signature_key: Optional[str] = None

    @field_validator("gross_amount")
    @classmethod
    def positive_decimal(cls, v: str) -> str:
        """Ensure the amount is a positive decimal number."""
        try:
            amount = Decimal(v)
        except InvalidOperation:
            raise ValueError("gross_amount must be a decimal number") from None
        if not amount.is_finite() or amount <= 0:
            raise ValueError("gross_amount must be > 0")
        return v

    @property
    def gross_decimal(self) -> Decimal:
        return Decimal(self.gross_amount)


class SettlementFailedError(ChainSyncError):
    """The chain sequence failed; the payment order records what to do next."""

    def __init__(self, order_id: str, order_status: PaymentOrderStatus, cause: ChainWriteError):
        super().__init__(f"Settlement of order {order_id} failed: {cause}")
        self.order_id = order_id
        self.order_status = order_status
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.order_status == PaymentOrderStatus.RETRY


@dataclass
class SettlementOutcome:
    """What a notification led to."""
    order_id: str
    status: str  # completed, duplicate or ignored
    transaction_status: str
    campaign_id: Optional[int] = None
    donation_id: Optional[str] = None
    token_amount: Optional[int] = None
    tx_hashes: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "status": self.status,
            "transactionStatus": self.transaction_status,
            "campaignId": self.campaign_id,
            "donationId": self.donation_id,
            "tokenAmount": str(self.token_amount) if self.token_amount is not None else None,
            "txHashes": self.tx_hashes,
        }


def gateway_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """SHA-512 signature the payment gateway attaches to notifications."""
    payload = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(payload.encode("utf-8")).hexdigest()


def to_token_amount(gross_amount: Decimal, decimals: int) -> int:
    """Convert a fiat amount to the token's smallest unit, rounding down."""
    return int((gross_amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def order_status_for(error: ChainWriteError) -> PaymentOrderStatus:
    """Where a failed order goes next."""
    if error.has_confirmed_steps:
        return PaymentOrderStatus.MANUAL_REVIEW
    if error.retryable:
        return PaymentOrderStatus.RETRY
    if isinstance(error, CampaignNotFoundOnChainError):
        return PaymentOrderStatus.FAILED
    return PaymentOrderStatus.MANUAL_REVIEW


class SettlementService:
    """Handles settlement notifications end to end."""

    def __init__(
        self,
        config: Config,
        writer: Optional[ChainWriter],
        session_scope: Callable[[], AbstractContextManager[Session]] = get_session,
    ):
        self.writer = writer
        self.server_key = config.payment_server_key
        self.token_decimals = config.token_decimals
        self.max_attempts = config.chain_max_attempts
        self.session_scope = session_scope

    def verify_signature(self, notification: SettlementNotification) -> None:
        """Check the gateway signature when a server key is configured.

        Raises:
            AuthorizationError: If the signature is missing or wrong
        """
        if not self.server_key:
            return

        expected = gateway_signature(
            notification.order_id,
            notification.status_code or "",
            notification.gross_amount,
            self.server_key,
        )
        if not notification.signature_key or not hmac.compare_digest(
            expected, notification.signature_key.lower()
        ):
            raise AuthorizationError("Invalid payment notification signature")

    def handle_notification(self, payload: Any) -> SettlementOutcome:
        """Process one gateway notification.

        Raises:
            RecordValidationError: If the body is malformed
            AuthorizationError: If the signature does not match
            NotFoundError: If the campaign is not cached
            ConflictError: If the order is being processed or needs attention
            ServiceUnavailableError: If chain writes are not configured
            SettlementFailedError: If the chain sequence failed
        """
        notification = parse_record(SettlementNotification, payload, "payment")
        self.verify_signature(notification)

        order_id = notification.order_id
        if notification.transaction_status not in SETTLED_STATUSES:
            logger.info(f"Order {order_id} not settled ({notification.transaction_status}), ignoring")
            return SettlementOutcome(
                order_id=order_id,
                status="ignored",
                transaction_status=notification.transaction_status,
            )

        duplicate = self._find_duplicate(notification)
        if duplicate is not None:
            return duplicate

        if self.writer is None:
            raise ServiceUnavailableError("Chain writes are not configured")

        token_amount = to_token_amount(notification.gross_decimal, self.token_decimals)
        if token_amount <= 0:
            raise RecordValidationError(
                "payment",
                [{"loc": ("gross_amount",), "msg": "amount too small", "type": "value_error"}],
            )

        with self.session_scope() as session:
            if get_campaign(session, notification.campaign_id) is None:
                raise NotFoundError(f"Campaign {notification.campaign_id} not found")
            self._ensure_order(session, notification, token_amount)
            claimed = self._claim(session, order_id)
            if claimed:
                campaign_id, token_amount, gross_amount = self._order_terms(session, notification)

        if not claimed:
            duplicate = self._find_duplicate(notification)
            if duplicate is not None:
                return duplicate
            raise ConflictError(f"Order {order_id} is already being processed or needs review")

        result = self._run_chain(order_id, campaign_id, token_amount)

        try:
            with self.session_scope() as session:
                donation_id = record_settlement_donation(
                    session,
                    order_id=order_id,
                    campaign_id=campaign_id,
                    donor=result.signer,
                    amount=token_amount,
                    gross_amount=gross_amount,
                    transaction_hash=result.donate.tx_hash,
                    block_number=result.donate.block_number,
                )
                self._finish(session, order_id, PaymentOrderStatus.COMPLETED, result=result)
        except Exception:
            logger.error(f"Order {order_id} donated on chain but not recorded", exc_info=True)
            self._mark_failed(
                order_id, PaymentOrderStatus.MANUAL_REVIEW, "recording donation failed", result=result
            )
            raise

        logger.info(f"Order {order_id} settled as donation {donation_id}")
        return SettlementOutcome(
            order_id=order_id,
            status="completed",
            transaction_status=notification.transaction_status,
            campaign_id=campaign_id,
            donation_id=donation_id,
            token_amount=token_amount,
            tx_hashes=result.tx_hashes(),
        )

    def _find_duplicate(self, notification: SettlementNotification) -> Optional[SettlementOutcome]:
        with self.session_scope() as session:
            donation = find_settlement_donation(session, notification.order_id)
            if donation is None:
                order = session.get(PaymentOrder, notification.order_id)
                if order is None or order.status != PaymentOrderStatus.COMPLETED.value:
                    return None
                tx_hashes = self._order_hashes(order)
                donation_id = None
                campaign_id = order.campaign_id
                amount = int(order.token_amount)
            else:
                tx_hashes = {"donateTxHash": donation.transaction_hash}
                donation_id = donation.id
                campaign_id = donation.campaign_id
                amount = int(donation.amount)

        logger.info(f"Order {notification.order_id} already settled, skipping chain writes")
        return SettlementOutcome(
            order_id=notification.order_id,
            status="duplicate",
            transaction_status=notification.transaction_status,
            campaign_id=campaign_id,
            donation_id=donation_id,
            token_amount=amount,
            tx_hashes=tx_hashes,
        )

    @staticmethod
    def _order_hashes(order: PaymentOrder) -> Dict[str, Optional[str]]:
        return {
            "mintTxHash": order.mint_tx_hash,
            "approveTxHash": order.approve_tx_hash,
            "donateTxHash": order.donate_tx_hash,
        }

    def _ensure_order(self, session: Session, notification: SettlementNotification, token_amount: int) -> None:
        now = utcnow()
        session.execute(
            insert_for(session, PaymentOrder)
            .values(
                order_id=notification.order_id,
                campaign_id=notification.campaign_id,
                gross_amount=notification.gross_decimal,
                token_amount=token_amount,
                status=PaymentOrderStatus.PENDING.value,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=[PaymentOrder.order_id])
        )

    def _order_terms(
        self, session: Session, notification: SettlementNotification
    ) -> Tuple[int, int, Decimal]:
        """Campaign, token amount and gross amount fixed by the first delivery.

        A re-delivery of a ``retry`` order settles on the stored terms, never
        on the fields of the new body.
        """
        order = session.execute(
            select(PaymentOrder)
            .where(PaymentOrder.order_id == notification.order_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        campaign_id = order.campaign_id
        token_amount = int(order.token_amount)
        gross_amount = Decimal(str(order.gross_amount))

        if campaign_id != notification.campaign_id or gross_amount != notification.gross_decimal:
            logger.warning(
                f"Order {notification.order_id} re-delivered with campaign {notification.campaign_id} "
                f"and amount {notification.gross_amount}; settling the stored campaign {campaign_id} "
                f"and amount {gross_amount}"
            )
        return campaign_id, token_amount, gross_amount

    def _claim(self, session: Session, order_id: str) -> bool:
        """Move the order to ``processing`` if nobody else holds it."""
        result = session.execute(
            update(PaymentOrder)
            .where(
                PaymentOrder.order_id == order_id,
                PaymentOrder.status.in_(CLAIMABLE_STATUSES),
            )
            .values(
                status=PaymentOrderStatus.PROCESSING.value,
                attempts=PaymentOrder.attempts + 1,
                failed_step=None,
                error_message=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _run_chain(self, order_id: str, campaign_id: int, token_amount: int) -> MintAndDonateResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.writer.mint_and_donate(campaign_id, token_amount)
            except NonceConflictError as e:
                if e.has_confirmed_steps or attempt >= self.max_attempts:
                    self._fail(order_id, e)
                logger.warning(
                    f"Nonce conflict on order {order_id} (attempt {attempt}/{self.max_attempts}), retrying"
                )
            except ChainWriteError as e:
                self._fail(order_id, e)
            except Exception as e:
                self._fail(order_id, ChainWriteError(str(e) or type(e).__name__))

    def _fail(self, order_id: str, error: ChainWriteError) -> NoReturn:
        status = order_status_for(error)
        logger.error(
            f"Order {order_id} chain write failed at {error.step or 'unknown step'} "
            f"({status.value}): {error}"
        )
        self._mark_failed(order_id, status, str(error), step=error.step, confirmed=error.confirmed)
        raise SettlementFailedError(order_id, status, error) from error

    def _mark_failed(
        self,
        order_id: str,
        status: PaymentOrderStatus,
        message: str,
        step: Optional[str] = None,
        confirmed: Optional[Dict[str, Any]] = None,
        result: Optional[MintAndDonateResult] = None,
    ) -> None:
        try:
            with self.session_scope() as session:
                self._finish(
                    session, order_id, status,
                    result=result, step=step, confirmed=confirmed, message=message,
                )
        except Exception:
            logger.error(f"Could not mark order {order_id} as {status.value}", exc_info=True)

    @staticmethod
    def _finish(
        session: Session,
        order_id: str,
        status: PaymentOrderStatus,
        result: Optional[MintAndDonateResult] = None,
        step: Optional[str] = None,
        confirmed: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None,
    ) -> None:
        values: Dict[str, Any] = {
            "status": status.value,
            "failed_step": step,
            "error_message": message,
            "updated_at": utcnow(),
        }
        receipts = dict(confirmed or {})
        if result is not None:
            receipts.update(mint=result.mint, approve=result.approve, donate=result.donate)
        for name, receipt in receipts.items():
            values[f"{name}_tx_hash"] = receipt.tx_hash

        session.execute(
            update(PaymentOrder)
            .where(PaymentOrder.order_id == order_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

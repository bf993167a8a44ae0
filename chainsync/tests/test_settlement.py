"""Tests for fiat settlement of payment notifications."""

from decimal import Decimal
from unittest.mock import Mock

import pytest

from chainsync.chain.errors import CampaignNotFoundOnChainError, ChainWriteError, NonceConflictError
from chainsync.chain.writer import ChainWriter, MintAndDonateResult
from chainsync.db.models import Donation, PaymentOrder, PaymentOrderStatus
from chainsync.db.session import get_session
from chainsync.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RecordValidationError,
    ServiceUnavailableError,
)
from chainsync.eth.client import TxReceipt
from chainsync.services.settlement import (
    SettlementFailedError,
    SettlementService,
    gateway_signature,
    to_token_amount,
)
from chainsync.sync.store import clear_cache
from chainsync.sync.upsert import UpsertEngine

from conftest import SIGNER, tx_hash_for


def receipt(n: int) -> TxReceipt:
    return TxReceipt(tx_hash=tx_hash_for(n), block_number=100 + n, status=1)


def chain_result(campaign_id=7, amount=1_000_000) -> MintAndDonateResult:
    return MintAndDonateResult(
        signer=SIGNER,
        campaign_id=campaign_id,
        amount=amount,
        mint=receipt(11),
        approve=receipt(12),
        donate=receipt(13),
    )


@pytest.fixture
def writer():
    writer = Mock(spec=ChainWriter)
    writer.mint_and_donate.return_value = chain_result()
    return writer


@pytest.fixture
def service(db, test_config, writer, make_campaign):
    UpsertEngine().upsert_campaign(make_campaign())
    return SettlementService(test_config, writer)


def notification(**overrides):
    payload = {
        "order_id": "order-1",
        "transaction_status": "settlement",
        "gross_amount": "10000.00",
        "campaign_id": 7,
        "status_code": "200",
    }
    payload.update(overrides)
    return payload


def load_order(order_id="order-1") -> PaymentOrder:
    with get_session() as session:
        return session.get(PaymentOrder, order_id)


def test_settlement_mints_and_records_donation(service, writer):
    """Test a settled notification end to end."""
    outcome = service.handle_notification(notification())

    writer.mint_and_donate.assert_called_once_with(7, 1_000_000)
    assert outcome.status == "completed"
    assert outcome.donation_id == "qris-order-1"
    assert outcome.token_amount == 1_000_000
    assert outcome.tx_hashes["donateTxHash"] == tx_hash_for(13)

    with get_session() as session:
        donation = session.get(Donation, "qris-order-1")
        assert donation.source == "settlement"
        assert donation.payment_method == "QRIS"
        assert donation.transaction_hash == tx_hash_for(13)
        assert int(donation.amount) == 1_000_000

    order = load_order()
    assert order.status == "completed"
    assert order.attempts == 1
    assert (order.mint_tx_hash, order.approve_tx_hash, order.donate_tx_hash) == (
        tx_hash_for(11), tx_hash_for(12), tx_hash_for(13),
    )


def test_repeated_notification_never_mints_twice(service, writer):
    """Test that a re-delivered notification is answered from the store."""
    service.handle_notification(notification())
    outcome = service.handle_notification(notification())

    assert writer.mint_and_donate.call_count == 1
    assert outcome.status == "duplicate"
    assert outcome.donation_id == "qris-order-1"


def test_completed_order_is_duplicate_after_cache_clear(service, writer):
    """Test that the order ledger still guards a cleared cache."""
    service.handle_notification(notification())
    with get_session() as session:
        clear_cache(session)

    outcome = service.handle_notification(notification())

    assert outcome.status == "duplicate"
    assert outcome.tx_hashes["mintTxHash"] == tx_hash_for(11)
    assert writer.mint_and_donate.call_count == 1


def test_unsettled_status_is_ignored(service, writer):
    """Test that pending and expired notifications touch nothing."""
    outcome = service.handle_notification(notification(transaction_status="pending"))

    assert outcome.status == "ignored"
    writer.mint_and_donate.assert_not_called()
    assert load_order() is None


def test_unknown_campaign(service, writer):
    """Test that a campaign missing from the cache is a not-found error."""
    with pytest.raises(NotFoundError):
        service.handle_notification(notification(campaign_id=404))

    writer.mint_and_donate.assert_not_called()
    assert load_order() is None


def test_malformed_notification(service):
    """Test that missing fields and bad amounts are validation errors."""
    with pytest.raises(RecordValidationError):
        service.handle_notification({"order_id": "order-1"})
    with pytest.raises(RecordValidationError):
        service.handle_notification(notification(gross_amount="-5"))
    with pytest.raises(RecordValidationError):
        service.handle_notification(notification(gross_amount="0.001"))


def test_signature_checked_when_server_key_set(db, test_config, writer, make_campaign):
    """Test the gateway signature check."""
    UpsertEngine().upsert_campaign(make_campaign())
    test_config.payment_server_key = "server-key"
    service = SettlementService(test_config, writer)

    with pytest.raises(AuthorizationError):
        service.handle_notification(notification(signature_key="deadbeef"))
    writer.mint_and_donate.assert_not_called()

    signature = gateway_signature("order-1", "200", "10000.00", "server-key")
    outcome = service.handle_notification(notification(signature_key=signature))
    assert outcome.status == "completed"


def test_no_writer_is_unavailable(db, test_config, make_campaign):
    """Test that settlement without chain credentials is refused."""
    UpsertEngine().upsert_campaign(make_campaign())
    service = SettlementService(test_config, writer=None)

    with pytest.raises(ServiceUnavailableError):
        service.handle_notification(notification())


def test_nonce_conflict_is_retried(service, writer):
    """Test that a nonce clash before any confirmation retries the sequence."""
    writer.mint_and_donate.side_effect = [
        NonceConflictError("mint failed: nonce too low", step="mint"),
        chain_result(),
    ]

    outcome = service.handle_notification(notification())

    assert outcome.status == "completed"
    assert writer.mint_and_donate.call_count == 2


def test_exhausted_nonce_retries_leave_order_retryable(service, writer, test_config):
    """Test that persistent nonce clashes end in the retry state, and a later delivery succeeds."""
    writer.mint_and_donate.side_effect = NonceConflictError("mint failed: nonce too low", step="mint")

    with pytest.raises(SettlementFailedError) as exc_info:
        service.handle_notification(notification())

    assert exc_info.value.retryable
    assert writer.mint_and_donate.call_count == test_config.chain_max_attempts
    order = load_order()
    assert order.status == "retry"
    assert order.failed_step == "mint"

    writer.mint_and_donate.side_effect = None
    writer.mint_and_donate.return_value = chain_result()
    outcome = service.handle_notification(notification())

    assert outcome.status == "completed"
    assert load_order().attempts == 2


def test_retried_order_settles_on_stored_terms(service, writer, make_campaign):
    """Test that a re-delivery with a different campaign and amount settles the first terms."""
    UpsertEngine().upsert_campaign(make_campaign(id=9, name="Plant a Forest"))
    writer.mint_and_donate.side_effect = NonceConflictError("mint failed: nonce too low", step="mint")
    with pytest.raises(SettlementFailedError):
        service.handle_notification(notification())
    assert load_order().status == "retry"

    writer.mint_and_donate.reset_mock(side_effect=True)
    writer.mint_and_donate.return_value = chain_result()
    outcome = service.handle_notification(notification(campaign_id=9, gross_amount="999999.00"))

    writer.mint_and_donate.assert_called_once_with(7, 1_000_000)
    assert outcome.campaign_id == 7
    assert outcome.token_amount == 1_000_000
    order = load_order()
    assert (order.campaign_id, int(order.token_amount), order.status) == (7, 1_000_000, "completed")
    with get_session() as session:
        donation = session.get(Donation, "qris-order-1")
        assert donation.campaign_id == 7
        assert int(donation.amount) == 1_000_000


def test_campaign_missing_on_chain_fails_order(service, writer):
    """Test that a permanent chain failure marks the order failed."""
    writer.mint_and_donate.side_effect = CampaignNotFoundOnChainError(
        "Campaign 7 does not exist on chain", step="preflight"
    )

    with pytest.raises(SettlementFailedError) as exc_info:
        service.handle_notification(notification())

    assert not exc_info.value.retryable
    assert exc_info.value.order_status == PaymentOrderStatus.FAILED
    assert load_order().status == "failed"

    # Failed orders are not picked up again by a re-delivery
    with pytest.raises(ConflictError):
        service.handle_notification(notification())
    assert writer.mint_and_donate.call_count == 1


def test_partial_failure_needs_manual_review(service, writer):
    """Test that a failure after mint keeps the confirmed hashes for review."""
    writer.mint_and_donate.side_effect = ChainWriteError(
        "approve failed: insufficient funds",
        step="approve",
        confirmed={"mint": receipt(11)},
    )

    with pytest.raises(SettlementFailedError) as exc_info:
        service.handle_notification(notification())

    assert exc_info.value.order_status == PaymentOrderStatus.MANUAL_REVIEW
    order = load_order()
    assert order.status == "manual_review"
    assert order.failed_step == "approve"
    assert order.mint_tx_hash == tx_hash_for(11)
    assert order.donate_tx_hash is None
    with get_session() as session:
        assert session.get(Donation, "qris-order-1") is None


def test_partial_nonce_conflict_is_not_retried(service, writer):
    """Test that a nonce clash after a confirmed step is not retried."""
    writer.mint_and_donate.side_effect = NonceConflictError(
        "approve failed: nonce too low", step="approve", confirmed={"mint": receipt(11)}
    )

    with pytest.raises(SettlementFailedError):
        service.handle_notification(notification())

    assert writer.mint_and_donate.call_count == 1
    assert load_order().status == "manual_review"


def test_order_in_progress_conflicts(service, writer):
    """Test that a delivery racing an in-flight order does not claim it."""
    with get_session() as session:
        session.add(PaymentOrder(
            order_id="order-1",
            campaign_id=7,
            gross_amount=Decimal("10000.00"),
            token_amount=1_000_000,
            status="processing",
            attempts=1,
        ))

    with pytest.raises(ConflictError):
        service.handle_notification(notification())
    writer.mint_and_donate.assert_not_called()


@pytest.mark.parametrize("gross, decimals, expected", [
    ("10000.00", 2, 1_000_000),
    ("1.999", 2, 199),
    ("5", 0, 5),
    ("0.5", 18, 5 * 10**17),
])
def test_to_token_amount(gross, decimals, expected):
    assert to_token_amount(Decimal(gross), decimals) == expected

"""Tests for the mint, approve, donate sequence."""

from unittest.mock import MagicMock

import pytest
from eth_account import Account

from chainsync.chain.errors import (
    CampaignNotFoundOnChainError,
    ChainWriteError,
    NonceConflictError,
    classify_chain_error,
)
from chainsync.chain.writer import ZERO_ADDRESS, ChainWriter
from chainsync.eth.client import ChainClient, TxReceipt

from conftest import CAMPAIGN_ADDRESS, SIGNER, TEST_PRIVATE_KEY, TOKEN_ADDRESS, tx_hash_for


@pytest.fixture
def writer(chain_client):
    return ChainWriter(chain_client, TOKEN_ADDRESS, CAMPAIGN_ADDRESS)


def test_mint_approve_donate_in_order(writer, chain_client):
    """Test the happy path: three confirmed steps in fixed order."""
    result = writer.mint_and_donate(7, 1_000_000)

    sent = [c.args[0] for c in chain_client.send_contract_tx.call_args_list]
    assert sent == [
        writer.token.functions.mint.return_value,
        writer.token.functions.approve.return_value,
        writer.campaign.functions.donate.return_value,
    ]
    writer.token.functions.mint.assert_called_once_with(SIGNER, 1_000_000)
    writer.token.functions.approve.assert_called_once_with(CAMPAIGN_ADDRESS, 1_000_000)
    writer.campaign.functions.donate.assert_called_once_with(7, 1_000_000, TOKEN_ADDRESS)

    assert result.signer == SIGNER
    assert result.tx_hashes() == {
        "mintTxHash": tx_hash_for(5),
        "approveTxHash": tx_hash_for(6),
        "donateTxHash": tx_hash_for(7),
    }


def test_fresh_nonce_for_every_step(writer, chain_client):
    """Test that each step signs with the pending nonce read just before it."""
    writer.mint_and_donate(7, 100)

    assert chain_client.pending_nonce.call_count == 3
    assert [c.args[1] for c in chain_client.send_contract_tx.call_args_list] == [5, 6, 7]


def test_nonce_conflict_is_retryable_and_reports_confirmed_steps(writer, chain_client):
    """Test that a nonce clash on approve surfaces as NonceConflictError."""
    def send(fn, nonce, gas=None):
        if fn is writer.token.functions.approve.return_value:
            raise ValueError({"code": -32000, "message": "nonce too low"})
        return tx_hash_for(nonce)

    chain_client.send_contract_tx.side_effect = send

    with pytest.raises(NonceConflictError) as exc_info:
        writer.mint_and_donate(7, 100)

    error = exc_info.value
    assert error.retryable
    assert error.step == "approve"
    assert list(error.confirmed) == ["mint"]
    assert error.confirmed["mint"].tx_hash == tx_hash_for(5)
    writer.campaign.functions.donate.assert_not_called()


def test_reverted_step_aborts_sequence(writer, chain_client):
    """Test that a status-0 receipt stops the sequence with a generic error."""
    def receipt(tx_hash):
        status = 0 if tx_hash == tx_hash_for(7) else 1
        return TxReceipt(tx_hash=tx_hash, block_number=100, status=status)

    chain_client.wait_for_receipt.side_effect = receipt

    with pytest.raises(ChainWriteError) as exc_info:
        writer.mint_and_donate(7, 100)

    error = exc_info.value
    assert type(error) is ChainWriteError
    assert not error.retryable
    assert error.step == "donate"
    assert error.tx_hash == tx_hash_for(7)
    assert set(error.confirmed) == {"mint", "approve"}


def test_receipt_timeout_keeps_submitted_hash(writer, chain_client):
    """Test that a timeout after submission still reports the transaction hash."""
    chain_client.wait_for_receipt.side_effect = TimeoutError("Transaction is not in the chain after 120 seconds")

    with pytest.raises(ChainWriteError) as exc_info:
        writer.mint_and_donate(7, 100)

    assert exc_info.value.step == "mint"
    assert exc_info.value.tx_hash == tx_hash_for(5)
    assert exc_info.value.confirmed == {}


def test_missing_campaign_detected_before_mint(writer, chain_client):
    """Test that a zero-owner campaign read stops before any transaction."""
    chain_client.call.return_value = ("", "", 0, 0, 0, ZERO_ADDRESS)

    with pytest.raises(CampaignNotFoundOnChainError) as exc_info:
        writer.mint_and_donate(99, 100)

    assert exc_info.value.step == "preflight"
    assert not exc_info.value.retryable
    chain_client.send_contract_tx.assert_not_called()


def test_reverting_campaign_read_is_campaign_not_found(writer, chain_client):
    """Test that a reverted preflight read means the campaign is missing."""
    chain_client.call.side_effect = Exception("execution reverted")

    with pytest.raises(CampaignNotFoundOnChainError):
        writer.mint_and_donate(99, 100)
    chain_client.send_contract_tx.assert_not_called()


def test_campaign_revert_during_donate_is_permanent(writer, chain_client):
    """Test that a campaign revert reason classifies as not found."""
    def send(fn, nonce, gas=None):
        if fn is writer.campaign.functions.donate.return_value:
            raise Exception("execution reverted: Campaign does not exist")
        return tx_hash_for(nonce)

    chain_client.send_contract_tx.side_effect = send

    with pytest.raises(CampaignNotFoundOnChainError) as exc_info:
        writer.mint_and_donate(7, 100)
    assert set(exc_info.value.confirmed) == {"mint", "approve"}


def test_amount_must_be_positive(writer):
    with pytest.raises(ValueError):
        writer.mint_and_donate(7, 0)


@pytest.mark.parametrize("message, expected", [
    ("nonce too low: next nonce 12, tx nonce 11", NonceConflictError),
    ("replacement transaction underpriced", NonceConflictError),
    ("already known", NonceConflictError),
    ("execution reverted: Invalid campaign", CampaignNotFoundOnChainError),
    ("insufficient funds for gas * price + value", ChainWriteError),
])
def test_classify_chain_error(message, expected):
    """Test classification by error message."""
    error = classify_chain_error(Exception(message), "mint")

    assert type(error) is expected
    assert error.step == "mint"


def test_chain_client_signs_with_supplied_nonce(test_config):
    """Test that the client builds with from, nonce and chain id, then sends raw."""
    web3 = MagicMock()
    web3.eth.send_raw_transaction.return_value = bytes.fromhex("ab" * 32)
    client = ChainClient(test_config, web3=web3)

    fn = MagicMock()
    fn.build_transaction.return_value = {
        "to": TOKEN_ADDRESS,
        "value": 0,
        "gas": 100_000,
        "maxFeePerGas": 2_000_000_000,
        "maxPriorityFeePerGas": 1_000_000_000,
        "nonce": 3,
        "chainId": 84532,
        "data": "0x",
    }

    tx_hash = client.send_contract_tx(fn, nonce=3)

    fn.build_transaction.assert_called_once_with(
        {"from": Account.from_key(TEST_PRIVATE_KEY).address, "nonce": 3, "chainId": 84532}
    )
    web3.eth.send_raw_transaction.assert_called_once()
    assert tx_hash == "0x" + "ab" * 32


def test_chain_client_pending_nonce(test_config):
    """Test that nonces are read with the pending block tag."""
    web3 = MagicMock()
    web3.eth.get_transaction_count.return_value = 42
    client = ChainClient(test_config, web3=web3)

    assert client.pending_nonce() == 42
    web3.eth.get_transaction_count.assert_called_once_with(client.address, "pending")
    assert client.address == SIGNER

"""Tests for supporter badge minting."""

import pytest

from chainsync.chain.badges import BadgeMinter, badge_title
from chainsync.eth.client import TxReceipt
from chainsync.sync.upsert import UpsertEngine

from conftest import DONOR, tx_hash_for


@pytest.fixture
def minter(db, test_config, chain_client, make_campaign):
    UpsertEngine().upsert_campaign(make_campaign())
    return BadgeMinter(test_config, chain_client)


def test_mints_badge_for_new_supporter(minter, chain_client):
    """Test that a first donation mints a badge with a fixed gas limit."""
    tx_hash = minter.check_and_mint(DONOR.lower(), 7, 500)

    assert tx_hash == tx_hash_for(5)
    minter.badge.functions.mintBadge.assert_called_once_with(
        DONOR,
        "Supporter: Save the Reef",
        "Awarded for donating 500 tokens to Save the Reef.",
    )
    chain_client.send_contract_tx.assert_called_once_with(
        minter.badge.functions.mintBadge.return_value, 5, gas=500_000
    )


def test_existing_badge_is_not_minted_again(minter, chain_client, make_badge):
    """Test that a donor holding the campaign badge gets nothing new, whatever the address case."""
    UpsertEngine().upsert_badge(make_badge(owner=DONOR.lower(), name=badge_title("Save the Reef")))

    assert minter.check_and_mint(DONOR, 7, 500) is None
    chain_client.send_contract_tx.assert_not_called()


def test_badge_for_other_campaign_does_not_count(minter, chain_client, make_badge):
    """Test that only the badge named after this campaign blocks minting."""
    UpsertEngine().upsert_badge(make_badge(name=badge_title("Plant a Forest")))

    assert minter.check_and_mint(DONOR, 7, 500) is not None


def test_low_wallet_balance_skips_minting(minter, chain_client):
    """Test that the backend wallet balance is checked before sending."""
    chain_client.balance.return_value = 10

    assert minter.check_and_mint(DONOR, 7, 500) is None
    chain_client.send_contract_tx.assert_not_called()


def test_unknown_campaign_skips_minting(minter, chain_client):
    assert minter.check_and_mint(DONOR, 404, 500) is None
    chain_client.send_contract_tx.assert_not_called()


def test_reverted_mint_returns_none(minter, chain_client):
    chain_client.wait_for_receipt.side_effect = lambda tx_hash: TxReceipt(tx_hash, 100, 0)

    assert minter.check_and_mint(DONOR, 7, 500) is None


def test_chain_errors_are_logged_not_raised(minter, chain_client):
    """Test that minting failures never propagate to the caller."""
    chain_client.send_contract_tx.side_effect = ValueError("insufficient funds for gas")

    assert minter.check_and_mint(DONOR, 7, 500) is None


def test_requires_badge_contract(test_config, chain_client):
    test_config.badge_contract_address = None

    with pytest.raises(ValueError):
        BadgeMinter(test_config, chain_client)

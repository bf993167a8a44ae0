"""Shared fixtures for chainsync tests."""

import os
from unittest.mock import MagicMock, Mock

import pytest

from chainsync.config import Config
from chainsync.db.models import Base
from chainsync.db.session import dispose_db, get_engine, init_db
from chainsync.eth.client import ChainClient, TxReceipt

# Well-known local devnet addresses
SIGNER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
TOKEN_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
CAMPAIGN_ADDRESS = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
BADGE_ADDRESS = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"
DONOR = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


def tx_hash_for(n: int) -> str:
    return f"0x{n:064x}"


@pytest.fixture
def test_config(tmp_path):
    """Test configuration."""
    # Use test database URL from environment or a throwaway SQLite file
    db_url = os.getenv("TEST_DB_URL", f"sqlite:///{tmp_path / 'chainsync.db'}")

    return Config(
        db_url=db_url,
        sync_api_key="test-sync-key",
        indexer_url="http://indexer.test",
        auto_sync_enabled=False,
        private_key=TEST_PRIVATE_KEY,
        settlement_token_address=TOKEN_ADDRESS,
        campaign_contract_address=CAMPAIGN_ADDRESS,
        badge_contract_address=BADGE_ADDRESS,
    )


@pytest.fixture
def db(test_config):
    """Fresh schema for each test."""
    init_db(test_config)
    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield
    dispose_db()


@pytest.fixture
def chain_client():
    """ChainClient double: nonces 5, 6, 7, ... and successful receipts."""
    client = Mock(spec=ChainClient)
    client.address = SIGNER
    nonces = iter(range(5, 100))
    client.pending_nonce.side_effect = lambda: next(nonces)
    client.send_contract_tx.side_effect = lambda fn, nonce, gas=None: tx_hash_for(nonce)
    client.wait_for_receipt.side_effect = lambda tx_hash: TxReceipt(
        tx_hash=tx_hash, block_number=100, status=1
    )
    client.balance.return_value = 10**18
    client.call.return_value = ("Save the Reef", "Alice", 0, 1_000_000, 1_700_000_000, SIGNER)
    client.contract.side_effect = lambda address, abi: MagicMock(name=f"contract:{address}")
    return client


@pytest.fixture
def make_campaign():
    def _make(**overrides):
        payload = {
            "id": 7,
            "name": "Save the Reef",
            "creatorName": "Alice",
            "owner": SIGNER,
            "balance": "0",
            "targetAmount": "1000000",
            "creationTime": 1_700_000_000,
        }
        payload.update(overrides)
        return payload
    return _make


@pytest.fixture
def make_donation():
    def _make(**overrides):
        payload = {
            "id": "0xabc-1",
            "campaignId": 7,
            "donor": DONOR,
            "amount": "500",
            "transactionHash": tx_hash_for(1),
            "blockNumber": 12,
            "timestamp": 1_700_000_100,
        }
        payload.update(overrides)
        return payload
    return _make


@pytest.fixture
def make_withdrawal():
    def _make(**overrides):
        payload = {
            "id": "0xdef-1",
            "campaignId": 7,
            "name": "Save the Reef",
            "owner": SIGNER,
            "creatorName": "Alice",
            "amount": "250",
            "transactionHash": tx_hash_for(2),
            "blockNumber": 20,
            "timestamp": 1_700_000_200,
        }
        payload.update(overrides)
        return payload
    return _make


@pytest.fixture
def make_badge():
    def _make(**overrides):
        payload = {
            "tokenId": 1,
            "owner": DONOR,
            "name": "Supporter: Save the Reef",
            "transactionHash": tx_hash_for(3),
            "blockNumber": 30,
            "timestamp": 1_700_000_300,
        }
        payload.update(overrides)
        return payload
    return _make

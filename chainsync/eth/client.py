"""Web3 client for signing and submitting contract transactions."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction

from chainsync.config import Config
from chainsync.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TxReceipt:
    """The parts of a transaction receipt the writers care about."""
    tx_hash: str
    block_number: int
    status: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainClient:
    """Signs transactions locally with the backend key and sends them raw."""

    def __init__(self, config: Config, web3: Optional[Web3] = None):
        """Initialize Web3 client.

        Args:
            config: Configuration object with RPC URL and signer key
            web3: Pre-built Web3 instance (skips the connection check)
        """
        if not config.private_key:
            raise ValueError("PRIVATE_KEY is required for chain writes")

        self.config = config
        self.account = Account.from_key(config.private_key)

        if web3 is None:
            web3 = Web3(Web3.HTTPProvider(config.rpc_url))
            # Verify connection
            if not web3.is_connected():
                raise ConnectionError(f"Failed to connect to RPC: {config.rpc_url}")
            logger.info(f"Connected to Ethereum RPC: {config.rpc_url}")
        self.web3 = web3

    @property
    def address(self) -> str:
        """Checksummed signer address."""
        return self.account.address

    def contract(self, address: str, abi: List[Dict[str, Any]]) -> Contract:
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def pending_nonce(self) -> int:
        """Signer's transaction count including pending transactions."""
        return self.web3.eth.get_transaction_count(self.address, "pending")

    def balance(self) -> int:
        """Signer's native balance in wei."""
        return self.web3.eth.get_balance(self.address)

    def call(self, fn: ContractFunction) -> Any:
        return fn.call({"from": self.address})

    def send_contract_tx(self, fn: ContractFunction, nonce: int, gas: Optional[int] = None) -> str:
        """Build, sign and submit a contract call.

        Args:
            fn: Bound contract function (e.g. ``token.functions.mint(to, amount)``)
            nonce: Nonce to sign with
            gas: Fixed gas limit; estimated by the node when omitted

        Returns:
            Transaction hash (0x-prefixed hex string)
        """
        tx_params: Dict[str, Any] = {
            "from": self.address,
            "nonce": nonce,
            "chainId": self.config.chain_id,
        }
        if gas is not None:
            tx_params["gas"] = gas

        tx = fn.build_transaction(tx_params)
        signed = self.account.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        """Block until the transaction is mined or the receipt timeout passes.

        Raises:
            web3.exceptions.TimeExhausted: If no receipt arrives in time
        """
        receipt = self.web3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.config.tx_receipt_timeout
        )
        return TxReceipt(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
            status=receipt["status"],
        )

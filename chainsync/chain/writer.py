"""Mint, approve and donate settlement tokens on behalf of a fiat payer."""

from dataclasses import dataclass
from typing import Dict

from web3 import Web3

from chainsync.chain.errors import (
    CampaignNotFoundOnChainError,
    ChainWriteError,
    classify_chain_error,
)
from chainsync.eth.abi_loader import get_campaign_abi, get_settlement_token_abi
from chainsync.eth.client import ChainClient, TxReceipt
from chainsync.log import get_logger

logger = get_logger(__name__)

STEP_PREFLIGHT = "preflight"
STEP_MINT = "mint"
STEP_APPROVE = "approve"
STEP_DONATE = "donate"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass
class MintAndDonateResult:
    """Receipts of a completed sequence."""
    signer: str
    campaign_id: int
    amount: int
    mint: TxReceipt
    approve: TxReceipt
    donate: TxReceipt

    def tx_hashes(self) -> Dict[str, str]:
        return {
            "mintTxHash": self.mint.tx_hash,
            "approveTxHash": self.approve.tx_hash,
            "donateTxHash": self.donate.tx_hash,
        }


class ChainWriter:
    """Runs the three-transaction donation sequence from the backend signer.

    Each step fetches the signer's pending nonce right before it is built, so
    transactions sent by other writers in between never collide with ours.
    Steps already confirmed are never undone; failures report them instead.
    """

    def __init__(self, client: ChainClient, token_address: str, campaign_address: str):
        self.client = client
        self.token_address = Web3.to_checksum_address(token_address)
        self.campaign_address = Web3.to_checksum_address(campaign_address)
        self.token = client.contract(self.token_address, get_settlement_token_abi())
        self.campaign = client.contract(self.campaign_address, get_campaign_abi())

    def ensure_campaign_exists(self, campaign_id: int) -> None:
        """Read the campaign before anything is minted.

        Raises:
            CampaignNotFoundOnChainError: If the campaign read reverts or has no owner
            ChainWriteError: If the read fails for another reason
        """
        try:
            info = self.client.call(self.campaign.functions.getCampaignInfo(campaign_id))
        except Exception as e:
            error = classify_chain_error(e, STEP_PREFLIGHT)
            if type(error) is ChainWriteError and "revert" in str(e).lower():
                error = CampaignNotFoundOnChainError(
                    f"Campaign {campaign_id} does not exist on chain: {e}", step=STEP_PREFLIGHT
                )
            raise error from e

        owner = info[5] if len(info) > 5 else None
        if not owner or str(owner).lower() == ZERO_ADDRESS:
            raise CampaignNotFoundOnChainError(
                f"Campaign {campaign_id} does not exist on chain", step=STEP_PREFLIGHT
            )

    def _run_step(self, step: str, fn, confirmed: Dict[str, TxReceipt]) -> TxReceipt:
        tx_hash = None
        try:
            nonce = self.client.pending_nonce()
            tx_hash = self.client.send_contract_tx(fn, nonce)
            logger.info(f"{step} submitted: {tx_hash} (nonce {nonce})")
            receipt = self.client.wait_for_receipt(tx_hash)
        except Exception as e:
            error = classify_chain_error(e, step, confirmed)
            error.tx_hash = error.tx_hash or tx_hash
            raise error from e

        if not receipt.succeeded:
            raise ChainWriteError(
                f"{step} transaction {receipt.tx_hash} reverted",
                step=step,
                confirmed=confirmed,
                tx_hash=receipt.tx_hash,
            )

        logger.info(f"{step} confirmed: {receipt.tx_hash} (block {receipt.block_number})")
        return receipt

    def mint_and_donate(self, campaign_id: int, amount: int) -> MintAndDonateResult:
        """Mint ``amount`` tokens to the signer, approve the campaign contract and donate.

        Args:
            campaign_id: On-chain campaign id
            amount: Token amount in the smallest unit

        Returns:
            Receipts of all three steps

        Raises:
            NonceConflictError: A nonce clash; retry the whole sequence
            CampaignNotFoundOnChainError: The campaign does not exist
            ChainWriteError: Any other failure, with the confirmed steps attached
        """
        if amount <= 0:
            raise ValueError("amount must be > 0")

        self.ensure_campaign_exists(campaign_id)

        signer = self.client.address
        steps = (
            (STEP_MINT, self.token.functions.mint(signer, amount)),
            (STEP_APPROVE, self.token.functions.approve(self.campaign_address, amount)),
            (STEP_DONATE, self.campaign.functions.donate(campaign_id, amount, self.token_address)),
        )

        confirmed: Dict[str, TxReceipt] = {}
        for step, fn in steps:
            confirmed[step] = self._run_step(step, fn, confirmed)

        logger.info(f"Donated {amount} to campaign {campaign_id} from {signer}")
        return MintAndDonateResult(
            signer=signer,
            campaign_id=campaign_id,
            amount=amount,
            mint=confirmed[STEP_MINT],
            approve=confirmed[STEP_APPROVE],
            donate=confirmed[STEP_DONATE],
        )

"""Supporter badge minting, one badge per donor per campaign."""

from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Optional

from sqlalchemy.orm import Session
from web3 import Web3

from chainsync.config import Config
from chainsync.db.session import get_session
from chainsync.eth.abi_loader import get_badge_abi
from chainsync.eth.client import ChainClient
from chainsync.log import get_logger
from chainsync.sync.store import get_campaign, owns_badge_named

logger = get_logger(__name__)


def badge_title(campaign_name: str) -> str:
    return f"Supporter: {campaign_name}"


class BadgeMinter:
    """Mints a supporter badge after a donation if the donor has none yet.

    The minted badge reaches the cache through the normal sync path; this
    class only reads the cache. Failures are logged and never raised, since
    minting runs after the donation has already been stored.
    """

    def __init__(
        self,
        config: Config,
        client: ChainClient,
        session_scope: Callable[[], AbstractContextManager[Session]] = get_session,
    ):
        if not config.badge_contract_address:
            raise ValueError("BADGE_CONTRACT_ADDRESS is required for badge minting")

        self.client = client
        self.min_balance_wei = config.badge_min_balance_wei
        self.gas_limit = config.badge_gas_limit
        self.session_scope = session_scope
        self.badge = client.contract(config.badge_contract_address, get_badge_abi())

    def check_and_mint(self, donor: str, campaign_id: int, amount: int) -> Optional[str]:
        """Mint a badge for ``donor`` unless they already hold one for this campaign.

        Returns:
            Mint transaction hash, or None if nothing was minted
        """
        try:
            return self._check_and_mint(donor, campaign_id, amount)
        except Exception as e:
            logger.error(f"Failed to mint badge for {donor}: {e}", exc_info=True)
            return None

    def _check_and_mint(self, donor: str, campaign_id: int, amount: int) -> Optional[str]:
        with self.session_scope() as session:
            campaign = get_campaign(session, campaign_id)
            if campaign is None:
                logger.warning(f"Campaign #{campaign_id} not found, skipping badge minting")
                return None
            campaign_name = campaign.name
            title = badge_title(campaign_name)
            if owns_badge_named(session, donor, title):
                logger.info(f"{donor} already has badge {title!r}, skipping")
                return None

        balance = self.client.balance()
        if balance < self.min_balance_wei:
            logger.error(
                f"Insufficient funds in backend wallet {self.client.address}: "
                f"have {balance} wei, need {self.min_balance_wei} wei"
            )
            return None

        description = f"Awarded for donating {amount} tokens to {campaign_name}."
        fn = self.badge.functions.mintBadge(Web3.to_checksum_address(donor), title, description)
        tx_hash = self.client.send_contract_tx(fn, self.client.pending_nonce(), gas=self.gas_limit)
        logger.info(f"Badge mint sent: {tx_hash}, waiting for confirmation")

        receipt = self.client.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            logger.error(f"Badge mint {tx_hash} reverted")
            return None

        logger.info(f"Badge {title!r} minted for {donor}: {tx_hash}")
        return tx_hash

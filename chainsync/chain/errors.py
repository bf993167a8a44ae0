"""Typed failures of the mint, approve, donate sequence."""

from typing import Dict, Optional

from chainsync.errors import ChainSyncError
from chainsync.eth.client import TxReceipt

NONCE_ERROR_PATTERNS = (
    "nonce too low",
    "nonce too high",
    "replacement transaction underpriced",
    "already known",
    "nonce has already been used",
    "invalid nonce",
)

CAMPAIGN_NOT_FOUND_PATTERNS = (
    "campaign does not exist",
    "campaign not found",
    "invalid campaign",
)


class ChainWriteError(ChainSyncError):
    """A chain write step failed.

    Attributes:
        step: Step that failed ("preflight", "mint", "approve" or "donate")
        confirmed: Receipts of the steps confirmed before the failure, by step
        tx_hash: Hash of the failed transaction, if it was submitted
    """

    retryable = False

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        confirmed: Optional[Dict[str, TxReceipt]] = None,
        tx_hash: Optional[str] = None,
    ):
        super().__init__(message)
        self.step = step
        self.confirmed = dict(confirmed or {})
        self.tx_hash = tx_hash

    @property
    def has_confirmed_steps(self) -> bool:
        return bool(self.confirmed)


class NonceConflictError(ChainWriteError):
    """The signer's nonce moved under us. Safe to retry from scratch."""
    retryable = True


class CampaignNotFoundOnChainError(ChainWriteError):
    """The target campaign does not exist on chain. Never retry."""
    pass


def classify_chain_error(
    exc: Exception,
    step: str,
    confirmed: Optional[Dict[str, TxReceipt]] = None,
) -> ChainWriteError:
    """Wrap a web3/RPC exception in the matching typed error."""
    if isinstance(exc, ChainWriteError):
        return exc

    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    text = f"{step} failed: {message}"

    if any(pattern in lowered for pattern in NONCE_ERROR_PATTERNS):
        return NonceConflictError(text, step=step, confirmed=confirmed)
    if any(pattern in lowered for pattern in CAMPAIGN_NOT_FOUND_PATTERNS):
        return CampaignNotFoundOnChainError(text, step=step, confirmed=confirmed)
    return ChainWriteError(text, step=step, confirmed=confirmed)

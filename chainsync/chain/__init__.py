"""On-chain writes made by the backend signer."""

from chainsync.chain.errors import (
    CampaignNotFoundOnChainError,
    ChainWriteError,
    NonceConflictError,
)
from chainsync.chain.writer import ChainWriter, MintAndDonateResult

__all__ = [
    "CampaignNotFoundOnChainError",
    "ChainWriteError",
    "ChainWriter",
    "MintAndDonateResult",
    "NonceConflictError",
]

"""ABI file loader."""

import json
from pathlib import Path
from typing import Any, Dict

from chainsync.log import get_logger

logger = get_logger(__name__)

# ABI directory shipped inside the package
ABI_DIR = Path(__file__).parent.parent / "abi"


def load_abi(contract_name: str) -> list[Dict[str, Any]]:
    """Load ABI from JSON file.

    Args:
        contract_name: Contract name (e.g., "Campaign" or "Badge")

    Returns:
        ABI as list of dictionaries

    Raises:
        FileNotFoundError: If ABI file doesn't exist
        ValueError: If ABI file is invalid JSON
    """
    abi_path = ABI_DIR / f"{contract_name}.json"

    if not abi_path.exists():
        raise FileNotFoundError(f"ABI file not found: {abi_path.absolute()}")

    try:
        with open(abi_path, "r") as f:
            abi = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in ABI file {abi_path}: {e}") from e

    if not isinstance(abi, list):
        raise ValueError(f"ABI must be a list, got {type(abi)}")

    logger.debug(f"Loaded ABI for {contract_name} ({len(abi)} entries)")
    return abi


def get_settlement_token_abi() -> list[Dict[str, Any]]:
    """Mintable ERC20 used to settle fiat payments."""
    return load_abi("SettlementToken")


def get_campaign_abi() -> list[Dict[str, Any]]:
    return load_abi("Campaign")


def get_badge_abi() -> list[Dict[str, Any]]:
    return load_abi("Badge")

"""Configuration management for the chain cache sync service."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

MAX_SYNC_PAGE_SIZE = 1000


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value or None


@dataclass
class Config:
    """Service configuration."""

    # Required
    db_url: str
    sync_api_key: str

    # Indexer / sync settings
    indexer_url: str = "http://localhost:42069"
    indexer_timeout_seconds: int = 30
    sync_interval_seconds: int = 10
    sync_page_size: int = MAX_SYNC_PAGE_SIZE
    sync_max_pages: int = 50
    auto_sync_enabled: bool = True
    sync_stale_after_seconds: int = 60

    # Blockchain settings
    rpc_url: str = "https://sepolia.base.org"
    chain_id: int = 84532  # Base Sepolia
    private_key: Optional[str] = None
    settlement_token_address: Optional[str] = None
    campaign_contract_address: Optional[str] = None
    badge_contract_address: Optional[str] = None
    token_decimals: int = 2
    tx_receipt_timeout: int = 120
    chain_max_attempts: int = 3

    # Badge side effect
    badge_minting_enabled: bool = False
    badge_min_balance_wei: int = 800_000_000_000_000  # 0.0008 ETH
    badge_gas_limit: int = 500_000

    # Payment gateway callback
    payment_server_key: Optional[str] = None

    # HTTP server
    http_host: str = "0.0.0.0"
    http_port: int = 3300
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_url = os.getenv("DB_URL")
        if not db_url:
            raise ValueError("DB_URL environment variable is required")

        sync_api_key = os.getenv("SYNC_API_KEY")
        if not sync_api_key:
            raise ValueError("SYNC_API_KEY environment variable is required")

        return cls(
            db_url=db_url,
            sync_api_key=sync_api_key,
            # Indexer / sync settings
            indexer_url=os.getenv("INDEXER_URL", "http://localhost:42069"),
            indexer_timeout_seconds=int(os.getenv("INDEXER_TIMEOUT_SECONDS", "30")),
            sync_interval_seconds=int(os.getenv("SYNC_INTERVAL_SECONDS", "10")),
            sync_page_size=int(os.getenv("SYNC_PAGE_SIZE", str(MAX_SYNC_PAGE_SIZE))),
            sync_max_pages=int(os.getenv("SYNC_MAX_PAGES", "50")),
            auto_sync_enabled=_env_bool("AUTO_SYNC_ENABLED", True),
            sync_stale_after_seconds=int(os.getenv("SYNC_STALE_AFTER_SECONDS", "60")),
            # Blockchain settings
            rpc_url=os.getenv("RPC_URL", "https://sepolia.base.org"),
            chain_id=int(os.getenv("CHAIN_ID", "84532")),
            private_key=_env_optional("PRIVATE_KEY"),
            settlement_token_address=_env_optional("SETTLEMENT_TOKEN_ADDRESS"),
            campaign_contract_address=_env_optional("CAMPAIGN_CONTRACT_ADDRESS"),
            badge_contract_address=_env_optional("BADGE_CONTRACT_ADDRESS"),
            token_decimals=int(os.getenv("TOKEN_DECIMALS", "2")),
            tx_receipt_timeout=int(os.getenv("TX_RECEIPT_TIMEOUT", "120")),
            chain_max_attempts=int(os.getenv("CHAIN_MAX_ATTEMPTS", "3")),
            # Badge side effect
            badge_minting_enabled=_env_bool("BADGE_MINTING_ENABLED", False),
            badge_min_balance_wei=int(os.getenv("BADGE_MIN_BALANCE_WEI", "800000000000000")),
            badge_gas_limit=int(os.getenv("BADGE_GAS_LIMIT", "500000")),
            # Payment gateway callback
            payment_server_key=_env_optional("PAYMENT_SERVER_KEY"),
            # HTTP server
            http_host=os.getenv("HTTP_HOST", "0.0.0.0"),
            http_port=int(os.getenv("HTTP_PORT", "3300")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.db_url:
            raise ValueError("db_url is required")
        if not self.sync_api_key:
            raise ValueError("sync_api_key is required")
        if self.sync_interval_seconds <= 0:
            raise ValueError("sync_interval_seconds must be > 0")
        if not 0 < self.sync_page_size <= MAX_SYNC_PAGE_SIZE:
            raise ValueError(f"sync_page_size must be between 1 and {MAX_SYNC_PAGE_SIZE}")
        if self.sync_max_pages <= 0:
            raise ValueError("sync_max_pages must be > 0")
        if self.sync_stale_after_seconds <= 0:
            raise ValueError("sync_stale_after_seconds must be > 0")
        if self.indexer_timeout_seconds <= 0:
            raise ValueError("indexer_timeout_seconds must be > 0")
        if self.token_decimals < 0:
            raise ValueError("token_decimals must be >= 0")
        if self.tx_receipt_timeout <= 0:
            raise ValueError("tx_receipt_timeout must be > 0")
        if self.chain_max_attempts <= 0:
            raise ValueError("chain_max_attempts must be > 0")
        if self.http_port <= 0:
            raise ValueError("http_port must be > 0")
        if self.private_key and not self.chain_writes_configured:
            raise ValueError(
                "PRIVATE_KEY is set but SETTLEMENT_TOKEN_ADDRESS and "
                "CAMPAIGN_CONTRACT_ADDRESS are not both configured"
            )
        if self.badge_minting_enabled and not (self.private_key and self.badge_contract_address):
            raise ValueError("badge minting requires PRIVATE_KEY and BADGE_CONTRACT_ADDRESS")

    @property
    def chain_writes_configured(self) -> bool:
        """Whether the mint-and-donate path has everything it needs."""
        return bool(
            self.private_key
            and self.settlement_token_address
            and self.campaign_contract_address
        )

    @property
    def graphql_url(self) -> str:
        """Indexer GraphQL endpoint."""
        return f"{self.indexer_url.rstrip('/')}/graphql"

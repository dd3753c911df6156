"""Configuration management for the escrow indexer."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()


@dataclass
class Config:
    """Indexer configuration."""

    # Required
    factory_address: str
    db_url: str
    rpc_url: str

    # Blockchain settings
    confirmations: int = 0
    block_batch_size: int = 10_000
    lookback_blocks: int = 50_000
    poll_interval_seconds: float = 15
    batch_delay_seconds: float = 1.0
    log_level: str = "INFO"

    # Retry settings
    max_retries: int = 5
    retry_base_delay_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        factory_address = os.getenv("FACTORY_ADDRESS")
        if not factory_address:
            raise ValueError("FACTORY_ADDRESS environment variable is required")

        rpc_url = os.getenv("RPC_URL")
        if not rpc_url:
            raise ValueError("RPC_URL environment variable is required")

        db_url = os.getenv("DB_URL")
        if not db_url:
            raise ValueError("DB_URL environment variable is required")

        return cls(
            factory_address=factory_address,
            db_url=db_url,
            rpc_url=rpc_url,
            # Blockchain settings
            confirmations=int(os.getenv("CONFIRMATIONS", "0")),
            block_batch_size=int(os.getenv("BLOCK_BATCH_SIZE", "10000")),
            lookback_blocks=int(os.getenv("LOOKBACK_BLOCKS", "50000")),
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "15")),
            batch_delay_seconds=float(os.getenv("BATCH_DELAY_SECONDS", "1.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            # Retry settings
            max_retries=int(os.getenv("MAX_RETRIES", "5")),
            retry_base_delay_seconds=float(os.getenv("RETRY_BASE_DELAY_SECONDS", "1.0")),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.factory_address:
            raise ValueError("factory_address is required")
        if not self.db_url:
            raise ValueError("db_url is required")
        if not self.rpc_url:
            raise ValueError("rpc_url is required")
        if self.confirmations < 0:
            raise ValueError("confirmations must be >= 0")
        if self.block_batch_size <= 0:
            raise ValueError("block_batch_size must be > 0")
        if self.lookback_blocks < 0:
            raise ValueError("lookback_blocks must be >= 0")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if self.batch_delay_seconds < 0:
            raise ValueError("batch_delay_seconds must be >= 0")
        if self.max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        if self.retry_base_delay_seconds < 0:
            raise ValueError("retry_base_delay_seconds must be >= 0")

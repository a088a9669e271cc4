"""
Configuration module for the whale transfer monitor.
Loads environment variables and provides application settings.
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import ChainConfig

USDC_DECIMALS = 6

# Native USDC contracts
ETHEREUM_USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
ARBITRUM_USDC = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
BASE_USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Chain endpoints: ws(s):// subscribes, http(s):// polls
    ethereum_rpc_url: str = "https://eth.llamarpc.com"
    arbitrum_rpc_url: str = "https://arb1.arbitrum.io/rpc"
    base_rpc_url: str = "https://mainnet.base.org"

    # Full chain list as JSON, replaces the three defaults when set
    chains: Optional[List[ChainConfig]] = None

    # Whale threshold in whole tokens (1,000,000 USDC)
    whale_threshold: Decimal = Field(default=Decimal(1_000_000), ge=0)

    # Same threshold in token base units; wins over whale_threshold when set
    whale_threshold_raw: Optional[int] = Field(default=None, ge=0)

    # Polling interval for HTTP endpoints
    poll_interval: float = Field(default=3.0, gt=0)

    # Reconnect backoff (capped exponential)
    ws_reconnect_delay: float = Field(default=1.0, gt=0)
    ws_max_reconnect_delay: float = Field(default=60.0, gt=0)
    ws_ping_interval: int = 30
    ws_ping_timeout: int = 20

    # Report dropped (undecodable) logs at WARNING instead of DEBUG
    log_decode_errors: bool = True

    # Address labels
    labels_path: str = "data/labels.json"

    # Optional Telegram forwarding
    # Format: "chat_id" or "chat_id:thread_id" for topics
    bot_token: Optional[str] = None
    alerts_chat_id: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.bot_token and self.alerts_chat_id)


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()


def get_chain_configs(settings: Settings) -> List[ChainConfig]:
    """
    USDC on Ethereum, Arbitrum and Base unless an explicit list is configured.
    whale_threshold_raw is copied onto chains without their own threshold_raw.
    """
    if settings.chains:
        chains = list(settings.chains)
    else:
        chains = _default_chains(settings)

    if settings.whale_threshold_raw is None:
        return chains
    return [
        c if c.threshold_raw is not None else c.model_copy(update={"threshold_raw": settings.whale_threshold_raw})
        for c in chains
    ]


def _default_chains(settings: Settings) -> List[ChainConfig]:
    return [
        ChainConfig(
            chain_id="ethereum",
            name="Ethereum",
            endpoint=settings.ethereum_rpc_url,
            contract_address=ETHEREUM_USDC,
            decimals=USDC_DECIMALS,
            explorer_url="https://etherscan.io",
            poll_interval=settings.poll_interval,
        ),
        ChainConfig(
            chain_id="arbitrum",
            name="Arbitrum",
            endpoint=settings.arbitrum_rpc_url,
            contract_address=ARBITRUM_USDC,
            decimals=USDC_DECIMALS,
            explorer_url="https://arbiscan.io",
            poll_interval=settings.poll_interval,
        ),
        ChainConfig(
            chain_id="base",
            name="Base",
            endpoint=settings.base_rpc_url,
            contract_address=BASE_USDC,
            decimals=USDC_DECIMALS,
            explorer_url="https://basescan.org",
            poll_interval=settings.poll_interval,
        ),
    ]

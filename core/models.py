"""
Pydantic models for the whale transfer monitor.
Chain configuration, raw log records, decoded transfers and alerts.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChainState(str, Enum):
    """Lifecycle state of a monitored chain."""
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    FAILED = "failed"
    STOPPED = "stopped"


class ChainConfig(BaseModel):
    """Configuration for a single monitored network."""
    model_config = ConfigDict(frozen=True)

    chain_id: str  # Short identifier, e.g. "ethereum"
    name: str  # Display name, e.g. "Ethereum"
    endpoint: str  # ws(s):// for subscriptions, http(s):// for polling
    contract_address: str  # Token contract (USDC)
    decimals: int = 6
    explorer_url: Optional[str] = None  # e.g. "https://etherscan.io"
    poll_interval: float = 3.0  # Only used by HTTP polling feeds
    threshold_raw: Optional[int] = None  # Per-chain override in base units

    def explorer_tx_url(self, tx_hash: str) -> Optional[str]:
        """Block explorer link for a transaction, if the chain has one."""
        if not self.explorer_url or not tx_hash:
            return None
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


class RawLog(BaseModel):
    """Log record as delivered by eth_subscribe / eth_getLogs."""
    model_config = ConfigDict(frozen=True)

    address: str = ""
    topics: List[str] = Field(default_factory=list)
    data: str = "0x"
    transaction_hash: Optional[str] = None
    block_number: Optional[str] = None  # Hex quantity
    block_timestamp: Optional[str] = None  # Hex quantity, not all nodes send it
    log_index: Optional[str] = None
    removed: bool = False

    @classmethod
    def from_rpc(cls, log: Dict[str, Any]) -> "RawLog":
        """
        Build from a JSON-RPC log object (camelCase keys).

        Never raises: fields of the wrong type are blanked so the decoder
        rejects the record instead of the feed.
        """
        topics = log.get("topics") or []
        return cls(
            address=_text(log.get("address")) or "",
            topics=[str(t) for t in topics] if isinstance(topics, list) else [],
            data=_text(log.get("data")) or "0x",
            transaction_hash=_text(log.get("transactionHash")),
            block_number=_quantity(log.get("blockNumber")),
            block_timestamp=_quantity(log.get("blockTimestamp")),
            log_index=_quantity(log.get("logIndex")),
            removed=bool(log.get("removed", False)),
        )


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _quantity(value: Any) -> Optional[str]:
    # Some providers send plain integers instead of hex quantities
    if value is None:
        return None
    if isinstance(value, int):
        return hex(value)
    return str(value)


class TransferEvent(BaseModel):
    """Decoded ERC-20 Transfer."""
    model_config = ConfigDict(frozen=True)

    chain_id: str
    from_address: str
    to_address: str
    amount: int  # Base units
    tx_hash: str
    block_number: Optional[int] = None
    timestamp: Optional[datetime] = None


class WhaleAlert(BaseModel):
    """Transfer that crossed the whale threshold, enriched with labels."""
    model_config = ConfigDict(frozen=True)

    chain_id: str
    chain_name: str
    amount: Decimal  # Display amount (token units)
    amount_raw: int
    from_address: str
    from_label: Optional[str] = None
    to_address: str
    to_label: Optional[str] = None
    tx_hash: str
    block_number: Optional[int] = None
    timestamp: datetime
    explorer_url: Optional[str] = None


class ChainStatus(BaseModel):
    """Per-chain runtime statistics."""
    chain_id: str
    name: str
    state: ChainState = ChainState.IDLE
    failures: int = 0
    decode_errors: int = 0
    alerts: int = 0
    last_error: Optional[str] = None

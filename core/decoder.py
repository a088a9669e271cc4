"""
ERC-20 Transfer log decoder.
Turns raw log records into typed TransferEvent values.
"""
import re
from datetime import datetime, timezone
from typing import Optional

from core.exceptions import DecodeError
from core.models import RawLog, TransferEvent

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

WORD_HEX_LEN = 64  # 32 bytes
HEX_RE = re.compile(r"[0-9a-fA-F]*")


def _strip_hex(value: str, what: str) -> str:
    if not isinstance(value, str) or not value.startswith(("0x", "0X")):
        raise DecodeError(f"{what} is not a 0x-prefixed hex string: {value!r}")
    body = value[2:]
    if not HEX_RE.fullmatch(body):
        raise DecodeError(f"{what} contains non-hex characters: {value!r}")
    return body


def _parse_quantity(value: Optional[str], what: str) -> Optional[int]:
    if value is None:
        return None
    return int(_strip_hex(value, what) or "0", 16)


def _topic_address(topic: str, what: str) -> str:
    body = _strip_hex(topic, what)
    if len(body) != WORD_HEX_LEN:
        raise DecodeError(f"{what} must be a 32-byte word, got {len(body) // 2} bytes")
    if int(body[:24], 16) != 0:
        raise DecodeError(f"{what} has non-zero padding, not an address")
    return "0x" + body[24:].lower()


def decode(log: RawLog, chain_id: str = "") -> TransferEvent:
    """
    Decode a Transfer log.

    Args:
        log: Raw log from the chain feed
        chain_id: Chain the log was received on

    Returns:
        TransferEvent with lower-case addresses and the amount in base units

    Raises:
        DecodeError: if the log is not a well-formed ERC-20 Transfer
    """
    if log.removed:
        raise DecodeError("log was removed by a chain reorganisation")

    # ERC-20: topic0 + indexed from + indexed to. ERC-721 has a 4th topic.
    if len(log.topics) != 3:
        raise DecodeError(f"expected 3 topics, got {len(log.topics)}")
    if log.topics[0].lower() != TRANSFER_TOPIC:
        raise DecodeError(f"topic0 is not the Transfer signature: {log.topics[0]}")

    from_address = _topic_address(log.topics[1], "from topic")
    to_address = _topic_address(log.topics[2], "to topic")

    data = _strip_hex(log.data, "data")
    if len(data) != WORD_HEX_LEN:
        raise DecodeError(f"expected 32 bytes of data, got {len(data) / 2:g}")
    amount = int(data, 16)

    if not log.transaction_hash:
        raise DecodeError("log has no transaction hash")

    block_number = _parse_quantity(log.block_number, "blockNumber")
    block_ts = _parse_quantity(log.block_timestamp, "blockTimestamp")
    timestamp = None
    if block_ts is not None:
        try:
            timestamp = datetime.fromtimestamp(block_ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise DecodeError(f"blockTimestamp out of range: {log.block_timestamp}") from None

    return TransferEvent(
        chain_id=chain_id,
        from_address=from_address,
        to_address=to_address,
        amount=amount,
        tx_hash=log.transaction_hash,
        block_number=block_number,
        timestamp=timestamp,
    )

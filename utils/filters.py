"""
Whale filter.
Decides whether a decoded transfer should become an alert and enriches it with labels.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from core.labels import LabelResolver
from core.models import ChainConfig, TransferEvent, WhaleAlert
from utils.formatting import to_base_units, to_display_amount

logger = logging.getLogger(__name__)


def chain_threshold(chain: ChainConfig, whale_threshold) -> int:
    """
    Threshold for a chain in base units.

    Args:
        chain: Chain configuration (may carry its own raw threshold)
        whale_threshold: Global threshold in whole tokens
    """
    if chain.threshold_raw is not None:
        return chain.threshold_raw
    return to_base_units(whale_threshold, chain.decimals)


def is_whale(event: TransferEvent, threshold: int) -> bool:
    """Integer comparison in base units; equal to the threshold qualifies."""
    return event.amount >= threshold


def evaluate(
    event: TransferEvent,
    threshold: int,
    chain: ChainConfig,
    labels: LabelResolver,
) -> Optional[WhaleAlert]:
    """
    Build a WhaleAlert for a transfer at or above the threshold.

    Args:
        event: Decoded transfer
        threshold: Minimum amount in base units
        chain: Chain the transfer happened on (name, decimals, explorer)
        labels: Address label lookup

    Returns:
        WhaleAlert, or None if the transfer is below the threshold
    """
    if not is_whale(event, threshold):
        return None

    # Display conversion only after the threshold decision
    amount = to_display_amount(event.amount, chain.decimals)
    logger.debug(f"[{chain.name}] Whale transfer {event.tx_hash}: {event.amount} >= {threshold}")

    return WhaleAlert(
        chain_id=chain.chain_id,
        chain_name=chain.name,
        amount=amount,
        amount_raw=event.amount,
        from_address=event.from_address,
        from_label=labels.resolve(event.from_address),
        to_address=event.to_address,
        to_label=labels.resolve(event.to_address),
        tx_hash=event.tx_hash,
        block_number=event.block_number,
        timestamp=event.timestamp or datetime.now(timezone.utc),
        explorer_url=chain.explorer_tx_url(event.tx_hash),
    )

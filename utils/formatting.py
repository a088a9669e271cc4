"""
Amount conversion and message formatting for whale alerts.
"""
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Optional

from core.models import WhaleAlert


def to_display_amount(raw: int, decimals: int) -> Decimal:
    """
    Convert a base-unit amount to token units without rounding.

    Example: to_display_amount(74_000_000_000, 6) -> Decimal("74000.000000")
    """
    with localcontext() as ctx:
        ctx.prec = max(28, len(str(abs(raw))) + decimals + 1)
        return Decimal(raw).scaleb(-decimals)


def to_base_units(amount, decimals: int) -> int:
    """Convert a token amount (Decimal, int or numeric string) back to base units."""
    value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    with localcontext() as ctx:
        ctx.prec = max(28, len(value.as_tuple().digits) + decimals + 1)
        scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} has more than {decimals} decimal places")
    return int(scaled)


def format_usd(amount: Decimal) -> str:
    """Format a USD-pegged amount with thousands separators: $74,000.00"""
    return f"${amount:,.2f}"


def format_address(address: str, length: int = 6, tail: Optional[int] = None) -> str:
    """
    Format blockchain address for display (0x1234...abcd).

    Args:
        address: Full blockchain address
        length: Number of leading characters to show
        tail: Number of trailing characters to show (defaults to length)
    """
    tail = length if tail is None else tail
    if not address or len(address) <= length + tail:
        return address

    return f"{address[:length]}...{address[-tail:]}"


def format_labeled_address(address: str, label: Optional[str]) -> str:
    """Short address followed by its label, or (Unknown)."""
    short = format_address(address, 10, 8)
    return f"{short} ({label or 'Unknown'})"


def format_alert_record(alert: WhaleAlert) -> str:
    """
    Render a whale alert as a multi-line console record.

    Example output:
    [2025-01-10 14:02:11] [ETHEREUM] 🐋 WHALE TRANSFER DETECTED
      Amount: $1,250,000.00 USDC
      From:   0x28c6c062...3bf21d60 (Binance Hot Wallet)
      To:     0x12345678...90abcdef (Unknown)
      Tx:     0xabcdef12...34567890
      Block:  21500000
      Link:   https://etherscan.io/tx/0xabcdef...
    """
    lines = [
        f"[{_format_time(alert.timestamp)}] [{alert.chain_name.upper()}] 🐋 WHALE TRANSFER DETECTED",
        f"  Amount: {format_usd(alert.amount)} USDC",
        f"  From:   {format_labeled_address(alert.from_address, alert.from_label)}",
        f"  To:     {format_labeled_address(alert.to_address, alert.to_label)}",
        f"  Tx:     {format_address(alert.tx_hash, 10, 8)}",
    ]
    if alert.block_number is not None:
        lines.append(f"  Block:  {alert.block_number}")
    if alert.explorer_url:
        lines.append(f"  Link:   {alert.explorer_url}")
    return "\n".join(lines) + "\n"


def format_alert_summary(alert: WhaleAlert) -> str:
    """One-line version of an alert for the alerts log."""
    return (
        f"{alert.chain_name} {format_usd(alert.amount)} "
        f"{alert.from_address} ({alert.from_label or 'Unknown'}) -> "
        f"{alert.to_address} ({alert.to_label or 'Unknown'}) tx={alert.tx_hash}"
    )


def format_whale_notification(alert: WhaleAlert) -> str:
    """
    Format a whale alert for Telegram.

    Example output:
    🐋 WHALE TRANSFER on Ethereum

    💰 Amount: $1,250,000.00 USDC
    📤 From: Binance Hot Wallet
           0x28C6c0...bf21d60
    📥 To: 0x123456...90abcdef

    🔗 Tx: https://etherscan.io/tx/0x1234...5678
    ⏰ 2025-01-10 14:02:11 UTC
    """
    def side(address: str, label: Optional[str]) -> str:
        short = f"{address[:8]}...{address[-8:]}"
        return f"{label}\n       {short}" if label else short

    tx_line = alert.explorer_url or alert.tx_hash
    return (
        f"🐋 WHALE TRANSFER on {alert.chain_name}\n\n"
        f"💰 Amount: {format_usd(alert.amount)} USDC\n"
        f"📤 From: {side(alert.from_address, alert.from_label)}\n"
        f"📥 To: {side(alert.to_address, alert.to_label)}\n\n"
        f"🔗 Tx: {tx_line}\n"
        f"⏰ {_format_time(alert.timestamp)} UTC"
    )


def _format_time(timestamp: datetime) -> str:
    return timestamp.strftime('%Y-%m-%d %H:%M:%S')

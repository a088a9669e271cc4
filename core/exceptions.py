"""
Exception hierarchy for the whale transfer monitor.
"""
from typing import Optional


class WhaleMonitorError(Exception):
    """Base exception for all monitor errors."""


class FeedConnectionError(WhaleMonitorError, ConnectionError):
    """Transport-level failure of a chain feed. Retried by the supervisor."""

    def __init__(self, chain_id: str, message: str, cause: Optional[BaseException] = None):
        self.chain_id = chain_id
        self.cause = cause
        super().__init__(f"[{chain_id}] {message}")


class DecodeError(WhaleMonitorError, ValueError):
    """A log record does not have the shape of an ERC-20 Transfer."""


class ConfigurationError(WhaleMonitorError):
    """Invalid chain configuration. Fatal for that chain only."""

"""
Shared fixtures for the whale monitor tests.
"""
import asyncio

import pytest

from core.chain_feed import ChainFeed
from core.decoder import TRANSFER_TOPIC
from core.labels import LabelResolver
from core.models import ChainConfig, RawLog

BINANCE = "0x28C6c06298d514Db089934071355E5743bf21d60"
UNLABELED = "0x1234567890abcdef1234567890abcdef12345678"

HANG = object()


def address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address.lower()[2:]


def amount_data(amount: int) -> str:
    return "0x" + format(amount, "064x")


def make_log(
    amount: int = 74_000_000_000,
    sender: str = BINANCE,
    recipient: str = UNLABELED,
    tx_hash: str = "0x" + "ab" * 32,
    block_number: str = "0x1499700",
    **overrides,
) -> RawLog:
    fields = dict(
        address="0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
        topics=[TRANSFER_TOPIC, address_topic(sender), address_topic(recipient)],
        data=amount_data(amount),
        transaction_hash=tx_hash,
        block_number=block_number,
    )
    fields.update(overrides)
    return RawLog(**fields)


class ScriptedFeed(ChainFeed):
    """
    Feed that plays back a script: RawLog items are yielded, exceptions are
    raised, HANG blocks forever. After the script it blocks forever.

    The subscription is acknowledged on the first non-exception item, so a
    script that starts with an exception fails while still connecting.
    """

    def __init__(self, config: ChainConfig, script, delay: float = 0.0):
        super().__init__(config)
        self.script = script
        self.delay = delay
        self.closed = False
        self._acknowledged = False

    def _acknowledge(self):
        if not self._acknowledged:
            self._acknowledged = True
            self._notify_subscribed()

    async def start(self):
        try:
            for item in self.script:
                if isinstance(item, BaseException):
                    raise item
                self._acknowledge()
                if item is HANG:
                    await asyncio.Event().wait()
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield item
            self._acknowledge()
            await asyncio.Event().wait()
        finally:
            self.closed = True


class FeedFactory:
    """Hands out one scripted feed per connection attempt, per chain."""

    def __init__(self, scripts, delay: float = 0.0):
        # chain_id -> list of scripts, the last one is reused
        self.scripts = scripts
        self.delay = delay
        self.attempts = {}
        self.feeds = []

    def __call__(self, config: ChainConfig) -> ChainFeed:
        n = self.attempts.get(config.chain_id, 0)
        self.attempts[config.chain_id] = n + 1
        scripts = self.scripts.get(config.chain_id, [[]])
        script = scripts[min(n, len(scripts) - 1)]
        feed = ScriptedFeed(config, script() if callable(script) else script, self.delay)
        self.feeds.append(feed)
        return feed


async def wait_until(predicate, timeout: float = 2.0):
    """Poll predicate until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.005)


def chain(chain_id: str, name: str, **overrides) -> ChainConfig:
    fields = dict(
        chain_id=chain_id,
        name=name,
        endpoint=f"wss://{chain_id}.example/ws",
        contract_address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        decimals=6,
        explorer_url="https://etherscan.io",
    )
    fields.update(overrides)
    return ChainConfig(**fields)


@pytest.fixture
def ethereum() -> ChainConfig:
    return chain("ethereum", "Ethereum")


@pytest.fixture
def labels() -> LabelResolver:
    return LabelResolver({BINANCE: "Binance Hot Wallet"})

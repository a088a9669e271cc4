"""
Chain feeds for ERC-20 Transfer logs.

A feed owns one connection to one chain for the lifetime of a single
start() call and yields RawLog records in the order they arrive. It never
retries on its own: any transport failure ends the stream with
FeedConnectionError and the supervisor decides when to call start() again.
"""
import asyncio
import json
import logging
import re
from typing import Any, AsyncIterator, Callable, List, Optional

import aiohttp
import websockets
from websockets.exceptions import WebSocketException

from core.decoder import TRANSFER_TOPIC
from core.exceptions import ConfigurationError, FeedConnectionError
from core.models import ChainConfig, RawLog

logger = logging.getLogger(__name__)

CONTRACT_RE = re.compile(r"0x[0-9a-fA-F]{40}")
WS_SCHEMES = ("ws://", "wss://")
HTTP_SCHEMES = ("http://", "https://")
MAX_DECIMALS = 77  # uint256 has 78 digits


def check_chain_config(config: ChainConfig) -> None:
    """
    Validate a chain configuration before any connection is attempted.

    Raises:
        ConfigurationError: if the configuration can never work
    """
    problems = []
    if not config.endpoint.startswith(WS_SCHEMES + HTTP_SCHEMES):
        problems.append(f"unsupported endpoint scheme: {config.endpoint!r}")
    if not CONTRACT_RE.fullmatch(config.contract_address or ""):
        problems.append(f"invalid contract address: {config.contract_address!r}")
    if not 0 <= config.decimals <= MAX_DECIMALS:
        problems.append(f"decimals out of range: {config.decimals}")
    if config.poll_interval <= 0:
        problems.append(f"poll_interval must be positive: {config.poll_interval}")
    if config.threshold_raw is not None and config.threshold_raw < 0:
        problems.append(f"threshold_raw must not be negative: {config.threshold_raw}")

    if problems:
        raise ConfigurationError(f"[{config.chain_id}] " + "; ".join(problems))


class ChainFeed:
    """Base class for a single-chain Transfer log stream."""

    def __init__(self, config: ChainConfig):
        self.config = config
        # Called once per start() when the stream is confirmed live
        self.on_subscribed: Optional[Callable[[], None]] = None

    @property
    def chain_id(self) -> str:
        return self.config.chain_id

    def start(self) -> AsyncIterator[RawLog]:
        raise NotImplementedError

    def _notify_subscribed(self):
        if self.on_subscribed:
            self.on_subscribed()

    def _fail(self, message: str, cause: Optional[BaseException] = None) -> FeedConnectionError:
        return FeedConnectionError(self.chain_id, message, cause)


class WebSocketChainFeed(ChainFeed):
    """
    eth_subscribe("logs") feed over a websocket connection.
    """

    SUBSCRIBE_ID = 1

    def __init__(
        self,
        config: ChainConfig,
        ping_interval: int = 30,
        ping_timeout: int = 20,
        open_timeout: float = 10.0,
    ):
        super().__init__(config)
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.open_timeout = open_timeout
        self._subscription_id: Optional[str] = None

    async def start(self) -> AsyncIterator[RawLog]:
        """Connect, subscribe and yield Transfer logs until the connection drops."""
        logger.info(f"[{self.config.name}] Connecting to {self.config.endpoint}")

        try:
            async with websockets.connect(
                self.config.endpoint,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                open_timeout=self.open_timeout,
            ) as ws:
                self._subscription_id = await self._subscribe(ws)
                logger.info(f"[{self.config.name}] Subscribed to Transfer logs (id {self._subscription_id})")
                self._notify_subscribed()

                async for message in ws:
                    log = self._parse_message(message)
                    if log is not None:
                        yield log

        except FeedConnectionError:
            raise
        except (WebSocketException, OSError, asyncio.TimeoutError) as e:
            raise self._fail(f"websocket error: {e!r}", e) from e

        # Clean close from the remote end still ends this connection
        raise self._fail("stream closed by remote")

    async def _subscribe(self, ws) -> str:
        """Send eth_subscribe and wait for the subscription id."""
        request = {
            "jsonrpc": "2.0",
            "id": self.SUBSCRIBE_ID,
            "method": "eth_subscribe",
            "params": [
                "logs",
                {
                    "address": self.config.contract_address,
                    "topics": [TRANSFER_TOPIC],
                },
            ],
        }
        await ws.send(json.dumps(request))

        while True:
            response = self._load(await asyncio.wait_for(ws.recv(), timeout=self.open_timeout))
            if response.get("id") != self.SUBSCRIBE_ID:
                continue
            if "error" in response or not response.get("result"):
                raise self._fail(f"subscription rejected: {response.get('error', response)}")
            return str(response["result"])

    def _parse_message(self, message) -> Optional[RawLog]:
        data = self._load(message)

        if data.get("method") != "eth_subscription":
            if "error" in data:
                raise self._fail(f"node error: {data['error']}")
            return None

        params = data.get("params") or {}
        if params.get("subscription") != self._subscription_id:
            return None

        result = params.get("result")
        if not isinstance(result, dict):
            logger.debug(f"[{self.config.name}] Ignoring non-log notification: {result!r}")
            return None
        return RawLog.from_rpc(result)

    def _load(self, message) -> dict:
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise self._fail(f"undecodable frame: {message!r:.200}", e) from e
        if not isinstance(data, dict):
            raise self._fail(f"unexpected frame: {data!r:.200}")
        return data


class HttpPollingChainFeed(ChainFeed):
    """
    eth_getLogs polling feed for endpoints without websocket support.
    Starts at the current head and queries each new block range once.
    """

    def __init__(self, config: ChainConfig, request_timeout: float = 30.0):
        super().__init__(config)
        self.request_timeout = request_timeout
        self._request_id = 0

    async def start(self) -> AsyncIterator[RawLog]:
        """Poll for new blocks and yield their Transfer logs."""
        logger.info(
            f"[{self.config.name}] Polling {self.config.endpoint} "
            f"every {self.config.poll_interval}s"
        )
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                last_block = await self._block_number(session)
                logger.info(f"[{self.config.name}] Starting from block {last_block}")
                self._notify_subscribed()

                while True:
                    await asyncio.sleep(self.config.poll_interval)

                    latest_block = await self._block_number(session)
                    if latest_block <= last_block:
                        continue

                    for log in await self._get_logs(session, last_block + 1, latest_block):
                        yield log
                    last_block = latest_block

        except FeedConnectionError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise self._fail(f"http error: {e!r}", e) from e

    async def _block_number(self, session: aiohttp.ClientSession) -> int:
        result = await self._rpc(session, "eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise self._fail(f"bad eth_blockNumber result: {result!r}", e) from e

    async def _get_logs(self, session: aiohttp.ClientSession, from_block: int, to_block: int) -> List[RawLog]:
        params = [{
            "address": self.config.contract_address,
            "topics": [TRANSFER_TOPIC],
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }]
        result = await self._rpc(session, "eth_getLogs", params)
        if not isinstance(result, list):
            raise self._fail(f"bad eth_getLogs result: {result!r:.200}")
        return [RawLog.from_rpc(log) for log in result if isinstance(log, dict)]

    async def _rpc(self, session: aiohttp.ClientSession, method: str, params: list) -> Any:
        """Single JSON-RPC call. Any failure is a connection failure."""
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        async with session.post(self.config.endpoint, json=payload) as resp:
            resp.raise_for_status()
            try:
                data = await resp.json(content_type=None)
            except ValueError as e:
                raise self._fail(f"{method}: invalid JSON response", e) from e

        if not isinstance(data, dict):
            raise self._fail(f"{method}: unexpected response {data!r:.200}")
        if "error" in data:
            raise self._fail(f"{method}: node error {data['error']}")
        return data.get("result")


def create_feed(
    config: ChainConfig,
    ping_interval: int = 30,
    ping_timeout: int = 20,
    request_timeout: float = 30.0,
) -> ChainFeed:
    """Pick the feed implementation from the endpoint scheme."""
    if config.endpoint.startswith(WS_SCHEMES):
        return WebSocketChainFeed(config, ping_interval=ping_interval, ping_timeout=ping_timeout)
    if config.endpoint.startswith(HTTP_SCHEMES):
        return HttpPollingChainFeed(config, request_timeout=request_timeout)
    raise ConfigurationError(f"[{config.chain_id}] unsupported endpoint scheme: {config.endpoint!r}")

"""
Tests for the websocket and HTTP polling chain feeds.
"""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from websockets.exceptions import ConnectionClosedError

from core.chain_feed import (
    HttpPollingChainFeed, WebSocketChainFeed, check_chain_config, create_feed,
)
from core.decoder import TRANSFER_TOPIC
from core.exceptions import ConfigurationError, FeedConnectionError

from conftest import BINANCE, UNLABELED, address_topic, amount_data, chain

SUB_ID = "0x9cef478923ff08bf67fde6c64013158d"


def rpc_log(amount: int = 74_000_000_000, block: str = "0x10") -> dict:
    return {
        "address": "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
        "topics": [TRANSFER_TOPIC, address_topic(BINANCE), address_topic(UNLABELED)],
        "data": amount_data(amount),
        "blockNumber": block,
        "transactionHash": "0x" + "ab" * 32,
        "logIndex": "0x0",
        "removed": False,
    }


def notification(log: dict, subscription: str = SUB_ID) -> str:
    return json.dumps({
        "jsonrpc": "2.0",
        "method": "eth_subscription",
        "params": {"subscription": subscription, "result": log},
    })


class FakeWebSocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self, frames, reply=None):
        self.frames = list(frames)
        self.replies = [reply or json.dumps({"jsonrpc": "2.0", "id": 1, "result": SUB_ID})]
        self.sent = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def recv(self):
        return self.replies.pop(0)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            if isinstance(frame, BaseException):
                raise frame
            yield frame


async def drain(feed):
    """Collect logs until the feed fails."""
    logs = []
    with pytest.raises(FeedConnectionError) as exc_info:
        async for log in feed.start():
            logs.append(log)
    return logs, exc_info.value


@pytest.fixture
def ws_chain():
    return chain("ethereum", "Ethereum", endpoint="wss://eth.example/ws")


@pytest.fixture
def http_chain():
    return chain("base", "Base", endpoint="https://base.example/rpc", poll_interval=0.001)


async def test_websocket_feed_subscribes_and_yields_logs(ws_chain):
    ws = FakeWebSocket([
        notification(rpc_log(1)),
        notification(rpc_log(2), subscription="0xother"),
        json.dumps({"jsonrpc": "2.0", "method": "eth_subscription", "params": {"subscription": SUB_ID, "result": "0x1"}}),
        notification(rpc_log(3)),
    ])
    feed = WebSocketChainFeed(ws_chain)
    subscribed = MagicMock()
    feed.on_subscribed = subscribed

    with patch("core.chain_feed.websockets.connect", return_value=ws) as connect:
        logs, error = await drain(feed)

    connect.assert_called_once()
    assert connect.call_args.args[0] == "wss://eth.example/ws"
    request = ws.sent[0]
    assert request["method"] == "eth_subscribe"
    assert request["params"][1] == {"address": ws_chain.contract_address, "topics": [TRANSFER_TOPIC]}
    subscribed.assert_called_once()

    assert [log.data for log in logs] == [amount_data(1), amount_data(3)]
    assert "closed by remote" in str(error)
    assert ws.closed


async def test_websocket_connection_loss_raises_connection_error(ws_chain):
    ws = FakeWebSocket([notification(rpc_log()), ConnectionClosedError(None, None)])
    feed = WebSocketChainFeed(ws_chain)

    with patch("core.chain_feed.websockets.connect", return_value=ws):
        logs, error = await drain(feed)

    assert len(logs) == 1
    assert isinstance(error, ConnectionError)
    assert error.chain_id == "ethereum"
    assert isinstance(error.cause, ConnectionClosedError)


async def test_websocket_connect_failure(ws_chain):
    feed = WebSocketChainFeed(ws_chain)

    with patch("core.chain_feed.websockets.connect", side_effect=OSError("refused")):
        logs, error = await drain(feed)

    assert logs == []
    assert "refused" in str(error)


async def test_websocket_subscription_rejected(ws_chain):
    reply = json.dumps({"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "invalid params"}})
    ws = FakeWebSocket([notification(rpc_log())], reply=reply)
    feed = WebSocketChainFeed(ws_chain)
    feed.on_subscribed = MagicMock()

    with patch("core.chain_feed.websockets.connect", return_value=ws):
        logs, error = await drain(feed)

    assert logs == []
    assert "subscription rejected" in str(error)
    feed.on_subscribed.assert_not_called()


async def test_websocket_undecodable_frame_is_transport_error(ws_chain):
    ws = FakeWebSocket(["{not json", notification(rpc_log())])
    feed = WebSocketChainFeed(ws_chain)

    with patch("core.chain_feed.websockets.connect", return_value=ws):
        logs, error = await drain(feed)

    assert logs == []
    assert "undecodable frame" in str(error)


async def test_websocket_aclose_closes_connection(ws_chain):
    ws = FakeWebSocket([notification(rpc_log()), notification(rpc_log())])
    feed = WebSocketChainFeed(ws_chain)

    with patch("core.chain_feed.websockets.connect", return_value=ws):
        stream = feed.start()
        await stream.__anext__()
        await stream.aclose()

    assert ws.closed


async def test_http_feed_polls_new_block_ranges(http_chain):
    feed = HttpPollingChainFeed(http_chain)
    feed.on_subscribed = MagicMock()
    rpc = AsyncMock(side_effect=[
        "0x10",  # start block
        "0x10",  # nothing new
        "0x12",
        [rpc_log(1, "0x11"), rpc_log(2, "0x12")],
        aiohttp.ClientConnectionError("reset by peer"),
    ])

    with patch.object(feed, "_rpc", rpc):
        logs, error = await drain(feed)

    feed.on_subscribed.assert_called_once()
    assert [log.block_number for log in logs] == ["0x11", "0x12"]
    method, params = rpc.await_args_list[3].args[1:]
    assert method == "eth_getLogs"
    assert params[0]["fromBlock"] == "0x11"
    assert params[0]["toBlock"] == "0x12"
    assert params[0]["topics"] == [TRANSFER_TOPIC]
    assert "reset by peer" in str(error)


async def test_http_feed_bad_block_number(http_chain):
    feed = HttpPollingChainFeed(http_chain)

    with patch.object(feed, "_rpc", AsyncMock(return_value=None)):
        logs, error = await drain(feed)

    assert logs == []
    assert "eth_blockNumber" in str(error)


async def test_http_feed_node_error_is_connection_error(http_chain):
    feed = HttpPollingChainFeed(http_chain)
    rpc = AsyncMock(side_effect=[
        "0x10",
        "0x11",
        FeedConnectionError("base", "eth_getLogs: node error {'code': -32005}"),
    ])

    with patch.object(feed, "_rpc", rpc):
        logs, error = await drain(feed)

    assert "node error" in str(error)


def test_create_feed_picks_transport():
    assert isinstance(create_feed(chain("a", "A", endpoint="wss://x")), WebSocketChainFeed)
    assert isinstance(create_feed(chain("b", "B", endpoint="ws://x")), WebSocketChainFeed)
    assert isinstance(create_feed(chain("c", "C", endpoint="https://x")), HttpPollingChainFeed)
    with pytest.raises(ConfigurationError):
        create_feed(chain("d", "D", endpoint="ftp://x"))


@pytest.mark.parametrize("overrides", [
    dict(endpoint="ftp://node"),
    dict(contract_address="0x1234"),
    dict(contract_address="USDC"),
    dict(decimals=-1),
    dict(decimals=78),
    dict(poll_interval=0),
    dict(threshold_raw=-5),
])
def test_check_chain_config_rejects(overrides):
    with pytest.raises(ConfigurationError):
        check_chain_config(chain("x", "X", **overrides))


def test_check_chain_config_accepts_valid(ws_chain, http_chain):
    check_chain_config(ws_chain)
    check_chain_config(http_chain)


async def test_websocket_malformed_log_does_not_end_stream(ws_chain):
    bad = dict(rpc_log(1), transactionHash=12345, address=None)
    ws = FakeWebSocket([notification(bad), notification(rpc_log(2))])
    feed = WebSocketChainFeed(ws_chain)

    with patch("core.chain_feed.websockets.connect", return_value=ws):
        logs, error = await drain(feed)

    assert [log.data for log in logs] == [amount_data(1), amount_data(2)]
    assert logs[0].transaction_hash is None
    assert "closed by remote" in str(error)


async def test_http_malformed_log_keeps_rest_of_range(http_chain):
    feed = HttpPollingChainFeed(http_chain)
    bad = dict(rpc_log(1, "0x11"), transactionHash={"hash": "0x1"}, data=7)
    rpc = AsyncMock(side_effect=[
        "0x10",
        "0x12",
        [bad, rpc_log(2, "0x12")],
        aiohttp.ClientConnectionError("reset by peer"),
    ])

    with patch.object(feed, "_rpc", rpc):
        logs, error = await drain(feed)

    assert [log.block_number for log in logs] == ["0x11", "0x12"]
    assert logs[0].data == "0x"
    assert "reset by peer" in str(error)

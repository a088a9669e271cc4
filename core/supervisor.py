"""
Monitor supervisor.
Runs one feed per chain concurrently, restarts failed feeds with capped
exponential backoff, and shuts everything down in order.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Union

from core.alert_sink import AlertSink
from core.chain_feed import ChainFeed, check_chain_config, create_feed
from core.decoder import decode
from core.exceptions import ConfigurationError, DecodeError, FeedConnectionError
from core.labels import LabelResolver
from core.models import ChainConfig, ChainState, ChainStatus, RawLog
from utils.filters import chain_threshold, evaluate

logger = logging.getLogger(__name__)

FeedFactory = Callable[[ChainConfig], ChainFeed]


class MonitorSupervisor:
    """
    Owns the lifecycle of every chain feed.

    Per chain: IDLE -> CONNECTING -> STREAMING -> FAILED -> CONNECTING ...
    and any state -> STOPPED on shutdown. A failure on one chain never
    touches the others.
    """

    def __init__(
        self,
        chains: List[ChainConfig],
        labels: LabelResolver,
        sink: AlertSink,
        whale_threshold: Union[int, Decimal] = 1_000_000,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
        log_decode_errors: bool = True,
        feed_factory: FeedFactory = create_feed,
    ):
        if reconnect_delay <= 0:
            raise ValueError("reconnect_delay must be positive")
        if max_reconnect_delay < reconnect_delay:
            raise ValueError("max_reconnect_delay must be >= reconnect_delay")

        self.chains = list(chains)
        self.labels = labels
        self.sink = sink
        self.whale_threshold = whale_threshold
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.log_decode_errors = log_decode_errors
        self.feed_factory = feed_factory

        self.statuses: Dict[str, ChainStatus] = {
            c.chain_id: ChainStatus(chain_id=c.chain_id, name=c.name) for c in self.chains
        }
        self.tasks: Dict[str, asyncio.Task] = {}
        self._stop_event: Optional[asyncio.Event] = None
        self._current_delay: Dict[str, float] = {}

    @property
    def states(self) -> Dict[str, ChainState]:
        return {chain_id: status.state for chain_id, status in self.statuses.items()}

    def status(self) -> List[ChainStatus]:
        """Snapshot of per-chain statistics."""
        return [status.model_copy() for status in self.statuses.values()]

    @property
    def stopping(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    async def start(self):
        """Start one task per configured chain."""
        if self.tasks:
            raise RuntimeError("supervisor already started")

        self._stop_event = asyncio.Event()
        logger.info(f"Starting monitors for {len(self.chains)} chains")

        for chain in self.chains:
            self.tasks[chain.chain_id] = asyncio.create_task(
                self._run_chain(chain), name=f"chain:{chain.chain_id}"
            )

    async def wait(self):
        """Block until stop() is requested and every chain task has finished."""
        if self._stop_event is None:
            raise RuntimeError("supervisor not started")
        await self._stop_event.wait()
        await asyncio.gather(*self.tasks.values(), return_exceptions=True)

    async def stop(self):
        """Request shutdown, cancel every chain task and wait for them."""
        if self._stop_event is None:
            return
        logger.info("Stopping all chain monitors...")
        self._stop_event.set()

        for task in self.tasks.values():
            if not task.done():
                task.cancel()
        await asyncio.gather(*self.tasks.values(), return_exceptions=True)

        for chain_id in self.statuses:
            self._set_state(chain_id, ChainState.STOPPED)
        logger.info("All chain monitors stopped")

    async def _run_chain(self, chain: ChainConfig):
        """Supervision loop for one chain."""
        chain_id = chain.chain_id
        try:
            try:
                check_chain_config(chain)
                threshold = chain_threshold(chain, self.whale_threshold)
            except (ConfigurationError, ValueError) as e:
                logger.error(f"[{chain.name}] Invalid configuration, chain disabled: {e}")
                self.statuses[chain_id].last_error = str(e)
                self._set_state(chain_id, ChainState.FAILED)
                return

            self._current_delay[chain_id] = self.reconnect_delay

            while not self.stopping:
                self._set_state(chain_id, ChainState.CONNECTING)
                error = await self._consume_feed(chain, threshold)
                if self.stopping:
                    break

                status = self.statuses[chain_id]
                status.failures += 1
                status.last_error = str(error)
                self._set_state(chain_id, ChainState.FAILED)

                delay = self._current_delay[chain_id]
                logger.warning(f"[{chain.name}] Feed failed: {error}. Reconnecting in {delay:g}s...")
                self._current_delay[chain_id] = min(delay * 2, self.max_reconnect_delay)

                if await self._sleep_or_stop(delay):
                    break
        finally:
            if self.stopping:
                self._set_state(chain_id, ChainState.STOPPED)

    async def _consume_feed(self, chain: ChainConfig, threshold: int) -> FeedConnectionError:
        """
        Run one feed connection to completion.

        Returns the error that ended the stream instead of raising it, so the
        retry decision stays in _run_chain.
        """
        chain_id = chain.chain_id

        def on_subscribed():
            self._mark_streaming(chain)

        try:
            feed = self.feed_factory(chain)
            feed.on_subscribed = on_subscribed
            stream = feed.start()
            try:
                async for raw_log in stream:
                    if self.stopping:
                        break
                    self._mark_streaming(chain)
                    await self._process_log(chain, threshold, raw_log)
            finally:
                await stream.aclose()
        except FeedConnectionError as e:
            return e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[{chain.name}] Unexpected error in chain pipeline")
            return FeedConnectionError(chain_id, f"unexpected error: {e!r}", e)

        return FeedConnectionError(chain_id, "feed ended")

    async def _process_log(self, chain: ChainConfig, threshold: int, raw_log: RawLog):
        """Decode, filter and emit a single log. Bad records are dropped."""
        status = self.statuses[chain.chain_id]
        try:
            event = decode(raw_log, chain.chain_id)
        except DecodeError as e:
            status.decode_errors += 1
            if self.log_decode_errors:
                logger.warning(f"[{chain.name}] Dropping undecodable log {raw_log.transaction_hash}: {e}")
            else:
                logger.debug(f"[{chain.name}] Dropping undecodable log {raw_log.transaction_hash}: {e}")
            return

        alert = evaluate(event, threshold, chain, self.labels)
        if alert is None:
            return

        status.alerts += 1
        await self.sink.emit(alert)

    def _mark_streaming(self, chain: ChainConfig):
        status = self.statuses[chain.chain_id]
        if status.state == ChainState.CONNECTING:
            self._set_state(chain.chain_id, ChainState.STREAMING)
            self._current_delay[chain.chain_id] = self.reconnect_delay

    async def _sleep_or_stop(self, delay: float) -> bool:
        """Backoff wait that ends early on shutdown. Returns True if stopping."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _set_state(self, chain_id: str, state: ChainState):
        status = self.statuses[chain_id]
        if status.state == state or status.state == ChainState.STOPPED:
            return
        logger.debug(f"[{status.name}] {status.state.value} -> {state.value}")
        status.state = state

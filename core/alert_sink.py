"""
Alert sink shared by all chain pipelines.
Writes each whale alert as one uninterrupted record and fans it out to forwarders.
"""
import asyncio
import logging
import sys
from typing import Awaitable, Callable, List, Optional, TextIO

from core.models import WhaleAlert
from utils.formatting import format_alert_record, format_alert_summary

logger = logging.getLogger(__name__)
alerts_logger = logging.getLogger('alerts')

Forwarder = Callable[[WhaleAlert], Awaitable[None]]


class AlertSink:
    """
    Single writer for whale alerts.

    Chain pipelines call emit() concurrently; the lock keeps every record
    whole on the output stream. No ordering across chains is implied.
    Forwarders run on a background task fed by a queue, so a slow or
    rate-limited forwarder never holds up a chain.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream
        self.forwarders: List[Forwarder] = []
        self.emitted = 0
        self._lock = asyncio.Lock()
        self._queue: "asyncio.Queue[WhaleAlert]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def add_forwarder(self, forwarder: Forwarder):
        """Register an async callable that receives every alert (e.g. Telegram)."""
        self.forwarders.append(forwarder)

    @property
    def pending(self) -> int:
        """Alerts queued but not yet forwarded."""
        return self._queue.qsize()

    async def emit(self, alert: WhaleAlert):
        """Write an alert to the console and the alerts log, then queue it for forwarding."""
        record = format_alert_record(alert)

        async with self._lock:
            stream = self.stream or sys.stdout
            stream.write("\n" + record)
            stream.flush()
            alerts_logger.info(format_alert_summary(alert))
            self.emitted += 1

        if self.forwarders:
            self._ensure_worker()
            self._queue.put_nowait(alert)

    async def drain(self):
        """Wait until every queued alert has been forwarded."""
        await self._queue.join()

    async def close(self, timeout: float = 5.0):
        """Forward what is still queued (bounded by timeout) and stop the worker."""
        if self._worker is None:
            return

        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Dropping {self.pending} unforwarded alerts on shutdown")

        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    def _ensure_worker(self):
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._forward_loop(), name="alert_forwarder")

    async def _forward_loop(self):
        while True:
            alert = await self._queue.get()
            try:
                for forwarder in self.forwarders:
                    try:
                        await forwarder(alert)
                    except Exception as e:
                        logger.error(f"Error forwarding alert {alert.tx_hash}: {e}")
            finally:
                self._queue.task_done()

"""
Whale Transfer Monitor - Main Entry Point
Real-time monitoring of large USDC transfers across EVM chains.
"""
import asyncio
import functools
import logging
import signal
import sys
from typing import Optional

from aiogram import Bot

from config import Settings, get_chain_configs, get_settings
from core.alert_sink import AlertSink
from core.chain_feed import create_feed
from core.labels import DEFAULT_LABEL_PATHS, LabelResolver
from core.supervisor import MonitorSupervisor
from bot.notifier import Notifier
from utils.formatting import format_usd
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


class WhaleMonitor:
    """Main application wiring labels, chain feeds, supervisor and outputs."""

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize application components."""
        self.settings = settings or get_settings()

        self.labels: Optional[LabelResolver] = None
        self.sink: Optional[AlertSink] = None
        self.notifier: Optional[Notifier] = None
        self.supervisor: Optional[MonitorSupervisor] = None

        self._shutdown_event = asyncio.Event()

    async def setup(self):
        """Load labels and build the monitoring pipeline."""
        self.labels = LabelResolver.load_with_defaults([self.settings.labels_path, *DEFAULT_LABEL_PATHS])
        self.sink = AlertSink()

        if self.settings.telegram_enabled:
            self.notifier = Notifier(Bot(token=self.settings.bot_token), self.settings.alerts_chat_id)
            self.sink.add_forwarder(self.notifier.notify_whale)
            logger.info("Telegram forwarding enabled")

        chains = get_chain_configs(self.settings)
        feed_factory = functools.partial(
            create_feed,
            ping_interval=self.settings.ws_ping_interval,
            ping_timeout=self.settings.ws_ping_timeout,
        )
        self.supervisor = MonitorSupervisor(
            chains=chains,
            labels=self.labels,
            sink=self.sink,
            whale_threshold=self.settings.whale_threshold,
            reconnect_delay=self.settings.ws_reconnect_delay,
            max_reconnect_delay=max(self.settings.ws_max_reconnect_delay, self.settings.ws_reconnect_delay),
            log_decode_errors=self.settings.log_decode_errors,
            feed_factory=feed_factory,
        )

        logger.info("=" * 65)
        logger.info("🐋  USDC WHALE DETECTOR")
        logger.info(f"✓ Loaded {len(self.labels)} address labels")
        if self.settings.whale_threshold_raw is not None:
            logger.info(f"✓ Whale threshold: {self.settings.whale_threshold_raw} base units")
        else:
            logger.info(f"✓ Whale threshold: {format_usd(self.settings.whale_threshold)} USDC")
        logger.info(f"✓ Monitoring chains: {', '.join(c.name for c in chains)}")
        logger.info("=" * 65)

    def request_shutdown(self):
        """Signal-safe shutdown request."""
        logger.info("🛑 Shutdown signal received")
        self._shutdown_event.set()

    async def start(self):
        """Run until a shutdown is requested."""
        await self.supervisor.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down whale monitor...")

        await self.supervisor.stop()
        for status in self.supervisor.status():
            logger.info(
                f"  {status.name}: {status.state.value}, {status.alerts} alerts, "
                f"{status.failures} reconnects, {status.decode_errors} dropped logs"
            )

        # Flush queued Telegram alerts before the bot session goes away
        await self.sink.close()
        if self.notifier:
            await self.notifier.close()

        logger.info("Shutdown complete")


async def main():
    """Main entry point."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)

    monitor = WhaleMonitor(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, monitor.request_shutdown)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    try:
        await monitor.setup()
        await monitor.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Monitor stopped by user")

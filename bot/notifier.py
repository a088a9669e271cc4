"""
Telegram forwarding for whale alerts.
Handles destination parsing, rate limiting and Telegram API errors.
"""
import asyncio
import logging
from typing import Optional, Tuple

from aiogram import Bot
from aiogram.exceptions import TelegramForbiddenError, TelegramRetryAfter

from core.models import WhaleAlert
from utils.formatting import format_whale_notification

logger = logging.getLogger(__name__)


def parse_chat_destination(chat_config: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    """
    Parse chat destination from config string.

    Args:
        chat_config: Either "chat_id" or "chat_id:thread_id"

    Returns:
        Tuple of (chat_id, message_thread_id)
    """
    if not chat_config:
        return None, None

    try:
        if ':' in chat_config:
            chat_id_str, thread_id_str = chat_config.split(':', 1)
            return int(chat_id_str), int(thread_id_str)
        else:
            return int(chat_config), None
    except ValueError:
        logger.error(f"Invalid chat destination format: {chat_config}")
        return None, None


class Notifier:
    """
    Sends whale alerts to a Telegram chat or forum topic.
    Registered on the AlertSink as a forwarder.
    """

    def __init__(self, bot: Bot, chat_config: str, rate_limit_delay: float = 0.05):
        """Initialize notifier with bot instance and destination."""
        self.bot = bot
        self.chat_id, self.thread_id = parse_chat_destination(chat_config)
        self._rate_limit_delay = rate_limit_delay  # 50ms between messages
        self._blocked = False

    @property
    def enabled(self) -> bool:
        return self.chat_id is not None and not self._blocked

    async def notify_whale(self, alert: WhaleAlert):
        """Send a whale alert notification."""
        if not self.enabled:
            return

        message = format_whale_notification(alert)
        await self._send_message(message)

    async def _send_message(self, text: str):
        """
        Send message with rate limiting and error handling.

        Args:
            text: Message text to send
        """
        # Rate limiting
        await asyncio.sleep(self._rate_limit_delay)

        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=text,
                message_thread_id=self.thread_id,
                parse_mode=None,  # Plain text for better emoji support
                disable_web_page_preview=True
            )

        except TelegramRetryAfter as e:
            # Telegram rate limit hit
            logger.warning(f"Rate limit hit for chat {self.chat_id}, waiting {e.retry_after}s")
            await asyncio.sleep(e.retry_after)
            # Retry once
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=text,
                message_thread_id=self.thread_id,
                parse_mode=None,
                disable_web_page_preview=True
            )

        except TelegramForbiddenError:
            # Bot blocked or removed from the group
            logger.warning(f"Bot blocked or removed from chat {self.chat_id}, disabling Telegram alerts")
            self._blocked = True

    async def close(self):
        """Close the bot HTTP session."""
        await self.bot.session.close()

"""
Notification system for delivering outflow pattern alerts.
Sends the rendered alert to a Discord webhook and/or a Telegram chat.
"""
import asyncio
import logging
from typing import List, Optional, Tuple

import aiohttp
from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramForbiddenError, TelegramRetryAfter

from config import Settings, get_settings
from core.errors import DeliveryError
from core.models import OutflowAlert
from utils.formatting import format_outflow_alert

logger = logging.getLogger(__name__)


class Notifier:
    """
    Delivers alerts to every configured destination.
    Each alert is sent once; failures raise DeliveryError and are not retried.
    """

    def __init__(self, bot: Optional[Bot] = None, settings: Optional[Settings] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize notifier with an optional Telegram bot instance."""
        self.bot = bot
        self._settings = settings or get_settings()
        self._session = session

    @property
    def destinations(self) -> List[str]:
        names = []
        if self._settings.discord_webhook_url:
            names.append("discord")
        if self.bot is not None and self._settings.alert_chat_id:
            names.append("telegram")
        return names

    def _parse_chat_destination(self, chat_config: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
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

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

    async def close(self):
        """Close HTTP and bot sessions."""
        if self._session and not self._session.closed:
            await self._session.close()
        if self.bot is not None:
            await self.bot.session.close()

    async def notify_alert(self, alert: OutflowAlert):
        """
        Send an outflow alert to all destinations.

        Raises:
            DeliveryError: if no destination is configured or any delivery failed
        """
        destinations = self.destinations
        if not destinations:
            raise DeliveryError("notifier", "no alert destination configured")

        text = format_outflow_alert(alert)
        failures = []

        for name in destinations:
            try:
                if name == "discord":
                    await self._send_discord(text)
                else:
                    await self._send_telegram(text)
                logger.info(f"Alert delivered via {name}")
            except DeliveryError as e:
                logger.error(f"Alert delivery failed: {e}")
                failures.append(e)

        if failures:
            raise DeliveryError(
                ",".join(f.destination for f in failures),
                "; ".join(str(f) for f in failures),
            )

    async def _send_discord(self, text: str):
        """POST the alert to the Discord webhook."""
        ping = self._settings.discord_ping.strip()
        content = f"{ping}\n{text}" if ping else text
        payload = {
            "content": content,
            "allowed_mentions": {"parse": ["everyone", "roles", "users"] if ping else []},
        }

        await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self._settings.webhook_timeout)

        try:
            async with self._session.post(self._settings.discord_webhook_url,
                                          json=payload, timeout=timeout) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise DeliveryError("discord", f"HTTP {response.status}: {body[:200]}")
        except asyncio.TimeoutError:
            raise DeliveryError("discord", "webhook request timed out")
        except aiohttp.ClientError as e:
            raise DeliveryError("discord", str(e))

    async def _send_telegram(self, text: str):
        """
        Send the alert to the configured Telegram chat.

        Args:
            text: Message text to send
        """
        chat_id, thread_id = self._parse_chat_destination(self._settings.alert_chat_id)
        if chat_id is None:
            raise DeliveryError("telegram", f"invalid chat destination {self._settings.alert_chat_id!r}")

        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                message_thread_id=thread_id,
                parse_mode=None,  # Plain text for better emoji support
                disable_web_page_preview=True
            )

        except TelegramRetryAfter as e:
            raise DeliveryError("telegram", f"rate limited, retry after {e.retry_after}s")

        except TelegramForbiddenError:
            raise DeliveryError("telegram", f"bot blocked or removed from chat {chat_id}")

        except (TelegramAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DeliveryError("telegram", str(e))

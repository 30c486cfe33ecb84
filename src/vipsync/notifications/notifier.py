"""Outbound chat notifications. Best effort, never part of a state transition.

``NotificationDispatcher.fire`` schedules delivery on a background task and
returns immediately. Delivery failures are logged and dropped; they are
never retried inline and never roll back the write that triggered them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from vipsync.config import Settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, message: str) -> None: ...


class DiscordWebhookNotifier:
    """Posts messages to a Discord channel webhook."""

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def notify(self, message: str) -> None:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.webhook_url,
                json={"content": message},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()


class NullNotifier:
    """Used when no webhook URL is configured."""

    async def notify(self, message: str) -> None:
        logger.debug("Notification dropped (no notifier configured): %s", message)


def build_notifier(settings: Settings) -> Notifier:
    if settings.notifier_webhook_url:
        return DiscordWebhookNotifier(settings.notifier_webhook_url, settings.notifier_timeout_seconds)
    return NullNotifier()


class NotificationDispatcher:
    """Fire-and-forget wrapper around a notifier."""

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier
        self._pending: set[asyncio.Task[None]] = set()

    def fire(self, message: str) -> None:
        task = asyncio.create_task(self._deliver(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, message: str) -> None:
        try:
            await self.notifier.notify(message)
        except Exception:
            logger.warning("Notification delivery failed: %s", message, exc_info=True)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)


def vip_purchase_message(user_id: str, tier_name: str) -> str:
    return f"<:gold_donator:1053256617518440478> | User <@{user_id}> (`{user_id}`) just became VIP {tier_name}!"


def vote_message(user_id: str) -> str:
    return f"<:gold_donator:1053256617518440478> | User <@{user_id}> (`{user_id}`) just voted!"

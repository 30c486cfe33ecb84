"""Notification dispatch: fire-and-forget, failures swallowed."""

from __future__ import annotations

import pytest

from vipsync.config import Settings
from vipsync.notifications.notifier import (
    DiscordWebhookNotifier,
    NotificationDispatcher,
    NullNotifier,
    build_notifier,
    vip_purchase_message,
    vote_message,
)


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_fire_delivers_in_background(self, notifier):
        dispatcher = NotificationDispatcher(notifier)
        dispatcher.fire("hello")
        assert dispatcher.pending == 1
        await dispatcher.drain()
        assert notifier.messages == ["hello"]
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_delivery_failure_is_swallowed(self, failing_notifier):
        dispatcher = NotificationDispatcher(failing_notifier)
        dispatcher.fire("hello")
        await dispatcher.drain()
        assert failing_notifier.attempts == 1

    @pytest.mark.asyncio
    async def test_failure_not_retried(self, failing_notifier):
        dispatcher = NotificationDispatcher(failing_notifier)
        dispatcher.fire("a")
        dispatcher.fire("b")
        await dispatcher.drain()
        assert failing_notifier.attempts == 2


class TestBuildNotifier:
    def test_discord_when_url_configured(self):
        settings = Settings(notifier_webhook_url="https://discord.com/api/webhooks/1/abc", notifier_timeout_seconds=3)
        notifier = build_notifier(settings)
        assert isinstance(notifier, DiscordWebhookNotifier)
        assert notifier.timeout == 3

    def test_null_when_unconfigured(self):
        assert isinstance(build_notifier(Settings(notifier_webhook_url="")), NullNotifier)


class TestMessages:
    def test_vip_message_mentions_user_and_tier(self):
        msg = vip_purchase_message("42", "Gold")
        assert "<@42>" in msg
        assert "Gold" in msg

    def test_vote_message_mentions_user(self):
        assert "<@42>" in vote_message("42")

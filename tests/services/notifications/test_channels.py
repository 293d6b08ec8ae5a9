"""
Tests for channel senders and the channel registry.
"""

from __future__ import annotations

import json

import httpx
import pytest

from alertflow.core.config import AlertflowSettings
from alertflow.services.notifications import (
    CallbackChannel,
    Channel,
    ChannelRegistry,
    ChannelSender,
    InAppChannel,
    InMemoryNotificationStore,
    MessageFormatter,
    SendResult,
    WebhookChannel,
    WebhookClient,
    build_default_registry,
    slack_channel,
)

from .conftest import make_notification


class TestInAppChannel:
    """Tests for in-app delivery."""

    @pytest.mark.asyncio
    async def test_delivered_when_stored(self):
        store = InMemoryNotificationStore()
        notification = make_notification()
        await store.add_notification(notification)

        result = await InAppChannel(store).send(notification)

        assert result.success

    @pytest.mark.asyncio
    async def test_missing_notification_is_permanent_failure(self):
        result = await InAppChannel(InMemoryNotificationStore()).send(make_notification())
        assert result.success is False
        assert result.permanent is True

    def test_satisfies_protocol(self):
        assert isinstance(InAppChannel(InMemoryNotificationStore()), ChannelSender)


class TestCallbackChannel:
    """Tests for host-supplied transports."""

    @pytest.mark.asyncio
    async def test_sync_callback_returning_none(self):
        calls = []
        channel = CallbackChannel(Channel.SMS, calls.append)

        result = await channel.send(make_notification())

        assert result.success
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_async_callback_returning_false(self):
        async def callback(notification):
            return False

        result = await CallbackChannel(Channel.PUSH, callback).send(make_notification())

        assert result.success is False
        assert "push" in result.error

    @pytest.mark.asyncio
    async def test_send_result_passed_through(self):
        expected = SendResult(success=False, error="mailbox full", permanent=True)
        channel = CallbackChannel(Channel.EMAIL, lambda n: expected)

        assert await channel.send(make_notification()) is expected


class TestWebhookChannel:
    """Tests for webhook-backed channels."""

    @pytest.mark.asyncio
    async def test_posts_rendered_payload(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        client = WebhookClient(
            webhook_url="https://hooks.slack.test/x",
            transport=httpx.MockTransport(handler),
        )
        channel = WebhookChannel(Channel.SLACK, client, MessageFormatter().format_slack)

        result = await channel.send(make_notification())
        await channel.close()

        assert result.success
        assert "attachments" in bodies[0]

    def test_slack_factory(self):
        channel = slack_channel("https://hooks.slack.test/x")
        assert channel.channel == Channel.SLACK
        assert channel.client.webhook_url == "https://hooks.slack.test/x"


class TestChannelRegistry:
    """Tests for ChannelRegistry."""

    def test_register_and_get(self):
        registry = ChannelRegistry()
        sender = CallbackChannel(Channel.SMS, lambda n: True)

        registry.register(sender)

        assert registry.get(Channel.SMS) is sender
        assert registry.get(Channel.VOICE) is None
        assert registry.channels == [Channel.SMS]

    def test_unregister(self):
        registry = ChannelRegistry()
        registry.register(CallbackChannel(Channel.SMS, lambda n: True))

        assert registry.unregister(Channel.SMS) is not None
        assert registry.get(Channel.SMS) is None

    def test_metrics(self):
        registry = ChannelRegistry()
        registry.register(CallbackChannel(Channel.SMS, lambda n: True))
        registry.register(slack_channel("https://hooks.slack.test/x"))

        metrics = registry.get_metrics()

        assert metrics["sms"] == {"registered": True}
        assert metrics["slack"]["total_sent"] == 0

    def test_default_registry_from_settings(self, tmp_path):
        settings = AlertflowSettings(
            instance_root=tmp_path,
            slack_webhook_url="https://hooks.slack.test/x",
        )

        registry = build_default_registry(settings, InMemoryNotificationStore())

        assert registry.channels == [Channel.IN_APP, Channel.SLACK]

    def test_default_registry_without_urls(self, tmp_path):
        settings = AlertflowSettings(instance_root=tmp_path)
        registry = build_default_registry(settings, InMemoryNotificationStore())
        assert registry.channels == [Channel.IN_APP]

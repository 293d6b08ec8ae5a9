"""
Delivery Channels.

Sender capabilities the dispatcher invokes. Each sender reports a binary
SendResult; the dispatcher never inspects transport-specific errors.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

from ...core.logging import get_logger
from .formatter import MessageFormatter
from .types import Channel
from .webhook_client import SendResult, WebhookClient

if TYPE_CHECKING:
    from ...core.config import AlertflowSettings
    from .models import Notification
    from .store import NotificationRepository

logger = get_logger(__name__)

CallbackResult = Union[SendResult, bool, None]
SendCallback = Callable[["Notification"], Union[Awaitable[CallbackResult], CallbackResult]]


@runtime_checkable
class ChannelSender(Protocol):
    """Capability that delivers a notification on one channel."""

    channel: Channel

    async def send(self, notification: Notification) -> SendResult:
        """Deliver the notification. May raise; the dispatcher counts that as a failure."""
        ...


@dataclass
class InAppChannel:
    """
    In-app inbox delivery.

    The notification is already persisted, so delivery confirms it is
    visible in the store.
    """

    store: NotificationRepository
    channel: Channel = Channel.IN_APP

    async def send(self, notification: Notification) -> SendResult:
        stored = await self.store.get_notification(notification.id)
        if stored is None:
            return SendResult(success=False, error="Notification not in store", permanent=True)
        return SendResult(success=True)


@dataclass
class CallbackChannel:
    """
    Adapter for transports supplied by the host application (email, SMS,
    push, voice).

    The callback may be sync or async and may return a SendResult, a bool,
    or None (treated as success).
    """

    channel: Channel
    callback: SendCallback

    async def send(self, notification: Notification) -> SendResult:
        result = self.callback(notification)
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, SendResult):
            return result
        if result is None or result is True:
            return SendResult(success=True)
        return SendResult(success=False, error=f"{self.channel.value} transport reported failure")


@dataclass
class WebhookChannel:
    """Posts a rendered notification to an incoming webhook."""

    channel: Channel
    client: WebhookClient
    render: Callable[[Notification], dict[str, Any]]

    async def send(self, notification: Notification) -> SendResult:
        return await self.client.send(self.render(notification))

    async def close(self) -> None:
        await self.client.close()


def webhook_channel(
    url: str,
    formatter: MessageFormatter | None = None,
    timeout: float = 30.0,
) -> WebhookChannel:
    formatter = formatter or MessageFormatter()
    return WebhookChannel(
        Channel.WEBHOOK, WebhookClient(webhook_url=url, timeout=timeout), formatter.format_webhook
    )


def slack_channel(
    url: str,
    formatter: MessageFormatter | None = None,
    timeout: float = 30.0,
) -> WebhookChannel:
    formatter = formatter or MessageFormatter()
    return WebhookChannel(
        Channel.SLACK, WebhookClient(webhook_url=url, timeout=timeout), formatter.format_slack
    )


def teams_channel(
    url: str,
    formatter: MessageFormatter | None = None,
    timeout: float = 30.0,
) -> WebhookChannel:
    formatter = formatter or MessageFormatter()
    return WebhookChannel(
        Channel.TEAMS, WebhookClient(webhook_url=url, timeout=timeout), formatter.format_teams
    )


# =============================================================================
# Registry
# =============================================================================


@dataclass
class ChannelRegistry:
    """Maps channels to their senders."""

    _senders: dict[Channel, ChannelSender] = field(default_factory=dict)

    def register(self, sender: ChannelSender) -> None:
        if sender.channel in self._senders:
            logger.info("Replacing sender for channel %s", sender.channel.value)
        self._senders[sender.channel] = sender

    def unregister(self, channel: Channel) -> ChannelSender | None:
        return self._senders.pop(channel, None)

    def get(self, channel: Channel) -> ChannelSender | None:
        return self._senders.get(channel)

    @property
    def channels(self) -> list[Channel]:
        return list(self._senders)

    async def close(self) -> None:
        """Close senders that hold resources (HTTP clients)."""
        for sender in self._senders.values():
            close = getattr(sender, "close", None)
            if close is not None:
                await close()

    def get_metrics(self) -> dict[str, Any]:
        metrics: dict[str, Any] = {}
        for channel, sender in self._senders.items():
            client = getattr(sender, "client", None)
            if isinstance(client, WebhookClient):
                metrics[channel.value] = client.get_metrics()
            else:
                metrics[channel.value] = {"registered": True}
        return metrics


def build_default_registry(
    settings: AlertflowSettings,
    store: NotificationRepository,
) -> ChannelRegistry:
    """
    Build the registry from settings.

    In-app delivery is always available. Webhook, Slack and Teams senders
    are added when their URLs are configured. Other channels need a
    CallbackChannel registered by the host application.
    """
    registry = ChannelRegistry()
    registry.register(InAppChannel(store))

    formatter = MessageFormatter(base_url=settings.app_base_url)
    timeout = settings.webhook_timeout_seconds
    if settings.webhook_url:
        registry.register(webhook_channel(settings.webhook_url, formatter, timeout))
    if settings.slack_webhook_url:
        registry.register(slack_channel(settings.slack_webhook_url, formatter, timeout))
    if settings.teams_webhook_url:
        registry.register(teams_channel(settings.teams_webhook_url, formatter, timeout))

    return registry

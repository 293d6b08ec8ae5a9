"""
Notification Message Formatter.

Formats notifications as JSON payloads for generic webhooks, Slack incoming
webhooks (Block Kit) and Microsoft Teams incoming webhooks (MessageCard).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ...core.formatters import ensure_utc, get_utc_now

if TYPE_CHECKING:
    from .models import Notification

# Hex colors by priority
COLORS = {
    "urgent": "#8B0000",  # Dark red
    "critical": "#FF0000",  # Red
    "high": "#FF6600",  # Orange
    "medium": "#FFD700",  # Gold
    "low": "#3498DB",  # Blue
}

EMOJI = {
    "urgent": "\U0001f6a8",  # Rotating light
    "critical": "\U0001f6a8",
    "high": "⚠️",  # Warning sign
    "medium": "\U0001f514",  # Bell
    "low": "ℹ️",  # Information
}

DEAL_VALUE_FIELD = "dealValue"


def format_currency(value: float) -> str:
    """
    Format a monetary amount in human-readable form.

    Returns:
        Formatted string (e.g., "$1.5M", "$350.0K", "$45")
    """
    if value >= 1_000_000_000:
        return f"${value / 1_000_000_000:.1f}B"
    elif value >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    elif value >= 1_000:
        return f"${value / 1_000:.1f}K"
    else:
        return f"${value:.0f}"


def format_time_ago(created_at: datetime, now: datetime | None = None) -> str:
    """
    Format a timestamp as relative time.

    Returns:
        Human-readable relative time (e.g., "2 min ago", "1 hour ago")
    """
    now = ensure_utc(now or get_utc_now())
    seconds = int((now - ensure_utc(created_at)).total_seconds())

    if seconds < 60:
        return "just now"
    elif seconds < 3600:
        return f"{seconds // 60} min ago"
    elif seconds < 86400:
        hours = seconds // 3600
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    else:
        days = seconds // 86400
        return f"{days} day{'s' if days != 1 else ''} ago"


def _label(value: str) -> str:
    return value.replace("_", " ").title()


@dataclass
class MessageFormatter:
    """Formats notifications as webhook payloads."""

    base_url: str = ""  # prefix for relative action URLs

    def _link(self, url: str | None) -> str | None:
        if url is None:
            return None
        if url.startswith("/") and self.base_url:
            return self.base_url.rstrip("/") + url
        return url

    def _facts(self, notification: Notification) -> list[tuple[str, str]]:
        facts = [
            ("Priority", _label(notification.priority.value)),
            ("Category", _label(notification.category.value)),
            ("Urgency", str(notification.metadata.urgency_score)),
        ]
        deal_value = notification.data.get(DEAL_VALUE_FIELD)
        if isinstance(deal_value, (int, float)) and not isinstance(deal_value, bool):
            facts.append(("Deal Value", format_currency(deal_value)))
        return facts

    def format_webhook(self, notification: Notification) -> dict[str, Any]:
        """Generic JSON webhook body carrying the full notification."""
        return {
            "event": "notification.created",
            "notification": notification.to_dict(),
        }

    def format_slack(self, notification: Notification) -> dict[str, Any]:
        """
        Format as a Slack incoming-webhook payload.

        Returns:
            Payload with a plain-text fallback and Block Kit blocks
        """
        priority = notification.priority.value
        header = f"{EMOJI[priority]} {notification.title}"

        blocks: list[dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": header[:150]}},
            {"type": "section", "text": {"type": "mrkdwn", "text": notification.message}},
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*{name}:*\n{value}"}
                    for name, value in self._facts(notification)
                ],
            },
        ]

        buttons = [
            {
                "type": "button",
                "text": {"type": "plain_text", "text": action.label},
                "url": self._link(action.url),
                "action_id": action.id,
                # Slack buttons only accept primary and danger styles
                **({"style": action.style} if action.style in ("primary", "danger") else {}),
            }
            for action in notification.actions
            if action.url and action.is_enabled
        ]
        if buttons:
            blocks.append({"type": "actions", "elements": buttons})

        blocks.append(
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"{notification.source} • {notification.id}",
                    }
                ],
            }
        )

        return {
            "text": f"{header}: {notification.message}",
            "attachments": [{"color": COLORS[priority], "blocks": blocks}],
        }

    def format_teams(self, notification: Notification) -> dict[str, Any]:
        """Format as a Microsoft Teams MessageCard."""
        priority = notification.priority.value

        card: dict[str, Any] = {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "summary": notification.title,
            "themeColor": COLORS[priority].lstrip("#"),
            "title": f"{EMOJI[priority]} {notification.title}",
            "text": notification.message,
            "sections": [
                {
                    "facts": [
                        {"name": name, "value": value} for name, value in self._facts(notification)
                    ]
                }
            ],
        }

        actions = [
            {
                "@type": "OpenUri",
                "name": action.label,
                "targets": [{"os": "default", "uri": self._link(action.url)}],
            }
            for action in notification.actions
            if action.url and action.is_enabled
        ]
        if actions:
            card["potentialAction"] = actions

        return card

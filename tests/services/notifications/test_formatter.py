"""
Tests for webhook, Slack and Teams message formatting.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from alertflow.services.notifications import MessageFormatter, NotificationAction, Priority
from alertflow.services.notifications.formatter import format_currency, format_time_ago

from .conftest import BASE_TIME, make_notification


def _notification(**kwargs):
    notification = make_notification(priority=Priority.CRITICAL, **kwargs)
    notification.actions = [
        NotificationAction(id="view-deal", label="View Deal", url="/deals/deal-1"),
        NotificationAction(id="snooze", label="Snooze", style="secondary", url="/snooze"),
        NotificationAction(id="complete", label="Complete", action="complete"),
    ]
    return notification


class TestHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (1_500_000_000, "$1.5B"),
            (2_500_000, "$2.5M"),
            (350_000, "$350.0K"),
            (45, "$45"),
        ],
    )
    def test_format_currency(self, value, expected):
        assert format_currency(value) == expected

    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(seconds=30), "just now"),
            (timedelta(minutes=5), "5 min ago"),
            (timedelta(hours=1), "1 hour ago"),
            (timedelta(hours=3), "3 hours ago"),
            (timedelta(days=2), "2 days ago"),
        ],
    )
    def test_format_time_ago(self, delta, expected):
        assert format_time_ago(BASE_TIME - delta, now=BASE_TIME) == expected


class TestWebhookFormat:
    def test_carries_full_notification(self):
        payload = MessageFormatter().format_webhook(_notification())

        assert payload["event"] == "notification.created"
        assert payload["notification"]["id"] == "notif-1"
        assert payload["notification"]["priority"] == "critical"


class TestSlackFormat:
    """Tests for Slack Block Kit payloads."""

    def test_structure(self):
        payload = MessageFormatter().format_slack(_notification())

        attachment = payload["attachments"][0]
        block_types = [b["type"] for b in attachment["blocks"]]

        assert payload["text"].endswith("Big deal slipping")
        assert attachment["color"] == "#FF0000"
        assert block_types == ["header", "section", "section", "actions", "context"]

    def test_deal_value_fact(self):
        payload = MessageFormatter().format_slack(_notification())
        fields = payload["attachments"][0]["blocks"][2]["fields"]
        assert any("$250.0K" in f["text"] for f in fields)

    def test_buttons_only_for_linked_actions(self):
        payload = MessageFormatter(base_url="https://crm.example.com/").format_slack(
            _notification()
        )

        buttons = payload["attachments"][0]["blocks"][3]["elements"]

        assert [b["action_id"] for b in buttons] == ["view-deal", "snooze"]
        assert buttons[0]["url"] == "https://crm.example.com/deals/deal-1"
        assert buttons[0]["style"] == "primary"
        assert "style" not in buttons[1]

    def test_no_actions_block_without_links(self):
        notification = make_notification()
        payload = MessageFormatter().format_slack(notification)
        block_types = [b["type"] for b in payload["attachments"][0]["blocks"]]
        assert "actions" not in block_types


class TestTeamsFormat:
    """Tests for Teams MessageCard payloads."""

    def test_structure(self):
        card = MessageFormatter().format_teams(_notification())

        assert card["@type"] == "MessageCard"
        assert card["themeColor"] == "FF0000"
        assert card["summary"] == "Deal at risk"
        facts = {f["name"]: f["value"] for f in card["sections"][0]["facts"]}
        assert facts["Priority"] == "Critical"
        assert facts["Deal Value"] == "$250.0K"

    def test_open_uri_actions(self):
        card = MessageFormatter(base_url="https://crm.example.com").format_teams(_notification())

        actions = card["potentialAction"]

        assert [a["name"] for a in actions] == ["View Deal", "Snooze"]
        assert actions[0]["targets"][0]["uri"] == "https://crm.example.com/deals/deal-1"

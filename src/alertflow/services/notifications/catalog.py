"""
Notification Type Catalog.

One entry per NotificationType carrying everything the engine derives from a
type: base urgency, category, whether it is inherently high impact, and the
suggested actions to attach. Adding a type without a catalog entry fails at
import time.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .models import NotificationAction
from .types import Category, NotificationType

ActionBuilder = Callable[[dict[str, Any]], list[NotificationAction]]

DEFAULT_URGENCY = 50


def _view_details(data: dict[str, Any]) -> list[NotificationAction]:
    return [NotificationAction(id="view-details", label="View Details", url="/notifications")]


def _deal_actions(data: dict[str, Any]) -> list[NotificationAction]:
    deal_id = data.get("dealId")
    return [
        NotificationAction(id="view-deal", label="View Deal", url=f"/deals/{deal_id}"),
        NotificationAction(
            id="take-action",
            label="Take Action",
            style="secondary",
            url=f"/deals/{deal_id}/actions",
        ),
    ]


def _account_actions(data: dict[str, Any]) -> list[NotificationAction]:
    account_id = data.get("accountId")
    return [
        NotificationAction(id="view-account", label="View Account", url=f"/accounts/{account_id}"),
        NotificationAction(
            id="retention-plan",
            label="Create Retention Plan",
            style="secondary",
            url=f"/accounts/{account_id}/retention",
        ),
    ]


def _nba_actions(data: dict[str, Any]) -> list[NotificationAction]:
    nba_id = data.get("nbaId")
    return [
        NotificationAction(id="view-nba", label="View NBA", url=f"/nbas/{nba_id}"),
        NotificationAction(
            id="complete-nba",
            label="Complete",
            style="secondary",
            action="complete",
            data={"nbaId": nba_id},
        ),
    ]


@dataclass(frozen=True)
class TypeProfile:
    """Static facts about one notification type."""

    base_urgency: int
    category: Category
    high_impact: bool = False
    actions: ActionBuilder = _view_details


TYPE_PROFILES: dict[NotificationType, TypeProfile] = {
    NotificationType.DEAL_CLOSURE_RISK: TypeProfile(
        85, Category.SALES, high_impact=True, actions=_deal_actions
    ),
    NotificationType.DEAL_CLOSURE_OPPORTUNITY: TypeProfile(70, Category.SALES),
    NotificationType.CHURN_RISK_ALERT: TypeProfile(
        90, Category.CUSTOMER_SUCCESS, high_impact=True, actions=_account_actions
    ),
    NotificationType.NBA_PRIORITY: TypeProfile(60, Category.SALES, actions=_nba_actions),
    NotificationType.MEETING_REMINDER: TypeProfile(50, Category.SALES),
    NotificationType.MEETING_INSIGHT: TypeProfile(55, Category.SALES),
    NotificationType.EMAIL_RESPONSE_NEEDED: TypeProfile(65, Category.SALES),
    NotificationType.FOLLOW_UP_REQUIRED: TypeProfile(70, Category.SALES),
    NotificationType.COMPETITOR_MENTION: TypeProfile(60, Category.SALES),
    NotificationType.BUDGET_APPROVAL: TypeProfile(75, Category.FINANCE, high_impact=True),
    NotificationType.CONTRACT_RENEWAL: TypeProfile(80, Category.FINANCE, high_impact=True),
    NotificationType.PIPELINE_HEALTH: TypeProfile(45, Category.SALES),
    NotificationType.PERFORMANCE_INSIGHT: TypeProfile(40, Category.SALES),
    NotificationType.SYSTEM_ALERT: TypeProfile(85, Category.SYSTEM),
    NotificationType.INTEGRATION_UPDATE: TypeProfile(30, Category.SYSTEM),
}

# Unknown type strings still produce a notification
FALLBACK_PROFILE = TypeProfile(DEFAULT_URGENCY, Category.SYSTEM)

_missing = set(NotificationType) - set(TYPE_PROFILES)
if _missing:
    raise RuntimeError(
        f"Notification types without a catalog entry: {sorted(t.value for t in _missing)}"
    )


def get_type_profile(notification_type: str | NotificationType) -> TypeProfile:
    """Look up the profile for a type, falling back for unknown type strings."""
    if isinstance(notification_type, NotificationType):
        return TYPE_PROFILES[notification_type]
    member = NotificationType.parse(notification_type)
    return TYPE_PROFILES[member] if member else FALLBACK_PROFILE


def category_for(notification_type: str) -> Category:
    return get_type_profile(notification_type).category


def build_actions(notification_type: str, data: dict[str, Any]) -> list[NotificationAction]:
    return get_type_profile(notification_type).actions(data)

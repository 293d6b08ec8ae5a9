"""
Notification Enumerations.

Closed vocabularies shared across the engine: types, priorities, categories,
sources, channels and delivery states.
"""

from __future__ import annotations

from enum import Enum


class NotificationType(Enum):
    """What kind of business signal a notification carries."""

    DEAL_CLOSURE_RISK = "deal_closure_risk"
    DEAL_CLOSURE_OPPORTUNITY = "deal_closure_opportunity"
    CHURN_RISK_ALERT = "churn_risk_alert"
    NBA_PRIORITY = "nba_priority"
    MEETING_REMINDER = "meeting_reminder"
    MEETING_INSIGHT = "meeting_insight"
    EMAIL_RESPONSE_NEEDED = "email_response_needed"
    FOLLOW_UP_REQUIRED = "follow_up_required"
    COMPETITOR_MENTION = "competitor_mention"
    BUDGET_APPROVAL = "budget_approval"
    CONTRACT_RENEWAL = "contract_renewal"
    PIPELINE_HEALTH = "pipeline_health"
    PERFORMANCE_INSIGHT = "performance_insight"
    SYSTEM_ALERT = "system_alert"
    INTEGRATION_UPDATE = "integration_update"

    @classmethod
    def parse(cls, value: str) -> NotificationType | None:
        """Return the matching member, or None for an unknown type string."""
        try:
            return cls(value)
        except ValueError:
            return None


class Priority(Enum):
    """Notification priority, lowest to highest."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """Ordinal used for comparisons (low=1 .. urgent=5)."""
        return PRIORITY_RANK[self]

    @property
    def is_top(self) -> bool:
        """Critical and urgent notifications bypass quiet hours."""
        return self in (Priority.CRITICAL, Priority.URGENT)


PRIORITY_RANK: dict[Priority, int] = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
    Priority.URGENT: 5,
}


class Category(Enum):
    """Business area a notification belongs to."""

    SALES = "sales"
    MARKETING = "marketing"
    CUSTOMER_SUCCESS = "customer_success"
    FINANCE = "finance"
    OPERATIONS = "operations"
    SYSTEM = "system"
    AI_INSIGHT = "ai_insight"


class Source(Enum):
    """Subsystem that raised the triggering event."""

    AI_ENGINE = "ai_engine"
    PREDICTIVE_ANALYTICS = "predictive_analytics"
    EMAIL_MONITOR = "email_monitor"
    CALENDAR_SYNC = "calendar_sync"
    CRM_UPDATE = "crm_update"
    EXTERNAL_API = "external_api"
    USER_ACTION = "user_action"
    SYSTEM_EVENT = "system_event"


class Channel(Enum):
    """Delivery transport."""

    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    SLACK = "slack"
    TEAMS = "teams"
    VOICE = "voice"
    WEBHOOK = "webhook"


class DeliveryState(Enum):
    """Lifecycle state of one (notification, channel) delivery attempt."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


class Level(Enum):
    """Four-step scale used for time sensitivity and business impact."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

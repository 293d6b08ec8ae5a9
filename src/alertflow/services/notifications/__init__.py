"""
Smart Notification Module.

Turns CRM domain events into prioritized, filtered, rate-limited
notifications delivered across channels.

Components:
- RuleStore: Declarative trigger rules with cooldowns and daily caps
- RuleLoader: YAML rule files
- NotificationScorer: Urgency, relevance and actionability scoring
- PreferenceFilter: Per-user category/type/score/quiet-hours gate
- QuietHoursChecker: Timezone-aware quiet hours
- RateLimiter: Sliding-window per-user caps
- DeliveryDispatcher: Per-channel delivery with scheduled retries
- WebhookClient: HTTP client with retry logic
- MessageFormatter: Notification -> webhook/Slack/Teams payloads
- InMemoryNotificationStore / SQLiteNotificationStore: Persistence
- NotificationEngine: Main orchestration

Usage:
    from alertflow.services.notifications import get_notification_engine

    engine = get_notification_engine()
    await engine.initialize()
    notification = await engine.trigger(event)
"""

from .catalog import TYPE_PROFILES, TypeProfile, build_actions, category_for, get_type_profile
from .channels import (
    CallbackChannel,
    ChannelRegistry,
    ChannelSender,
    InAppChannel,
    WebhookChannel,
    build_default_registry,
    slack_channel,
    teams_channel,
    webhook_channel,
)
from .dispatcher import DeliveryDispatcher, DeliveryHealth, DeliveryJob, DeliveryQueue
from .engine import (
    EngineHealth,
    NotificationEngine,
    UserDeliveryStatus,
    get_notification_engine,
    reset_notification_engine,
)
from .errors import (
    NotificationError,
    NotificationNotFoundError,
    PreferencesValidationError,
    RuleNotFoundError,
    RuleValidationError,
    TriggerValidationError,
)
from .formatter import MessageFormatter
from .models import (
    DeliveryAttempt,
    Notification,
    NotificationAction,
    NotificationDraft,
    NotificationMetadata,
    NotificationQuery,
    RelatedEntity,
    TriggerEvent,
)
from .preferences import (
    AIFilteringConfig,
    FilterDecision,
    FrequencyConfig,
    NotificationPreferences,
    PreferenceFilter,
    QuietHoursConfig,
    merge_preferences,
)
from .quiet_hours import QuietHoursChecker
from .rate_limiter import RateLimiter
from .rule_loader import RuleLoader
from .rules import Condition, Rule, RuleAction, RuleStore, default_rules, select_rule
from .scoring import NotificationScorer, NotificationScores
from .sqlite_store import SQLiteNotificationStore
from .stats import NotificationStats, compute_stats
from .store import InMemoryNotificationStore, NotificationRepository
from .types import Category, Channel, DeliveryState, Level, NotificationType, Priority, Source
from .webhook_client import SendResult, WebhookClient

__all__ = [
    # Catalog
    "TYPE_PROFILES",
    "TypeProfile",
    "build_actions",
    "category_for",
    "get_type_profile",
    # Channels
    "CallbackChannel",
    "ChannelRegistry",
    "ChannelSender",
    "InAppChannel",
    "WebhookChannel",
    "build_default_registry",
    "slack_channel",
    "teams_channel",
    "webhook_channel",
    "MessageFormatter",
    "SendResult",
    "WebhookClient",
    # Delivery
    "DeliveryDispatcher",
    "DeliveryHealth",
    "DeliveryJob",
    "DeliveryQueue",
    # Engine
    "EngineHealth",
    "NotificationEngine",
    "UserDeliveryStatus",
    "get_notification_engine",
    "reset_notification_engine",
    # Errors
    "NotificationError",
    "NotificationNotFoundError",
    "PreferencesValidationError",
    "RuleNotFoundError",
    "RuleValidationError",
    "TriggerValidationError",
    # Models
    "DeliveryAttempt",
    "Notification",
    "NotificationAction",
    "NotificationDraft",
    "NotificationMetadata",
    "NotificationQuery",
    "RelatedEntity",
    "TriggerEvent",
    # Preferences
    "AIFilteringConfig",
    "FilterDecision",
    "FrequencyConfig",
    "NotificationPreferences",
    "PreferenceFilter",
    "QuietHoursChecker",
    "QuietHoursConfig",
    "merge_preferences",
    # Rate limiting
    "RateLimiter",
    # Rules
    "Condition",
    "Rule",
    "RuleAction",
    "RuleLoader",
    "RuleStore",
    "default_rules",
    "select_rule",
    # Scoring
    "NotificationScorer",
    "NotificationScores",
    # Stats
    "NotificationStats",
    "compute_stats",
    # Stores
    "InMemoryNotificationStore",
    "NotificationRepository",
    "SQLiteNotificationStore",
    # Types
    "Category",
    "Channel",
    "DeliveryState",
    "Level",
    "NotificationType",
    "Priority",
    "Source",
]

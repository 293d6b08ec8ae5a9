"""
Notification Engine.

Orchestrates the notification pipeline:

1. Validate the trigger event
2. Load the user's preferences (created with defaults on first use)
3. Match rules and select the highest-priority one
4. Build the notification from the rule and event
5. Score it (scoring sets the final priority)
6. Filter against preferences
7. Rate limit
8. Persist (always, even when suppressed)
9. Queue delivery on the surviving channels

Steps 3 to 7 run without suspension points.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ...core.config import AlertflowSettings, get_settings
from ...core.formatters import get_utc_now
from ...core.logging import get_logger
from .catalog import build_actions, category_for
from .channels import ChannelRegistry, build_default_registry
from .dispatcher import DeliveryDispatcher, DeliveryHealth
from .errors import NotificationNotFoundError, RuleNotFoundError, RuleValidationError
from .models import (
    Notification,
    NotificationDraft,
    NotificationMetadata,
    NotificationQuery,
    RelatedEntity,
    TriggerEvent,
    new_notification_id,
)
from .preferences import NotificationPreferences, PreferenceFilter, merge_preferences
from .quiet_hours import QuietHoursChecker
from .rate_limiter import DAY, RateLimiter
from .rule_loader import RuleLoader
from .rules import Rule, RuleStore, default_rules, select_rule
from .scoring import NotificationScorer
from .stats import NotificationStats, compute_stats
from .store import InMemoryNotificationStore

if TYPE_CHECKING:
    from .store import NotificationRepository
    from .types import Channel

logger = get_logger(__name__)

Clock = Callable[[], datetime]

# data key -> related entity type
ENTITY_KEYS = {
    "dealId": "deal",
    "accountId": "account",
    "contactId": "contact",
    "opportunityId": "opportunity",
    "meetingId": "meeting",
}

# Suppression reasons set outside the preference filter
NO_ENABLED_CHANNELS = "no_enabled_channels"
RATE_LIMITED = "rate_limited"

# Minimum spacing between sweeps of expired rule firings and rate windows
CLEANUP_INTERVAL = timedelta(minutes=5)


def related_entities(data: Mapping[str, Any]) -> list[RelatedEntity]:
    """Derive CRM entity references from well-known payload keys."""
    entities = []
    for key, entity_type in ENTITY_KEYS.items():
        value = data.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        name = data.get(f"{entity_type}Name", "")
        entities.append(RelatedEntity(entity_type, str(value), name if isinstance(name, str) else ""))
    return entities


class _TemplateFields(dict):
    """Leaves unknown placeholders in place instead of raising."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_template(template: str | None, fields: Mapping[str, Any]) -> str | None:
    """Fill ``{placeholder}`` fields; malformed templates are returned unrendered."""
    if not template:
        return None
    try:
        return template.format_map(_TemplateFields(fields))
    except (ValueError, AttributeError, IndexError, KeyError) as e:
        logger.warning("Could not render template %r: %s", template, e)
        return template


@dataclass
class EngineHealth:
    """Health status of the notification engine."""

    is_initialized: bool
    is_healthy: bool
    rule_count: int
    active_rule_count: int
    delivery: DeliveryHealth
    rate_limiter: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_initialized": self.is_initialized,
            "is_healthy": self.is_healthy,
            "rule_count": self.rule_count,
            "active_rule_count": self.active_rule_count,
            "delivery": self.delivery.to_dict(),
            "rate_limiter": dict(self.rate_limiter),
        }


@dataclass
class UserDeliveryStatus:
    """Where a user stands against quiet hours and frequency caps right now."""

    user_id: str
    in_quiet_hours: bool
    quiet_until: datetime | None
    sent_last_hour: int
    sent_last_day: int
    max_per_hour: int
    max_per_day: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "in_quiet_hours": self.in_quiet_hours,
            "quiet_until": self.quiet_until.isoformat() if self.quiet_until else None,
            "sent_last_hour": self.sent_last_hour,
            "sent_last_day": self.sent_last_day,
            "max_per_hour": self.max_per_hour,
            "max_per_day": self.max_per_day,
        }


class NotificationEngine:
    """
    Turns domain events into scored, filtered, rate-limited and delivered
    notifications.

    Args:
        store: Notification repository (in-memory if omitted)
        registry: Channel senders (built from settings if omitted)
        settings: Configuration (global settings if omitted)
        clock: Source of the current time
        scorer: Notification scorer (constant relevance from settings if omitted)
        include_builtin_rules: Start with the built-in rule set
    """

    def __init__(
        self,
        store: NotificationRepository | None = None,
        registry: ChannelRegistry | None = None,
        settings: AlertflowSettings | None = None,
        clock: Clock = get_utc_now,
        scorer: NotificationScorer | None = None,
        include_builtin_rules: bool = True,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self.store = store if store is not None else InMemoryNotificationStore()
        self.registry = registry or build_default_registry(self.settings, self.store)

        self.rules = RuleStore()
        self.scorer = scorer or NotificationScorer(
            default_relevance=self.settings.default_relevance_score
        )
        self.filter = PreferenceFilter()
        self.rate_limiter = RateLimiter()
        self.dispatcher = DeliveryDispatcher(
            self.store,
            self.registry,
            clock=clock,
            retry_delay=timedelta(seconds=self.settings.delivery_retry_delay_seconds),
            max_retries=self.settings.delivery_max_retries,
            poll_interval=self.settings.delivery_poll_interval,
            on_sweep=self._sweep,
        )

        if include_builtin_rules:
            for rule in default_rules():
                self.rules.add(rule)

        self._initialized = False
        self._last_cleanup: datetime | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Prepare the store and restore runtime state.

        Loads stored rules and the configured rules directory, restores
        rate-limit windows from the last day of accepted notifications,
        and re-queues unfinished deliveries.
        """
        if self._initialized:
            return

        await self.store.initialize()

        for rule in await self.store.list_rules():
            self.rules.add(rule)

        rules_dir = self.settings.rules_dir
        if rules_dir is not None:
            for rule in RuleLoader.load_directory(Path(rules_dir)):
                self.rules.add(rule)

        now = self.clock()
        accepted: dict[str, list[datetime]] = defaultdict(list)
        for notification in await self.store.all_notifications(since=now - DAY):
            if notification.suppressed_reason is None:
                accepted[notification.user_id].append(notification.created_at)
        for user_id, timestamps in accepted.items():
            self.rate_limiter.seed(user_id, timestamps, now)

        await self.dispatcher.recover()

        self._initialized = True
        logger.info("Notification engine initialized with %d rule(s)", len(self.rules))

    async def start(self) -> None:
        """Initialize if needed and start background delivery."""
        await self.initialize()
        await self.dispatcher.start()

    async def stop(self) -> None:
        """Stop background delivery. Queued jobs stay in the store for recovery."""
        await self.dispatcher.stop()

    async def close(self) -> None:
        """Stop delivery and release channel and store resources."""
        await self.stop()
        await self.registry.close()
        await self.store.close()
        self._initialized = False

    async def flush_deliveries(self) -> int:
        """Run every delivery job due now. Returns number of jobs processed."""
        return await self.dispatcher.flush()

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """
        Forget users with no rule firings or accepted notifications in the
        trailing day.

        Returns:
            Number of per-user entries removed
        """
        now = now or self.clock()
        self._last_cleanup = now
        removed = self.rules.cleanup_expired(now) + self.rate_limiter.cleanup_expired(now)
        if removed:
            logger.debug("Dropped %d expired rule firing and rate window entries", removed)
        return removed

    def _sweep(self, now: datetime) -> None:
        if self._last_cleanup is None or now - self._last_cleanup >= CLEANUP_INTERVAL:
            self.cleanup_expired(now)

    # -------------------------------------------------------------------------
    # Triggering
    # -------------------------------------------------------------------------

    async def trigger(self, event: TriggerEvent | Mapping[str, Any]) -> Notification | None:
        """
        Offer a domain event to the rule engine.

        Args:
            event: TriggerEvent, or a request body to build one from

        Returns:
            The persisted notification (possibly suppressed), or None if no
            rule matched

        Raises:
            TriggerValidationError: If required fields are missing, before any state change
        """
        if not isinstance(event, TriggerEvent):
            event = TriggerEvent.from_dict(event)

        prefs = await self.get_preferences(event.user_id)

        now = self.clock()
        rule = select_rule(self.rules.match(event, now))
        if rule is None:
            logger.debug("No rule matched %s event for user %s", event.type, event.user_id)
            return None

        self.rules.record_firing(rule, event.user_id, now)
        notification = self._build_from_rule(rule, event, now)
        logger.debug("Rule '%s' fired for user %s", rule.name, event.user_id)

        return await self._admit(notification, rule.channels, prefs, now)

    async def create_notification(
        self, draft: NotificationDraft | Mapping[str, Any]
    ) -> Notification:
        """
        Create a notification directly, bypassing rule matching.

        Scoring, filtering, rate limiting and delivery still apply.

        Raises:
            TriggerValidationError: If the draft is invalid
        """
        if not isinstance(draft, NotificationDraft):
            draft = NotificationDraft.from_dict(draft)

        prefs = await self.get_preferences(draft.user_id)
        now = self.clock()

        notification = Notification(
            id=new_notification_id(),
            user_id=draft.user_id,
            type=draft.type,
            priority=draft.priority,
            category=category_for(draft.type),
            source=draft.source,
            title=draft.title,
            message=draft.message,
            created_at=now,
            description=draft.description,
            data=dict(draft.data),
            expires_at=draft.expires_at,
            actions=(
                list(draft.actions)
                if draft.actions is not None
                else build_actions(draft.type, draft.data)
            ),
            metadata=NotificationMetadata(
                context_tags=list(draft.context_tags),
                related_entities=related_entities(draft.data),
            ),
        )
        return await self._admit(notification, draft.channels, prefs, now)

    def _build_from_rule(self, rule: Rule, event: TriggerEvent, now: datetime) -> Notification:
        template = rule.template
        fields = {**event.data, **event.context()}

        expires_at = None
        expires_in = template.get("expires_in_minutes")
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expires_at = now + timedelta(minutes=expires_in)

        return Notification(
            id=new_notification_id(),
            user_id=event.user_id,
            type=event.type,
            priority=rule.priority,
            category=category_for(event.type),
            source=event.source,
            title=render_template(template.get("title"), fields) or event.title,
            message=render_template(template.get("message"), fields) or event.message,
            created_at=now,
            description=render_template(template.get("description"), fields),
            data=dict(event.data),
            expires_at=expires_at,
            actions=build_actions(event.type, event.data),
            metadata=NotificationMetadata(
                context_tags=list(template.get("context_tags") or []),
                related_entities=related_entities(event.data),
            ),
            rule_id=rule.id,
        )

    async def _admit(
        self,
        notification: Notification,
        channels: list[Channel],
        prefs: NotificationPreferences,
        now: datetime,
    ) -> Notification:
        """Score, filter, rate limit, persist and queue a built notification."""
        self.scorer.apply(notification, now)

        reason: str | None
        decision = self.filter.evaluate(notification, prefs, now)
        if not decision:
            reason = decision.reason
        else:
            enabled = prefs.enabled_channels()
            delivery_channels = [c for c in channels if c in enabled]
            if not delivery_channels:
                reason = NO_ENABLED_CHANNELS
            elif not self.rate_limiter.allow(notification.user_id, prefs.frequency, now):
                reason = RATE_LIMITED
            else:
                reason = None
                notification.channels = delivery_channels
                self.dispatcher.prepare(notification, now)

        notification.suppressed_reason = reason
        await self.store.add_notification(notification)

        if reason is None:
            self.dispatcher.schedule(notification)
            logger.info(
                "Notification %s (%s, %s) queued on %s",
                notification.id,
                notification.type,
                notification.priority.value,
                ", ".join(c.value for c in notification.channels),
            )
        else:
            logger.info("Notification %s suppressed: %s", notification.id, reason)

        return notification

    # -------------------------------------------------------------------------
    # Inbox
    # -------------------------------------------------------------------------

    async def get_notifications(
        self, user_id: str, query: NotificationQuery | None = None
    ) -> list[Notification]:
        """List a user's notifications, newest first."""
        return await self.store.list_notifications(user_id, query)

    async def get_notification(self, notification_id: str, user_id: str) -> Notification:
        """
        Get one of a user's notifications.

        Raises:
            NotificationNotFoundError: If it doesn't exist or belongs to another user
        """
        notification = await self.store.get_notification(notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotificationNotFoundError(notification_id)
        return notification

    async def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        """
        Mark a notification read. Already-read notifications keep their read time.

        Raises:
            NotificationNotFoundError: If it doesn't exist or belongs to another user
        """
        async with self.dispatcher.lock_for(notification_id):
            notification = await self.get_notification(notification_id, user_id)
            if not notification.is_read:
                notification.mark_read(self.clock())
                await self.store.update_notification(notification)
            return notification

    async def mark_all_as_read(self, user_id: str) -> int:
        """
        Mark every unread notification of a user read.

        Returns:
            Number of notifications changed
        """
        unread = await self.store.list_notifications(user_id, NotificationQuery(is_read=False))
        changed = 0
        for stale in unread:
            async with self.dispatcher.lock_for(stale.id):
                notification = await self.store.get_notification(stale.id)
                if notification is None or notification.is_read:
                    continue
                notification.mark_read(self.clock())
                await self.store.update_notification(notification)
                changed += 1
        return changed

    async def dismiss(self, notification_id: str, user_id: str) -> Notification:
        """
        Dismiss a notification (implies read). Idempotent.

        Raises:
            NotificationNotFoundError: If it doesn't exist or belongs to another user
        """
        async with self.dispatcher.lock_for(notification_id):
            notification = await self.get_notification(notification_id, user_id)
            if not notification.is_dismissed:
                notification.dismiss(self.clock())
                await self.store.update_notification(notification)
            return notification

    async def cancel_deliveries(self, notification_id: str, user_id: str) -> int:
        """
        Cancel a notification's queued deliveries.

        Raises:
            NotificationNotFoundError: If it doesn't exist or belongs to another user
        """
        await self.get_notification(notification_id, user_id)
        return await self.dispatcher.cancel(notification_id)

    async def get_stats(self, user_id: str) -> NotificationStats:
        return compute_stats(await self.store.all_notifications(user_id), self.clock())

    # -------------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------------

    async def get_preferences(self, user_id: str) -> NotificationPreferences:
        """Get a user's preferences, creating and saving defaults on first use."""
        prefs = await self.store.get_preferences(user_id)
        if prefs is None:
            prefs = NotificationPreferences.defaults(user_id)
            await self.store.save_preferences(prefs)
            logger.debug("Created default preferences for user %s", user_id)
        return prefs

    async def update_preferences(
        self, user_id: str, patch: Mapping[str, Any]
    ) -> NotificationPreferences:
        """
        Deep-merge a partial update into a user's preferences.

        Raises:
            PreferencesValidationError: If the patch or the merged result is invalid
        """
        current = await self.get_preferences(user_id)
        updated = merge_preferences(current, dict(patch), now=self.clock())
        await self.store.save_preferences(updated)
        logger.info("Updated preferences for user %s", user_id)
        return updated

    async def get_delivery_status(self, user_id: str) -> UserDeliveryStatus:
        """Report quiet-hours state and quota usage for a user."""
        prefs = await self.get_preferences(user_id)
        now = self.clock()
        quiet_until = QuietHoursChecker(prefs.quiet_hours).next_active_time(now)
        hour, day = self.rate_limiter.usage(user_id, now)
        return UserDeliveryStatus(
            user_id=user_id,
            in_quiet_hours=quiet_until is not None,
            quiet_until=quiet_until,
            sent_last_hour=hour,
            sent_last_day=day,
            max_per_hour=prefs.frequency.max_per_hour,
            max_per_day=prefs.frequency.max_per_day,
        )

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    async def create_rule(self, definition: Rule | Mapping[str, Any]) -> Rule:
        """
        Persist a rule, then register it for matching.

        A rule the store rejects is never registered.

        Raises:
            RuleValidationError: If the rule is invalid
        """
        rule = definition if isinstance(definition, Rule) else Rule.from_dict(dict(definition))
        errors = rule.validate()
        if errors:
            raise RuleValidationError(errors, rule_name=rule.name)
        await self.store.save_rule(rule)
        self.rules.add(rule)
        logger.info("Created rule '%s' (%s)", rule.name, rule.id)
        return rule

    def list_rules(self) -> list[Rule]:
        return self.rules.list()

    def get_rule(self, rule_id: str) -> Rule:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def set_rule_active(self, rule_id: str, active: bool) -> Rule:
        """
        Activate or deactivate a rule.

        Raises:
            RuleNotFoundError: If the rule id is unknown
        """
        rule = self.get_rule(rule_id)
        rule.is_active = active
        rule.updated_at = self.clock()
        await self.store.save_rule(rule)
        logger.info("Rule '%s' %s", rule.name, "activated" if active else "deactivated")
        return rule

    async def load_rules(self, path: Path | str) -> list[Rule]:
        """
        Load rules from a YAML file or a directory of YAML files and persist them.

        Raises:
            FileNotFoundError: If a file path doesn't exist
            ValueError: If a file holds invalid YAML
            RuleValidationError: If a rule in a single file is invalid
        """
        path = Path(path)
        if path.is_dir():
            loaded = RuleLoader.load_directory(path)
        else:
            loaded = RuleLoader.load_file(path)

        for rule in loaded:
            await self.create_rule(rule)
        return loaded

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def get_health_status(self) -> EngineHealth:
        delivery = self.dispatcher.get_health()
        rules = self.rules.list()
        return EngineHealth(
            is_initialized=self._initialized,
            is_healthy=self._initialized and delivery.is_healthy,
            rule_count=len(rules),
            active_rule_count=sum(1 for r in rules if r.is_active),
            delivery=delivery,
            rate_limiter=self.rate_limiter.get_metrics(),
        )


# =============================================================================
# Singleton
# =============================================================================

_notification_engine: NotificationEngine | None = None


def get_notification_engine() -> NotificationEngine:
    """
    Get or create the notification engine singleton.

    The singleton persists to the SQLite store at the configured db_path.
    """
    global _notification_engine

    if _notification_engine is None:
        from .sqlite_store import SQLiteNotificationStore

        _notification_engine = NotificationEngine(store=SQLiteNotificationStore())

    return _notification_engine


def reset_notification_engine() -> None:
    """Reset the notification engine singleton (for testing)."""
    global _notification_engine
    _notification_engine = None

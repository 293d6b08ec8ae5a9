"""
Notification Preferences.

Per-user settings that gate delivery, plus the read-only filter that applies
them. Preferences are created with defaults on first use and changed only by
explicit partial updates, which are deep-merged onto the current values.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ...core.formatters import get_utc_now, parse_datetime
from ...core.logging import get_logger
from .errors import PreferencesValidationError
from .quiet_hours import QuietHoursChecker, parse_hhmm
from .types import Category, Channel, NotificationType

if TYPE_CHECKING:
    from .models import Notification

logger = get_logger(__name__)

DEFAULT_CHANNELS: dict[str, bool] = {
    Channel.IN_APP.value: True,
    Channel.EMAIL.value: True,
    Channel.SMS.value: False,
    Channel.PUSH.value: True,
    Channel.SLACK.value: False,
    Channel.TEAMS.value: False,
    Channel.VOICE.value: False,
    Channel.WEBHOOK.value: False,
}

DEFAULT_CATEGORIES: dict[str, bool] = {
    category.value: category not in (Category.FINANCE, Category.OPERATIONS)
    for category in Category
}

DEFAULT_TYPES: dict[str, bool] = {
    notification_type.value: notification_type != NotificationType.INTEGRATION_UPDATE
    for notification_type in NotificationType
}


# =============================================================================
# Preference Sections
# =============================================================================


@dataclass
class QuietHoursConfig:
    """
    Quiet hours window in the user's local time.

    Uses zoneinfo-compatible timezone strings.
    """

    enabled: bool = True
    start: str = "22:00"  # HH:MM format
    end: str = "08:00"  # HH:MM format
    timezone: str = "America/New_York"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> QuietHoursConfig:
        """Create from configuration dict."""
        if not data:
            return cls()
        return cls(
            enabled=data.get("enabled", True),
            start=data.get("start", "22:00"),
            end=data.get("end", "08:00"),
            timezone=data.get("timezone", "America/New_York"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "start": self.start,
            "end": self.end,
            "timezone": self.timezone,
        }

    def validate(self) -> list[str]:
        errors = []
        for name, value in (("start", self.start), ("end", self.end)):
            try:
                parse_hhmm(value)
            except (ValueError, AttributeError):
                errors.append(f"quiet_hours.{name} must be HH:MM, got {value!r}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError, TypeError):
            errors.append(f"quiet_hours.timezone is not a known timezone: {self.timezone!r}")
        return errors


@dataclass
class FrequencyConfig:
    """
    Delivery volume caps.

    ``batch_similar`` is a stored client preference. It is persisted and
    returned with the rest of the preferences but does not change how the
    engine delivers or rate limits.
    """

    max_per_hour: int = 10
    max_per_day: int = 50
    batch_similar: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FrequencyConfig:
        """Create from configuration dict."""
        if not data:
            return cls()
        return cls(
            max_per_hour=data.get("max_per_hour", 10),
            max_per_day=data.get("max_per_day", 50),
            batch_similar=data.get("batch_similar", True),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_per_hour": self.max_per_hour,
            "max_per_day": self.max_per_day,
            "batch_similar": self.batch_similar,
        }

    def validate(self) -> list[str]:
        errors = []
        for name in ("max_per_hour", "max_per_day"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                errors.append(f"frequency.{name} must be a non-negative integer")
        return errors


@dataclass
class AIFilteringConfig:
    """Score thresholds a notification must meet to be delivered."""

    enabled: bool = True
    min_relevance_score: int = 60
    min_urgency_score: int = 40

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AIFilteringConfig:
        """Create from configuration dict."""
        if not data:
            return cls()
        return cls(
            enabled=data.get("enabled", True),
            min_relevance_score=data.get("min_relevance_score", 60),
            min_urgency_score=data.get("min_urgency_score", 40),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "min_relevance_score": self.min_relevance_score,
            "min_urgency_score": self.min_urgency_score,
        }

    def validate(self) -> list[str]:
        errors = []
        for name in ("min_relevance_score", "min_urgency_score"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append(f"ai_filtering.{name} must be a number")
            elif not 0 <= value <= 100:
                errors.append(f"ai_filtering.{name} must be between 0 and 100")
        return errors


# =============================================================================
# Preferences
# =============================================================================


@dataclass
class NotificationPreferences:
    """A user's notification settings."""

    user_id: str
    channels: dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_CHANNELS))
    categories: dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_CATEGORIES))
    types: dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_TYPES))
    quiet_hours: QuietHoursConfig = field(default_factory=QuietHoursConfig)
    frequency: FrequencyConfig = field(default_factory=FrequencyConfig)
    ai_filtering: AIFilteringConfig = field(default_factory=AIFilteringConfig)
    updated_at: datetime = field(default_factory=get_utc_now)

    @classmethod
    def defaults(cls, user_id: str) -> NotificationPreferences:
        return cls(user_id=user_id)

    def is_channel_enabled(self, channel: Channel) -> bool:
        return bool(self.channels.get(channel.value, False))

    def is_category_enabled(self, category: Category) -> bool:
        """Only an explicit False disables a category."""
        return self.categories.get(category.value) is not False

    def is_type_enabled(self, notification_type: str) -> bool:
        """Only an explicit False disables a type."""
        return self.types.get(notification_type) is not False

    def enabled_channels(self) -> list[Channel]:
        return [channel for channel in Channel if self.is_channel_enabled(channel)]

    def validate(self) -> list[str]:
        """
        Validate preferences.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []
        known_channels = {c.value for c in Channel}
        known_categories = {c.value for c in Category}

        for key in self.channels:
            if key not in known_channels:
                errors.append(f"unknown channel '{key}'")
        for key in self.categories:
            if key not in known_categories:
                errors.append(f"unknown category '{key}'")
        for section, values in (
            ("channels", self.channels),
            ("categories", self.categories),
            ("types", self.types),
        ):
            for key, value in values.items():
                if not isinstance(value, bool):
                    errors.append(f"{section}.{key} must be true or false")

        errors.extend(self.quiet_hours.validate())
        errors.extend(self.frequency.validate())
        errors.extend(self.ai_filtering.validate())
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "channels": dict(self.channels),
            "categories": dict(self.categories),
            "types": dict(self.types),
            "quiet_hours": self.quiet_hours.to_dict(),
            "frequency": self.frequency.to_dict(),
            "ai_filtering": self.ai_filtering.to_dict(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotificationPreferences:
        defaults = cls.defaults(data["user_id"])
        return cls(
            user_id=data["user_id"],
            channels={**defaults.channels, **(data.get("channels") or {})},
            categories={**defaults.categories, **(data.get("categories") or {})},
            types={**defaults.types, **(data.get("types") or {})},
            quiet_hours=QuietHoursConfig.from_dict(data.get("quiet_hours")),
            frequency=FrequencyConfig.from_dict(data.get("frequency")),
            ai_filtering=AIFilteringConfig.from_dict(data.get("ai_filtering")),
            updated_at=parse_datetime(data.get("updated_at")) or defaults.updated_at,
        )


UPDATABLE_SECTIONS = frozenset(
    {"channels", "categories", "types", "quiet_hours", "frequency", "ai_filtering"}
)


def _deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_preferences(
    current: NotificationPreferences,
    patch: dict[str, Any],
    now: datetime | None = None,
) -> NotificationPreferences:
    """
    Apply a partial update on top of existing preferences.

    Args:
        current: Preferences to update (not modified)
        patch: Nested mapping of the sections to change
        now: Update timestamp

    Returns:
        New preferences instance

    Raises:
        PreferencesValidationError: If the patch has unknown sections or the
            merged result is invalid
    """
    unknown = sorted(set(patch) - UPDATABLE_SECTIONS)
    if unknown:
        raise PreferencesValidationError([f"unknown section '{key}'" for key in unknown])

    for key, value in patch.items():
        if not isinstance(value, dict):
            raise PreferencesValidationError([f"section '{key}' must be a mapping"])

    merged = _deep_merge(current.to_dict(), patch)
    merged["user_id"] = current.user_id
    merged["updated_at"] = (now or get_utc_now()).isoformat()

    updated = NotificationPreferences.from_dict(merged)
    errors = updated.validate()
    if errors:
        raise PreferencesValidationError(errors)
    return updated


# =============================================================================
# Preference Filter
# =============================================================================


@dataclass(frozen=True)
class FilterDecision:
    """Outcome of filtering: allowed, or the first failing check."""

    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = FilterDecision(True)


class PreferenceFilter:
    """
    Read-only gate applying a user's preferences to a scored notification.

    Checks run in order and stop at the first failure: category, type,
    AI score thresholds, quiet hours.
    """

    def evaluate(
        self,
        notification: Notification,
        prefs: NotificationPreferences,
        now: datetime,
    ) -> FilterDecision:
        if not prefs.is_category_enabled(notification.category):
            return FilterDecision(False, f"category_disabled:{notification.category.value}")

        if not prefs.is_type_enabled(notification.type):
            return FilterDecision(False, f"type_disabled:{notification.type}")

        ai = prefs.ai_filtering
        if ai.enabled:
            metadata = notification.metadata
            if metadata.relevance_score < ai.min_relevance_score:
                return FilterDecision(False, "below_relevance_threshold")
            if metadata.urgency_score < ai.min_urgency_score:
                return FilterDecision(False, "below_urgency_threshold")

        if not notification.priority.is_top:
            if QuietHoursChecker(prefs.quiet_hours).is_quiet_time(now):
                return FilterDecision(False, "quiet_hours")

        return ALLOWED

    def should_deliver(
        self,
        notification: Notification,
        prefs: NotificationPreferences,
        now: datetime,
    ) -> bool:
        return self.evaluate(notification, prefs, now).allowed

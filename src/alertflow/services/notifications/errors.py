"""
Notification Engine Errors.

Domain-specific exceptions for the notification engine.
These errors are independent of the transport layer (CLI, HTTP, etc.).
"""

from __future__ import annotations


class NotificationError(Exception):
    """Base exception for notification engine operations."""

    pass


class TriggerValidationError(NotificationError, ValueError):
    """Raised when a trigger event or draft is missing required fields."""

    def __init__(self, missing: list[str] | None = None, reason: str | None = None):
        self.missing = missing or []
        self.reason = reason
        if self.missing:
            msg = f"Missing required fields: {', '.join(self.missing)}"
        else:
            msg = "Invalid trigger event"
        if reason:
            msg += f" ({reason})" if self.missing else f": {reason}"
        super().__init__(msg)


class NotificationNotFoundError(NotificationError, LookupError):
    """Raised when a notification does not exist or belongs to another user."""

    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")


class RuleValidationError(NotificationError, ValueError):
    """Raised when a rule definition is invalid."""

    def __init__(self, errors: list[str], rule_name: str | None = None):
        self.errors = errors
        self.rule_name = rule_name
        prefix = f"Invalid rule '{rule_name}'" if rule_name else "Invalid rule"
        super().__init__(f"{prefix}: {'; '.join(errors)}")


class PreferencesValidationError(NotificationError, ValueError):
    """Raised when a preferences update is invalid."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Invalid preferences: {'; '.join(errors)}")


class RuleNotFoundError(NotificationError, LookupError):
    """Raised when a rule id is unknown."""

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id}")

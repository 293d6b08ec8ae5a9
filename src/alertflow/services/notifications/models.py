"""
Notification Data Model.

Dataclasses for notifications, their delivery attempts, and the inbound
trigger/draft payloads. Every record round-trips through ``to_dict`` /
``from_dict`` so stores can persist it as JSON.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ...core.formatters import ensure_utc, parse_datetime
from .errors import TriggerValidationError
from .types import Category, Channel, DeliveryState, Level, Priority

TERMINAL_STATES = frozenset({DeliveryState.DELIVERED, DeliveryState.BOUNCED})


def _iso(dt: datetime | None) -> str | None:
    return ensure_utc(dt).isoformat() if dt else None


def new_notification_id() -> str:
    """Generate a notification id like ``notif-3f2a9c1e7b4d``."""
    return f"notif-{uuid.uuid4().hex[:12]}"


# =============================================================================
# Actions and Metadata
# =============================================================================


@dataclass
class NotificationAction:
    """A suggested follow-up action rendered alongside a notification."""

    id: str
    label: str
    style: str = "primary"  # primary | secondary | danger
    action: str = "navigate"
    url: str | None = None
    data: dict[str, Any] | None = None
    is_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "style": self.style,
            "action": self.action,
            "url": self.url,
            "data": self.data,
            "is_enabled": self.is_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotificationAction:
        return cls(
            id=data["id"],
            label=data["label"],
            style=data.get("style", "primary"),
            action=data.get("action", "navigate"),
            url=data.get("url"),
            data=data.get("data"),
            is_enabled=data.get("is_enabled", True),
        )


@dataclass
class RelatedEntity:
    """Reference to a CRM record the notification is about."""

    entity_type: str  # deal | contact | account | opportunity | meeting
    id: str
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.entity_type, "id": self.id, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelatedEntity:
        return cls(entity_type=data["type"], id=str(data["id"]), name=data.get("name", ""))


@dataclass
class NotificationMetadata:
    """Scores and classifications computed by the scorer."""

    urgency_score: int = 0
    relevance_score: int = 0
    actionability_score: int = 0
    time_sensitivity: Level = Level.MEDIUM
    business_impact: Level = Level.MEDIUM
    ai_confidence: int = 0
    context_tags: list[str] = field(default_factory=list)
    related_entities: list[RelatedEntity] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "urgency_score": self.urgency_score,
            "relevance_score": self.relevance_score,
            "actionability_score": self.actionability_score,
            "time_sensitivity": self.time_sensitivity.value,
            "business_impact": self.business_impact.value,
            "ai_confidence": self.ai_confidence,
            "context_tags": list(self.context_tags),
            "related_entities": [e.to_dict() for e in self.related_entities],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> NotificationMetadata:
        if not data:
            return cls()
        return cls(
            urgency_score=data.get("urgency_score", 0),
            relevance_score=data.get("relevance_score", 0),
            actionability_score=data.get("actionability_score", 0),
            time_sensitivity=Level(data.get("time_sensitivity", "medium")),
            business_impact=Level(data.get("business_impact", "medium")),
            ai_confidence=data.get("ai_confidence", 0),
            context_tags=list(data.get("context_tags", [])),
            related_entities=[RelatedEntity.from_dict(e) for e in data.get("related_entities", [])],
        )


# =============================================================================
# Delivery Attempt
# =============================================================================


@dataclass
class DeliveryAttempt:
    """
    Delivery state for one (notification, channel) pair.

    Mutated in place by the dispatcher. Every state change is appended to
    ``transitions`` so the full lifecycle stays observable.
    """

    channel: Channel
    status: DeliveryState = DeliveryState.PENDING
    timestamp: datetime | None = None
    error: str | None = None
    retry_count: int = 0
    next_retry: datetime | None = None
    cancelled: bool = False  # set when cancelled mid-send; a failed send is then final
    transitions: list[tuple[DeliveryState, datetime]] = field(default_factory=list)

    def transition(self, status: DeliveryState, at: datetime, error: str | None = None) -> None:
        """Move to ``status`` and log the change."""
        self.status = status
        self.timestamp = at
        if error is not None:
            self.error = error
        self.transitions.append((status, at))

    @property
    def is_terminal(self) -> bool:
        """Delivered, bounced, or failed with no retry scheduled."""
        if self.status in TERMINAL_STATES:
            return True
        return self.status == DeliveryState.FAILED and self.next_retry is None

    @property
    def status_history(self) -> list[DeliveryState]:
        return [status for status, _ in self.transitions]

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "status": self.status.value,
            "timestamp": _iso(self.timestamp),
            "error": self.error,
            "retry_count": self.retry_count,
            "next_retry": _iso(self.next_retry),
            "cancelled": self.cancelled,
            "transitions": [[s.value, _iso(at)] for s, at in self.transitions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeliveryAttempt:
        return cls(
            channel=Channel(data["channel"]),
            status=DeliveryState(data.get("status", "pending")),
            timestamp=parse_datetime(data.get("timestamp")),
            error=data.get("error"),
            retry_count=data.get("retry_count", 0),
            next_retry=parse_datetime(data.get("next_retry")),
            cancelled=bool(data.get("cancelled", False)),
            transitions=[
                (DeliveryState(s), parse_datetime(at)) for s, at in data.get("transitions", [])
            ],
        )


# =============================================================================
# Notification
# =============================================================================


@dataclass
class Notification:
    """A persisted notification and its delivery state."""

    id: str
    user_id: str
    type: str
    priority: Priority
    category: Category
    source: str
    title: str
    message: str
    created_at: datetime
    description: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    is_dismissed: bool = False
    read_at: datetime | None = None
    expires_at: datetime | None = None
    actions: list[NotificationAction] = field(default_factory=list)
    channels: list[Channel] = field(default_factory=list)
    delivery: list[DeliveryAttempt] = field(default_factory=list)
    metadata: NotificationMetadata = field(default_factory=NotificationMetadata)
    rule_id: str | None = None
    suppressed_reason: str | None = None

    def attempt_for(self, channel: Channel) -> DeliveryAttempt | None:
        """Get the delivery attempt for a channel, if one exists."""
        for attempt in self.delivery:
            if attempt.channel == channel:
                return attempt
        return None

    def mark_read(self, at: datetime) -> None:
        if not self.is_read:
            self.is_read = True
            self.read_at = at

    def dismiss(self, at: datetime) -> None:
        """Dismissing implies reading."""
        self.mark_read(at)
        self.is_dismissed = True

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def expires_within(self, now: datetime, window: timedelta) -> bool:
        return self.expires_at is not None and self.expires_at - now < window

    @property
    def has_open_delivery(self) -> bool:
        return any(not attempt.is_terminal for attempt in self.delivery)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "priority": self.priority.value,
            "category": self.category.value,
            "source": self.source,
            "title": self.title,
            "message": self.message,
            "description": self.description,
            "data": self.data,
            "is_read": self.is_read,
            "is_dismissed": self.is_dismissed,
            "read_at": _iso(self.read_at),
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "actions": [a.to_dict() for a in self.actions],
            "channels": [c.value for c in self.channels],
            "delivery": [d.to_dict() for d in self.delivery],
            "metadata": self.metadata.to_dict(),
            "rule_id": self.rule_id,
            "suppressed_reason": self.suppressed_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Notification:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            type=data["type"],
            priority=Priority(data["priority"]),
            category=Category(data["category"]),
            source=data["source"],
            title=data["title"],
            message=data["message"],
            description=data.get("description"),
            data=dict(data.get("data") or {}),
            is_read=data.get("is_read", False),
            is_dismissed=data.get("is_dismissed", False),
            read_at=parse_datetime(data.get("read_at")),
            created_at=parse_datetime(data["created_at"]),
            expires_at=parse_datetime(data.get("expires_at")),
            actions=[NotificationAction.from_dict(a) for a in data.get("actions", [])],
            channels=[Channel(c) for c in data.get("channels", [])],
            delivery=[DeliveryAttempt.from_dict(d) for d in data.get("delivery", [])],
            metadata=NotificationMetadata.from_dict(data.get("metadata")),
            rule_id=data.get("rule_id"),
            suppressed_reason=data.get("suppressed_reason"),
        )


# =============================================================================
# Inbound Payloads
# =============================================================================


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    """Return the first present key, accepting camelCase and snake_case spellings."""
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _require_strings(values: dict[str, Any]) -> None:
    missing = [name for name, value in values.items() if not isinstance(value, str) or not value]
    if missing:
        raise TriggerValidationError(missing=missing)


@dataclass
class TriggerEvent:
    """A domain event offered to the rule engine."""

    user_id: str
    type: str
    title: str
    message: str
    source: str
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _require_strings(
            {
                "user_id": self.user_id,
                "type": self.type,
                "title": self.title,
                "message": self.message,
                "source": self.source,
            }
        )
        if self.data is None:
            self.data = {}
        elif not isinstance(self.data, Mapping):
            raise TriggerValidationError(reason="data must be a mapping")
        else:
            self.data = dict(self.data)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> TriggerEvent:
        """
        Build from a request body.

        Raises:
            TriggerValidationError: If required fields are missing or empty
        """
        return cls(
            user_id=_pick(payload, "user_id", "userId"),
            type=payload.get("type"),
            title=payload.get("title"),
            message=payload.get("message"),
            source=payload.get("source"),
            data=payload.get("data") or {},
        )

    def context(self) -> dict[str, Any]:
        """Attributes rule conditions may address directly."""
        return {
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "source": self.source,
            "data": self.data,
        }


@dataclass
class NotificationDraft:
    """A notification created directly, bypassing rule matching."""

    user_id: str
    type: str
    title: str
    message: str
    source: str
    data: dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    channels: list[Channel] = field(default_factory=lambda: [Channel.IN_APP])
    actions: list[NotificationAction] | None = None
    description: str | None = None
    expires_at: datetime | None = None
    context_tags: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        _require_strings(
            {
                "user_id": self.user_id,
                "type": self.type,
                "title": self.title,
                "message": self.message,
                "source": self.source,
            }
        )
        if not isinstance(self.data, Mapping):
            raise TriggerValidationError(reason="data must be a mapping")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> NotificationDraft:
        """
        Build from a request body.

        Raises:
            TriggerValidationError: If required fields are missing or values are invalid
        """
        try:
            priority = Priority(payload.get("priority", "medium"))
            channels = [Channel(c) for c in payload.get("channels") or ["in_app"]]
        except ValueError as e:
            raise TriggerValidationError(reason=str(e)) from e

        actions = payload.get("actions")
        context_tags = payload.get("context_tags") or []
        if not isinstance(context_tags, list):
            raise TriggerValidationError(reason="context_tags must be a list")
        expires_raw = _pick(payload, "expires_at", "expiresAt")
        expires_at = parse_datetime(expires_raw)
        if expires_raw is not None and expires_at is None:
            raise TriggerValidationError(reason=f"unparseable expires_at: {expires_raw!r}")

        return cls(
            user_id=_pick(payload, "user_id", "userId"),
            type=payload.get("type"),
            title=payload.get("title"),
            message=payload.get("message"),
            source=payload.get("source"),
            data=payload.get("data") or {},
            priority=priority,
            channels=channels,
            actions=_parse_actions(actions),
            description=payload.get("description"),
            expires_at=expires_at,
            context_tags=list(context_tags),
        )


def _parse_actions(raw: Any) -> list[NotificationAction] | None:
    if not raw:
        return None
    if not isinstance(raw, list):
        raise TriggerValidationError(reason="actions must be a list")

    actions = []
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise TriggerValidationError(reason=f"actions[{index}] must be a mapping")
        missing = [key for key in ("id", "label") if not item.get(key)]
        if missing:
            raise TriggerValidationError(
                reason=f"actions[{index}] missing required field(s): {', '.join(missing)}"
            )
        actions.append(NotificationAction.from_dict(dict(item)))
    return actions


@dataclass
class NotificationQuery:
    """Filters for listing a user's notifications."""

    category: Category | None = None
    priority: Priority | None = None
    is_read: bool | None = None
    is_dismissed: bool | None = None
    limit: int | None = None
    offset: int = 0

    def matches(self, notification: Notification) -> bool:
        if self.category is not None and notification.category != self.category:
            return False
        if self.priority is not None and notification.priority != self.priority:
            return False
        if self.is_read is not None and notification.is_read != self.is_read:
            return False
        if self.is_dismissed is not None and notification.is_dismissed != self.is_dismissed:
            return False
        return True

    def paginate(self, notifications: list[Notification]) -> list[Notification]:
        if self.limit is None:
            return notifications[self.offset :] if self.offset else notifications
        return notifications[self.offset : self.offset + self.limit]

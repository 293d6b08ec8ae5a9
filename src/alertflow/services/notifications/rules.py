"""
Notification Rules.

Declarative trigger rules and the store that matches events against them.

Condition evaluation is a flat left-to-right fold: each condition's ``logic``
joins it to the next condition, with no precedence grouping. For conditions
``a (AND) b (OR) c`` the result is ``(a and b) or c``; for ``a (OR) b (AND) c``
it is ``(a or b) and c``.

Field resolution uses dotted paths. A first segment naming an event attribute
(``user_id``, ``type``, ``title``, ``message``, ``source``, ``data``) resolves
against the event, anything else resolves inside the event's ``data``.
A field that cannot be resolved makes the condition false.
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from numbers import Real
from typing import TYPE_CHECKING, Any

from ...core.formatters import get_utc_now, parse_datetime
from ...core.logging import get_logger
from .errors import RuleValidationError
from .types import Channel, Priority

if TYPE_CHECKING:
    from .models import TriggerEvent

logger = get_logger(__name__)

OPERATORS = frozenset(
    {
        "equals",
        "not_equals",
        "contains",
        "not_contains",
        "greater_than",
        "less_than",
        "in",
        "not_in",
    }
)

LOGIC_OPERATORS = frozenset({"AND", "OR"})

ACTION_TYPES = frozenset(
    {"create_notification", "send_email", "send_sms", "send_slack", "webhook"}
)

EVENT_ATTRIBUTES = frozenset({"user_id", "type", "title", "message", "source", "data"})

_MISSING = object()


# =============================================================================
# Condition Evaluation
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def resolve_field(context: dict[str, Any], path: str) -> Any:
    """
    Resolve a dotted path against an event context.

    Returns:
        The value, or the ``_MISSING`` sentinel when any segment is absent
    """
    parts = path.split(".")
    current: Any = context if parts[0] in EVENT_ATTRIBUTES else context.get("data", {})

    for part in parts:
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _equals(actual: Any, expected: Any) -> bool:
    if _is_number(actual) and _is_number(expected):
        return float(actual) == float(expected)
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return isinstance(expected, str) and expected in actual
    if isinstance(actual, (list, tuple, set, frozenset)):
        return expected in actual
    return False


def _compare(actual: Any, expected: Any) -> int | None:
    """Three-way compare numbers, or ISO timestamps; None if incomparable."""
    if _is_number(actual) and _is_number(expected):
        left, right = float(actual), float(expected)
    else:
        left_dt, right_dt = parse_datetime(actual), parse_datetime(expected)
        if left_dt is None or right_dt is None:
            return None
        left, right = left_dt.timestamp(), right_dt.timestamp()
    return (left > right) - (left < right)


def _iso_dates(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [_iso_dates(item) for item in value]
    return value


def _member(actual: Any, expected: Any) -> bool | None:
    if not isinstance(expected, (list, tuple, set, frozenset)):
        return None
    return actual in expected


def evaluate_condition(condition: Condition, context: dict[str, Any]) -> bool:
    """Evaluate one condition. Never raises for well-formed input."""
    actual = resolve_field(context, condition.field)
    if actual is _MISSING:
        return False

    op = condition.operator
    expected = condition.value

    if op == "equals":
        return _equals(actual, expected)
    if op == "not_equals":
        return not _equals(actual, expected)
    if op == "contains":
        return _contains(actual, expected)
    if op == "not_contains":
        return not _contains(actual, expected)
    if op in ("greater_than", "less_than"):
        result = _compare(actual, expected)
        if result is None:
            return False
        return result > 0 if op == "greater_than" else result < 0
    if op in ("in", "not_in"):
        member = _member(actual, expected)
        if member is None:
            return False
        return member if op == "in" else not member

    logger.warning("Unknown operator '%s' on field '%s'", op, condition.field)
    return False


def evaluate_conditions(conditions: list[Condition], context: dict[str, Any]) -> bool:
    """
    Fold conditions left to right using each condition's join to the next.

    An empty condition list matches every event.
    """
    if not conditions:
        return True

    result = evaluate_condition(conditions[0], context)
    for previous, condition in zip(conditions, conditions[1:]):
        value = evaluate_condition(condition, context)
        if previous.logic == "OR":
            result = result or value
        else:
            result = result and value
    return result


# =============================================================================
# Rule Model
# =============================================================================


@dataclass
class Condition:
    """A single field test inside a rule."""

    field: str
    operator: str
    value: Any
    logic: str = "AND"  # how this condition joins the next one

    def __post_init__(self) -> None:
        # Dates compare as ISO strings and must stay JSON-serializable
        self.value = _iso_dates(self.value)

    def validate(self) -> list[str]:
        errors = []
        if not isinstance(self.field, str) or not self.field:
            errors.append("condition field must be a non-empty string")
        if not isinstance(self.operator, str) or self.operator not in OPERATORS:
            errors.append(f"unknown operator '{self.operator}'")
        if self.logic not in LOGIC_OPERATORS:
            errors.append(f"unknown logic '{self.logic}' (expected AND or OR)")
        if self.operator in ("in", "not_in") and not isinstance(self.value, (list, tuple)):
            errors.append(f"operator '{self.operator}' requires a list value")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "logic": self.logic,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            field=data.get("field", ""),
            operator=data.get("operator", ""),
            value=data.get("value"),
            logic=str(data.get("logic") or "AND").upper(),
        )


@dataclass
class RuleAction:
    """
    Directive executed when a rule fires.

    ``create_notification`` config may carry template fields: ``title``,
    ``message``, ``description`` (``str.format`` placeholders filled from
    event data), ``expires_in_minutes`` and ``context_tags``.
    """

    type: str = "create_notification"
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "config": dict(self.config)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleAction:
        return cls(type=data.get("type", "create_notification"), config=dict(data.get("config") or {}))


@dataclass
class Rule:
    """A declarative trigger rule."""

    id: str
    name: str
    conditions: list[Condition] = field(default_factory=list)
    actions: list[RuleAction] = field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    channels: list[Channel] = field(default_factory=lambda: [Channel.IN_APP])
    cooldown_minutes: int = 0
    max_per_day: int = 50
    description: str = ""
    is_active: bool = True
    user_id: str | None = None  # None applies to every user
    created_at: datetime = field(default_factory=get_utc_now)
    updated_at: datetime = field(default_factory=get_utc_now)

    def validate(self) -> list[str]:
        """
        Validate rule definition.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []
        if not self.name:
            errors.append("name must not be empty")
        if not self.channels:
            errors.append("at least one channel is required")
        if self.cooldown_minutes < 0:
            errors.append("cooldown_minutes must be non-negative")
        if self.max_per_day < 1:
            errors.append("max_per_day must be at least 1")
        for index, condition in enumerate(self.conditions):
            errors.extend(f"conditions[{index}]: {e}" for e in condition.validate())
        for index, action in enumerate(self.actions):
            if action.type not in ACTION_TYPES:
                errors.append(f"actions[{index}]: unknown action type '{action.type}'")
        return errors

    @property
    def template(self) -> dict[str, Any]:
        """Config of the first create_notification action, if any."""
        for action in self.actions:
            if action.type == "create_notification":
                return action.config
        return {}

    def applies_to(self, user_id: str) -> bool:
        return self.user_id is None or self.user_id == user_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "priority": self.priority.value,
            "channels": [c.value for c in self.channels],
            "cooldown_minutes": self.cooldown_minutes,
            "max_per_day": self.max_per_day,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], rule_id: str | None = None) -> Rule:
        """
        Create from a mapping (YAML file, request body, or stored row).

        Raises:
            RuleValidationError: If enum values are invalid or the rule fails validation
        """
        name = data.get("name", "")
        errors: list[str] = []
        conditions = _mappings(data, "conditions", errors)
        actions = _mappings(data, "actions", errors)
        for index, action in enumerate(actions):
            if not isinstance(action.get("config") or {}, dict):
                errors.append(f"actions[{index}]: config must be a mapping")
        cooldown_minutes = _integer(data, "cooldown_minutes", 0, errors)
        max_per_day = _integer(data, "max_per_day", 50, errors)
        channel_values = data.get("channels", ["in_app"])
        if not isinstance(channel_values, list):
            errors.append("channels must be a list")
        if errors:
            raise RuleValidationError(errors, rule_name=str(name))

        try:
            priority = Priority(data.get("priority", "medium"))
            channels = [Channel(c) for c in channel_values]
        except ValueError as e:
            raise RuleValidationError([str(e)], rule_name=str(name)) from e

        now = get_utc_now()
        rule = cls(
            id=rule_id or data.get("id") or new_rule_id(),
            name=name,
            description=data.get("description", ""),
            is_active=data.get("is_active", data.get("enabled", True)),
            conditions=[Condition.from_dict(c) for c in conditions],
            actions=[RuleAction.from_dict(a) for a in actions],
            priority=priority,
            channels=channels,
            cooldown_minutes=cooldown_minutes,
            max_per_day=max_per_day,
            user_id=data.get("user_id"),
            created_at=parse_datetime(data.get("created_at")) or now,
            updated_at=parse_datetime(data.get("updated_at")) or now,
        )
        errors = rule.validate()
        if errors:
            raise RuleValidationError(errors, rule_name=name)
        return rule


def _mappings(data: dict[str, Any], key: str, errors: list[str]) -> list[dict[str, Any]]:
    """A list-of-mappings field; shape problems are appended to ``errors``."""
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        errors.append(f"{key} must be a list")
        return []
    items = []
    for index, item in enumerate(value):
        if isinstance(item, dict):
            items.append(item)
        else:
            errors.append(f"{key}[{index}] must be a mapping, got {type(item).__name__}")
    return items


def _integer(data: dict[str, Any], key: str, default: int, errors: list[str]) -> int:
    value = data.get(key, default)
    if isinstance(value, bool):
        errors.append(f"{key} must be an integer")
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        errors.append(f"{key} must be an integer, got {value!r}")
        return default


def new_rule_id() -> str:
    return f"rule-{uuid.uuid4().hex[:10]}"


def select_rule(matches: Iterable[Rule]) -> Rule | None:
    """Highest priority wins; ties keep the first rule encountered."""
    best: Rule | None = None
    for rule in matches:
        if best is None or rule.priority.rank > best.priority.rank:
            best = rule
    return best


# =============================================================================
# Rule Store
# =============================================================================


@dataclass
class RuleStore:
    """
    Holds rules in insertion order and tracks when each rule fired per user.

    Rules in cooldown for a user, or that reached ``max_per_day`` for that
    user within the trailing 24 hours, are excluded from matching.
    """

    _rules: dict[str, Rule] = field(default_factory=dict)
    _firings: dict[tuple[str, str], deque[datetime]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(self, rule: Rule) -> Rule:
        """
        Add or replace a rule.

        Raises:
            RuleValidationError: If the rule is invalid
        """
        errors = rule.validate()
        if errors:
            raise RuleValidationError(errors, rule_name=rule.name)
        self._rules[rule.id] = rule
        return rule

    def get(self, rule_id: str) -> Rule | None:
        return self._rules.get(rule_id)

    def list(self) -> list[Rule]:
        return list(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    def match(self, event: TriggerEvent, now: datetime) -> list[Rule]:
        """Return every eligible rule whose conditions match, in store order."""
        context = event.context()
        matches = []
        for rule in self._rules.values():
            if not rule.is_active or not rule.applies_to(event.user_id):
                continue
            if not self._has_capacity(rule, event.user_id, now):
                logger.debug(
                    "Rule '%s' skipped for user %s (cooldown or daily cap)",
                    rule.name,
                    event.user_id,
                )
                continue
            if evaluate_conditions(rule.conditions, context):
                matches.append(rule)
        return matches

    def record_firing(self, rule: Rule, user_id: str, now: datetime) -> None:
        with self._lock:
            history = self._firings.setdefault((rule.id, user_id), deque())
            history.append(now)
            self._prune(history, now)

    def _has_capacity(self, rule: Rule, user_id: str, now: datetime) -> bool:
        with self._lock:
            history = self._firings.get((rule.id, user_id))
            if not history:
                return True
            self._prune(history, now)
            if history and rule.cooldown_minutes > 0:
                if now - history[-1] < timedelta(minutes=rule.cooldown_minutes):
                    return False
            return len(history) < rule.max_per_day

    @staticmethod
    def _prune(history: deque[datetime], now: datetime) -> None:
        cutoff = now - timedelta(days=1)
        while history and history[0] <= cutoff:
            history.popleft()

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """
        Drop firing histories with nothing inside the trailing day.

        Returns:
            Number of histories removed
        """
        now = now or get_utc_now()
        with self._lock:
            expired = []
            for key, history in self._firings.items():
                self._prune(history, now)
                if not history:
                    expired.append(key)
            for key in expired:
                del self._firings[key]
        return len(expired)


# =============================================================================
# Built-in Rules
# =============================================================================


def _builtin(
    rule_id: str,
    name: str,
    description: str,
    notification_type: str,
    conditions: list[Condition],
    priority: Priority,
    channels: list[Channel],
    cooldown_minutes: int,
    max_per_day: int,
) -> Rule:
    return Rule(
        id=rule_id,
        name=name,
        description=description,
        conditions=[Condition("type", "equals", notification_type), *conditions],
        actions=[RuleAction("create_notification", {"type": notification_type})],
        priority=priority,
        channels=channels,
        cooldown_minutes=cooldown_minutes,
        max_per_day=max_per_day,
    )


def default_rules() -> list[Rule]:
    """Rules every engine starts with."""
    return [
        _builtin(
            "rule-deal-closure-risk",
            "Deal Closure Risk Alert",
            "Alert when a high-value deal is at risk of not closing",
            "deal_closure_risk",
            [
                Condition("dealValue", "greater_than", 100_000),
                Condition("closureProbability", "less_than", 40),
            ],
            Priority.HIGH,
            [Channel.IN_APP, Channel.EMAIL, Channel.SLACK],
            cooldown_minutes=30,
            max_per_day=5,
        ),
        _builtin(
            "rule-churn-risk",
            "Churn Risk Alert",
            "Alert when an account shows signs of churning",
            "churn_risk_alert",
            [Condition("churnProbability", "greater_than", 70)],
            Priority.CRITICAL,
            [Channel.IN_APP, Channel.EMAIL, Channel.SMS, Channel.VOICE],
            cooldown_minutes=15,
            max_per_day=10,
        ),
        _builtin(
            "rule-nba-priority",
            "High Priority NBA",
            "Alert for high-priority Next Best Actions due within a day",
            "nba_priority",
            [
                Condition("nbaPriority", "equals", "high"),
                Condition("daysUntilDue", "less_than", 1),
            ],
            Priority.MEDIUM,
            [Channel.IN_APP, Channel.PUSH],
            cooldown_minutes=60,
            max_per_day=20,
        ),
        _builtin(
            "rule-meeting-insights",
            "Meeting Insights",
            "Alert for important meeting insights and follow-ups",
            "meeting_insight",
            [Condition("insightType", "in", ["action_required", "decision_made", "next_steps"])],
            Priority.MEDIUM,
            [Channel.IN_APP, Channel.EMAIL],
            cooldown_minutes=0,
            max_per_day=50,
        ),
    ]

"""
Notification Scorer.

Computes urgency, relevance and actionability (each 0-100) for a candidate
notification, then derives priority, time sensitivity, business impact and
confidence from them. Scoring is authoritative: the derived priority replaces
whatever priority the rule proposed.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from numbers import Real
from typing import Any

from .catalog import get_type_profile
from .models import Notification
from .types import Level, Priority

RelevanceStrategy = Callable[[Notification], int]

# Urgency adjustments
HIGH_DEAL_VALUE = 500_000
CRITICAL_DEAL_VALUE = 1_000_000
DUE_SOON_DAYS = 1
HIGH_RISK_PROBABILITY = 80
RISK_FIELDS = ("churnProbability", "riskProbability")

# Actionability components
ACTIONABILITY_BASE = 25
ACTIONABILITY_HAS_ACTIONS = 30
ACTIONABILITY_RICH_DATA = 20
ACTIONABILITY_EXPIRING = 25
RICH_DATA_KEYS = 3
EXPIRY_WINDOW = timedelta(hours=24)

PRIORITY_THRESHOLDS: tuple[tuple[int, Priority], ...] = (
    (90, Priority.URGENT),
    (80, Priority.CRITICAL),
    (60, Priority.HIGH),
    (40, Priority.MEDIUM),
)

TIME_SENSITIVITY_THRESHOLDS: tuple[tuple[int, Level], ...] = (
    (85, Level.CRITICAL),
    (70, Level.HIGH),
    (50, Level.MEDIUM),
)


def _clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


def _number(data: dict[str, Any], key: str) -> float | None:
    """Numeric payload value, ignoring booleans and non-numbers."""
    value = data.get(key)
    if isinstance(value, Real) and not isinstance(value, bool):
        return float(value)
    return None


def constant_relevance(score: int) -> RelevanceStrategy:
    """Relevance strategy returning the same score for every notification."""

    def _relevance(notification: Notification) -> int:
        return score

    return _relevance


def priority_from_urgency(urgency: int) -> Priority:
    for threshold, priority in PRIORITY_THRESHOLDS:
        if urgency >= threshold:
            return priority
    return Priority.LOW


def time_sensitivity_from_urgency(urgency: int) -> Level:
    for threshold, level in TIME_SENSITIVITY_THRESHOLDS:
        if urgency >= threshold:
            return level
    return Level.LOW


def business_impact_for(notification: Notification) -> Level:
    if get_type_profile(notification.type).high_impact:
        return Level.HIGH
    deal_value = _number(notification.data, "dealValue")
    if deal_value is not None and deal_value > CRITICAL_DEAL_VALUE:
        return Level.CRITICAL
    return Level.MEDIUM


@dataclass(frozen=True)
class NotificationScores:
    """Scores and classifications derived for one notification."""

    urgency: int
    relevance: int
    actionability: int
    priority: Priority
    time_sensitivity: Level
    business_impact: Level
    confidence: int


class NotificationScorer:
    """
    Scores notifications.

    Args:
        relevance: Strategy returning a 0-100 relevance score. Defaults to a
            constant of ``default_relevance``.
        default_relevance: Constant used when no strategy is given
    """

    def __init__(
        self,
        relevance: RelevanceStrategy | None = None,
        default_relevance: int = 75,
    ):
        self._relevance = relevance or constant_relevance(default_relevance)

    def urgency(self, notification: Notification) -> int:
        score = float(get_type_profile(notification.type).base_urgency)
        data = notification.data

        deal_value = _number(data, "dealValue")
        if deal_value is not None and deal_value > HIGH_DEAL_VALUE:
            score += 10

        days_until_due = _number(data, "daysUntilDue")
        if days_until_due is not None and days_until_due < DUE_SOON_DAYS:
            score += 15

        for key in RISK_FIELDS:
            probability = _number(data, key)
            if probability is not None and probability > HIGH_RISK_PROBABILITY:
                score += 20
                break

        return _clamp(score)

    def relevance(self, notification: Notification) -> int:
        return _clamp(self._relevance(notification))

    def actionability(self, notification: Notification, now: datetime) -> int:
        score = ACTIONABILITY_BASE
        if notification.actions:
            score += ACTIONABILITY_HAS_ACTIONS
        if len(notification.data) > RICH_DATA_KEYS:
            score += ACTIONABILITY_RICH_DATA
        if notification.expires_within(now, EXPIRY_WINDOW):
            score += ACTIONABILITY_EXPIRING
        return _clamp(score)

    def score(self, notification: Notification, now: datetime) -> NotificationScores:
        """Compute scores without touching the notification."""
        urgency = self.urgency(notification)
        relevance = self.relevance(notification)
        actionability = self.actionability(notification, now)
        return NotificationScores(
            urgency=urgency,
            relevance=relevance,
            actionability=actionability,
            priority=priority_from_urgency(urgency),
            time_sensitivity=time_sensitivity_from_urgency(urgency),
            business_impact=business_impact_for(notification),
            confidence=round((urgency + relevance + actionability) / 3),
        )

    def apply(self, notification: Notification, now: datetime) -> NotificationScores:
        """Score and write the results into the notification's metadata and priority."""
        scores = self.score(notification, now)
        metadata = notification.metadata
        metadata.urgency_score = scores.urgency
        metadata.relevance_score = scores.relevance
        metadata.actionability_score = scores.actionability
        metadata.time_sensitivity = scores.time_sensitivity
        metadata.business_impact = scores.business_impact
        metadata.ai_confidence = scores.confidence
        notification.priority = scores.priority
        return scores

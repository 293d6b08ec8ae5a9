"""
alertflow - Smart Notification Engine

Turns CRM domain events (deal risk, churn signals, due actions, meeting
insights) into prioritized notifications, filtered by user preferences,
rate limited, and delivered across in-app and external channels.

Usage as library:
    from alertflow import NotificationEngine

    engine = NotificationEngine()
    await engine.initialize()
    notification = await engine.trigger({
        "user_id": "u1",
        "type": "churn_risk_alert",
        "title": "Churn risk",
        "message": "Acme is at risk",
        "source": "ai_engine",
        "data": {"churnProbability": 85},
    })

Usage as CLI:
    python -m alertflow list --user u1 --unread
    python -m alertflow rules list

Package structure:
    alertflow/
    ├── core/           # Shared infrastructure
    │   ├── config.py   # Settings (environment/.env)
    │   ├── logging.py  # Logger setup
    │   └── formatters.py # Time helpers
    ├── commands/       # CLI command implementations
    └── services/
        └── notifications/  # Rules, scoring, preferences, delivery
"""

__version__ = "1.0.0"

from .core import get_settings, get_utc_timestamp
from .services.notifications import (
    Notification,
    NotificationEngine,
    NotificationError,
    TriggerEvent,
    get_notification_engine,
)

__all__ = [
    "__version__",
    "Notification",
    "NotificationEngine",
    "NotificationError",
    "TriggerEvent",
    "get_notification_engine",
    "get_settings",
    "get_utc_timestamp",
]

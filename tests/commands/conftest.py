"""
Shared fixtures for command module tests.

Commands open the SQLite store under the configured instance root, so each
test gets its own root in a temporary directory.
"""

import argparse

import pytest

from alertflow.core.config import reset_settings


@pytest.fixture
def instance_root(tmp_path, monkeypatch):
    """Point ALERTFLOW_INSTANCE_ROOT at a fresh directory for the test."""
    monkeypatch.setenv("ALERTFLOW_INSTANCE_ROOT", str(tmp_path))
    reset_settings()
    yield tmp_path
    reset_settings()


def trigger_args(**overrides) -> argparse.Namespace:
    """Namespace for cmd_trigger describing a churn event."""
    values = {
        "user": "user-1",
        "type": "churn_risk_alert",
        "title": "Churn risk detected",
        "message": "Acme Corp shows churn signals",
        "source": "ai_engine",
        "data": '{"churnProbability": 85, "accountId": "acc-1"}',
    }
    values.update(overrides)
    return argparse.Namespace(**values)


def list_args(**overrides) -> argparse.Namespace:
    values = {
        "user": "user-1",
        "category": None,
        "priority": None,
        "unread": False,
        "include_dismissed": False,
        "limit": 20,
        "offset": 0,
    }
    values.update(overrides)
    return argparse.Namespace(**values)

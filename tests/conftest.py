"""
alertflow Test Suite - Shared Fixtures and Configuration

Resets module-level singletons around every test so settings, logging and
the engine singleton never leak between tests.
"""

from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent


@pytest.fixture
def project_root() -> Path:
    """Path to the repository root."""
    return PROJECT_ROOT


@pytest.fixture(autouse=True)
def reset_all_singletons():
    """
    Reset all module-level singletons between tests.

    Runs before and after each test. Resets, in order:
    - Settings cache (MUST be first - other modules read from settings)
    - Logging state (restores propagation so caplog can capture records)
    - Notification engine singleton
    """

    def do_reset():
        from alertflow.core.config import reset_settings
        from alertflow.core.logging import reset_logging
        from alertflow.services.notifications import reset_notification_engine

        reset_settings()
        reset_logging()
        reset_notification_engine()

    do_reset()
    yield
    do_reset()

"""
alertflow Centralized Configuration

Provides validated, type-safe access to all environment variables using Pydantic Settings.

Usage:
    from alertflow.core.config import get_settings

    settings = get_settings()
    if settings.log_level == "DEBUG":
        ...

Data Paths:
    All data is stored in {instance_root}/cache/:
    - cache/alertflow.db: Notification store (SQLite)

Environment Variables:
    ALERTFLOW_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    ALERTFLOW_DEBUG: Legacy debug flag (enables DEBUG level if set)
    ALERTFLOW_LOG_JSON: Output logs as JSON
    ALERTFLOW_INSTANCE_ROOT: Override the instance root directory
    ALERTFLOW_DELIVERY_RETRY_DELAY_SECONDS: Fixed backoff between delivery retries
    ALERTFLOW_DELIVERY_MAX_RETRIES: Failed sends retried per channel before giving up
    ALERTFLOW_DELIVERY_POLL_INTERVAL: Seconds between delivery queue sweeps
    ALERTFLOW_DEFAULT_RELEVANCE_SCORE: Relevance used when no personalization model is wired
    ALERTFLOW_WEBHOOK_URL: Generic JSON webhook channel target
    ALERTFLOW_SLACK_WEBHOOK_URL: Slack incoming webhook
    ALERTFLOW_TEAMS_WEBHOOK_URL: Microsoft Teams incoming webhook
    ALERTFLOW_WEBHOOK_TIMEOUT_SECONDS: HTTP timeout for webhook channels
    ALERTFLOW_APP_BASE_URL: Prefix for relative action links in chat messages
    ALERTFLOW_RULES_DIR: Directory of YAML rule files loaded at startup
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_project_root() -> Path | None:
    """
    Find the project root by searching upward for pyproject.toml.

    Returns:
        Directory containing pyproject.toml, or None if not found
    """
    current = Path(__file__).resolve().parent

    for _ in range(10):  # Limit search depth
        if (current / "pyproject.toml").exists():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _find_project_env_file() -> Path | None:
    """Return the project .env file if one exists next to pyproject.toml."""
    root = _find_project_root()
    if root is None:
        return None
    env_file = root / ".env"
    return env_file if env_file.exists() else None


def _find_instance_root() -> Path:
    """
    Find the instance root directory.

    Resolution order:
    1. ALERTFLOW_INSTANCE_ROOT environment variable (explicit override)
    2. Project root (directory containing pyproject.toml)
    3. Current working directory (fallback)
    """
    override = os.environ.get("ALERTFLOW_INSTANCE_ROOT")
    if override:
        return Path(override)

    return _find_project_root() or Path.cwd()


# Resolve paths at module load time
_ENV_FILE = _find_project_env_file()
_INSTANCE_ROOT = _find_instance_root()


class AlertflowSettings(BaseSettings):
    """
    alertflow configuration settings with validation.

    Environment variables are automatically loaded with the ALERTFLOW_ prefix.
    All settings have sensible defaults and validation.
    """

    model_config = SettingsConfigDict(
        env_prefix="ALERTFLOW_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # =========================================================================
    # Logging Configuration
    # =========================================================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Log level for alertflow components",
    )

    debug: bool = Field(
        default=False,
        description="Legacy debug flag (enables DEBUG level if set)",
    )

    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format for machine parsing",
    )

    # =========================================================================
    # Data Paths
    # =========================================================================

    instance_root: Path = Field(
        default=_INSTANCE_ROOT,
        description="Instance root directory (project root containing pyproject.toml)",
    )

    rules_dir: Optional[Path] = Field(
        default=None,
        description="Directory of YAML rule files loaded when the engine initializes",
    )

    # =========================================================================
    # Delivery
    # =========================================================================

    delivery_retry_delay_seconds: int = Field(
        default=300,
        ge=1,
        description="Fixed delay before a failed channel send is retried",
    )

    delivery_max_retries: int = Field(
        default=5,
        ge=0,
        description="Failed sends retried per channel before the attempt is terminal",
    )

    delivery_poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Seconds between delivery queue sweeps in the background loop",
    )

    # =========================================================================
    # Scoring
    # =========================================================================

    default_relevance_score: int = Field(
        default=75,
        ge=0,
        le=100,
        description="Relevance score used by the constant relevance strategy",
    )

    # =========================================================================
    # Webhook Channels
    # =========================================================================

    webhook_url: Optional[str] = Field(
        default=None,
        description="Generic JSON webhook target for the webhook channel",
    )

    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack incoming webhook URL",
    )

    teams_webhook_url: Optional[str] = Field(
        default=None,
        description="Microsoft Teams incoming webhook URL",
    )

    webhook_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for webhook channel requests",
    )

    app_base_url: str = Field(
        default="",
        description="Prefix for relative action links in chat messages",
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str) -> str:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def effective_log_level(self) -> str:
        """
        Get effective log level, respecting legacy ALERTFLOW_DEBUG.

        Priority:
        1. Explicit ALERTFLOW_LOG_LEVEL
        2. ALERTFLOW_DEBUG=1 -> DEBUG
        3. Default: WARNING
        """
        if self.debug and self.log_level == "WARNING":
            return "DEBUG"
        return self.log_level

    @property
    def log_level_int(self) -> int:
        """Get effective log level as logging constant."""
        return getattr(logging, self.effective_log_level)

    @property
    def cache_dir(self) -> Path:
        """Path to cache directory."""
        return self.instance_root / "cache"

    @property
    def db_path(self) -> Path:
        """Path to the notification database."""
        return self.cache_dir / "alertflow.db"


# =============================================================================
# Singleton Accessor
# =============================================================================


@lru_cache(maxsize=1)
def get_settings() -> AlertflowSettings:
    """
    Get the singleton settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    The settings are validated at first access.
    """
    return AlertflowSettings()


def reset_settings() -> None:
    """
    Reset the settings cache (for testing).

    After calling this, the next get_settings() call will
    reload settings from environment variables.
    """
    get_settings.cache_clear()


def is_debug_enabled() -> bool:
    """Check if debug logging is enabled."""
    return get_settings().effective_log_level == "DEBUG"

"""
alertflow Structured Logging

Every module logs through ``get_logger(__name__)``. Loggers share one stderr
handler whose level and output mode come from settings:

- ALERTFLOW_LOG_LEVEL picks the level (ALERTFLOW_DEBUG forces DEBUG)
- ALERTFLOW_LOG_JSON switches to one JSON object per line

Context passed through ``extra`` is kept. Text output appends it as
``key=value`` pairs and JSON output merges it into the object:

    logger.info("Delivery sent", extra={"notification_id": nid, "channel": "email"})
    # [alertflow INFO] [dispatcher] Delivery sent channel=email notification_id=notif-...
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Optional

from .config import get_settings

_ROOT_NAME = "alertflow"

# Attributes a bare LogRecord already has. Anything else came from ``extra``.
_STANDARD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_loggers: dict[str, logging.Logger] = {}
_handler: Optional[logging.Handler] = None


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_FIELDS}


def _render_exception(record: logging.LogRecord) -> Optional[str]:
    if not record.exc_info:
        return None
    return "".join(traceback.format_exception(*record.exc_info)).rstrip()


class AlertflowFormatter(logging.Formatter):
    """Render records as a tagged text line or as a JSON object."""

    def __init__(self, json_output: bool = False) -> None:
        super().__init__()
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        if self.json_output:
            return self._as_json(record)
        return self._as_text(record)

    def _as_text(self, record: logging.LogRecord) -> str:
        component = record.name.rsplit(".", 1)[-1]
        line = f"[{_ROOT_NAME} {record.levelname}] [{component}] {record.getMessage()}"

        context = _extra_fields(record)
        if context:
            line += " " + " ".join(f"{key}={context[key]}" for key in sorted(context))

        exception = _render_exception(record)
        if exception:
            line = f"{line}\n{exception}"
        return line

    def _as_json(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="seconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extra_fields(record))

        exception = _render_exception(record)
        if exception:
            payload["exception"] = exception
        return json.dumps(payload, default=str)


def _shared_handler() -> logging.Handler:
    global _handler
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(AlertflowFormatter(json_output=get_settings().log_json))
    return _handler


def get_logger(name: str) -> logging.Logger:
    """
    Return the configured logger for a module.

    The first call for a name attaches the shared handler and applies the
    configured level. Later calls return the cached instance.
    """
    cached = _loggers.get(name)
    if cached is not None:
        return cached

    logger = logging.getLogger(name)
    logger.setLevel(get_settings().log_level_int)
    logger.addHandler(_shared_handler())
    logger.propagate = False
    _loggers[name] = logger
    return logger


def set_log_level(level: int) -> None:
    """Change the level of every logger handed out so far."""
    for logger in _loggers.values():
        logger.setLevel(level)


def reset_logging() -> None:
    """
    Undo get_logger configuration.

    Every ``alertflow.*`` logger goes back to NOTSET with propagation on, so
    pytest's caplog sees records again. The shared handler is detached and
    the cache cleared, which makes the next get_logger re-read settings.
    """
    global _handler

    for name, entry in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(entry, logging.Logger):
            continue
        if name == _ROOT_NAME or name.startswith(_ROOT_NAME + "."):
            entry.propagate = True
            entry.setLevel(logging.NOTSET)
            if _handler is not None:
                entry.removeHandler(_handler)

    _loggers.clear()
    _handler = None

"""
alertflow Notification Commands

Trigger events, browse a user's inbox, and manage preferences against the
SQLite notification store.
"""

import argparse
import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import yaml

from ..core import get_utc_timestamp
from ..services.notifications import (
    Category,
    NotificationEngine,
    NotificationError,
    NotificationNotFoundError,
    NotificationPreferences,
    NotificationQuery,
    Priority,
    SQLiteNotificationStore,
    UserDeliveryStatus,
)

T = TypeVar("T")


def run_with_engine(action: Callable[[NotificationEngine], Awaitable[T]]) -> T:
    """
    Run an async action against an initialized engine, then close it.

    The engine uses the SQLite store at the configured db_path.
    """

    async def run() -> T:
        engine = NotificationEngine(store=SQLiteNotificationStore())
        await engine.initialize()
        try:
            return await action(engine)
        finally:
            await engine.close()

    return asyncio.run(run())


def error_result(error: str, message: str, **extra: Any) -> dict[str, Any]:
    return {
        "query_timestamp": get_utc_timestamp(),
        "status": "error",
        "error": error,
        "message": message,
        **extra,
    }


def _parse_json_arg(value: str | None, name: str) -> dict[str, Any]:
    if not value:
        return {}
    data = json.loads(value)
    if not isinstance(data, dict):
        raise ValueError(f"{name} must be a JSON object")
    return data


# =============================================================================
# Trigger Command
# =============================================================================


def cmd_trigger(args: argparse.Namespace) -> dict[str, Any]:
    """
    Offer an event to the rule engine and run the resulting deliveries.

    Args:
        args: Parsed arguments with user, type, title, message, source, data

    Returns:
        Result dict with the created notification, or a no_match status
    """
    query_ts = get_utc_timestamp()

    try:
        data = _parse_json_arg(args.data, "--data")
    except ValueError as e:
        return error_result("invalid_data", str(e))

    payload = {
        "user_id": args.user,
        "type": args.type,
        "title": args.title,
        "message": args.message,
        "source": args.source,
        "data": data,
    }

    async def action(engine: NotificationEngine) -> dict[str, Any]:
        notification = await engine.trigger(payload)
        if notification is None:
            return {"query_timestamp": query_ts, "status": "no_match"}
        await engine.flush_deliveries()
        delivered = await engine.get_notification(notification.id, notification.user_id)
        return {
            "query_timestamp": query_ts,
            "status": "suppressed" if delivered.suppressed_reason else "ok",
            "notification": delivered.to_dict(),
        }

    try:
        return run_with_engine(action)
    except NotificationError as e:
        return error_result("invalid_trigger", str(e))


# =============================================================================
# Inbox Commands
# =============================================================================


def cmd_list(args: argparse.Namespace) -> dict[str, Any]:
    """
    List a user's notifications, newest first.

    Args:
        args: Parsed arguments with user and optional filters

    Returns:
        Result dict with notifications
    """
    query_ts = get_utc_timestamp()

    try:
        query = NotificationQuery(
            category=Category(args.category) if args.category else None,
            priority=Priority(args.priority) if args.priority else None,
            is_read=False if args.unread else None,
            is_dismissed=None if args.include_dismissed else False,
            limit=args.limit,
            offset=args.offset,
        )
    except ValueError as e:
        return error_result("invalid_filter", str(e))

    notifications = run_with_engine(lambda engine: engine.get_notifications(args.user, query))

    return {
        "query_timestamp": query_ts,
        "status": "ok",
        "user_id": args.user,
        "count": len(notifications),
        "notifications": [
            {
                "id": n.id,
                "type": n.type,
                "priority": n.priority.value,
                "title": n.title,
                "is_read": n.is_read,
                "created_at": n.created_at.isoformat(),
                "channels": [c.value for c in n.channels],
                "suppressed_reason": n.suppressed_reason,
            }
            for n in notifications
        ],
    }


def cmd_read(args: argparse.Namespace) -> dict[str, Any]:
    """Mark one notification read, or all of a user's notifications with --all."""
    query_ts = get_utc_timestamp()

    if args.all:
        changed = run_with_engine(lambda engine: engine.mark_all_as_read(args.user))
        return {"query_timestamp": query_ts, "status": "ok", "marked_read": changed}

    if not args.id:
        return error_result("missing_id", "Provide a notification id or --all")

    try:
        notification = run_with_engine(lambda engine: engine.mark_as_read(args.id, args.user))
    except NotificationNotFoundError as e:
        return error_result("not_found", str(e))

    return {
        "query_timestamp": query_ts,
        "status": "ok",
        "id": notification.id,
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
    }


def cmd_dismiss(args: argparse.Namespace) -> dict[str, Any]:
    """Dismiss a notification."""
    query_ts = get_utc_timestamp()

    try:
        notification = run_with_engine(lambda engine: engine.dismiss(args.id, args.user))
    except NotificationNotFoundError as e:
        return error_result("not_found", str(e))

    return {
        "query_timestamp": query_ts,
        "status": "ok",
        "id": notification.id,
        "is_dismissed": notification.is_dismissed,
    }


def cmd_stats(args: argparse.Namespace) -> dict[str, Any]:
    """Show a user's notification statistics."""
    query_ts = get_utc_timestamp()
    stats = run_with_engine(lambda engine: engine.get_stats(args.user))
    return {
        "query_timestamp": query_ts,
        "status": "ok",
        "user_id": args.user,
        **stats.to_dict(),
    }


# =============================================================================
# Preference Commands
# =============================================================================


def cmd_prefs_show(args: argparse.Namespace) -> dict[str, Any]:
    """
    Show a user's preferences (created with defaults on first use).

    Also reports whether quiet hours are in effect and how much of the
    hourly and daily quota has been used.
    """
    query_ts = get_utc_timestamp()

    async def show(
        engine: NotificationEngine,
    ) -> tuple[NotificationPreferences, UserDeliveryStatus]:
        prefs = await engine.get_preferences(args.user)
        return prefs, await engine.get_delivery_status(args.user)

    prefs, status = run_with_engine(show)
    return {
        "query_timestamp": query_ts,
        "status": "ok",
        "preferences": prefs.to_dict(),
        "delivery_status": status.to_dict(),
    }


def cmd_prefs_set(args: argparse.Namespace) -> dict[str, Any]:
    """
    Apply a partial preferences update.

    The patch comes from --json, or from a YAML/JSON file via --file.
    """
    query_ts = get_utc_timestamp()

    try:
        if args.file:
            with open(Path(args.file)) as f:
                patch = yaml.safe_load(f) or {}
            if not isinstance(patch, dict):
                raise ValueError(f"{args.file} must contain a mapping")
        else:
            patch = _parse_json_arg(args.json, "--json")
    except (OSError, ValueError, yaml.YAMLError) as e:
        return error_result("invalid_patch", str(e))

    if not patch:
        return error_result("empty_patch", "Provide --json or --file with the sections to change")

    try:
        prefs = run_with_engine(lambda engine: engine.update_preferences(args.user, patch))
    except NotificationError as e:
        return error_result("invalid_preferences", str(e))

    return {"query_timestamp": query_ts, "status": "ok", "preferences": prefs.to_dict()}


# =============================================================================
# Parser Registration
# =============================================================================


def register_parsers(subparsers: argparse._SubParsersAction) -> None:
    """Register notification command parsers."""

    # trigger
    trigger_parser = subparsers.add_parser(
        "trigger",
        help="Offer an event to the rule engine",
    )
    trigger_parser.add_argument("--user", required=True, help="Owning user id")
    trigger_parser.add_argument("--type", required=True, help="Notification type")
    trigger_parser.add_argument("--title", required=True, help="Event title")
    trigger_parser.add_argument("--message", required=True, help="Event message")
    trigger_parser.add_argument(
        "--source",
        default="user_action",
        help="Event source (default: user_action)",
    )
    trigger_parser.add_argument("--data", help="Event payload as a JSON object")
    trigger_parser.set_defaults(func=cmd_trigger)

    # list
    list_parser = subparsers.add_parser("list", help="List a user's notifications")
    list_parser.add_argument("--user", required=True, help="User id")
    list_parser.add_argument("--category", help="Filter by category")
    list_parser.add_argument("--priority", help="Filter by priority")
    list_parser.add_argument("--unread", action="store_true", help="Only unread notifications")
    list_parser.add_argument(
        "--include-dismissed",
        action="store_true",
        help="Include dismissed notifications",
    )
    list_parser.add_argument("--limit", type=int, default=20, help="Max results (default: 20)")
    list_parser.add_argument("--offset", type=int, default=0, help="Skip this many results")
    list_parser.set_defaults(func=cmd_list)

    # read
    read_parser = subparsers.add_parser("read", help="Mark notifications read")
    read_parser.add_argument("id", nargs="?", help="Notification id")
    read_parser.add_argument("--user", required=True, help="User id")
    read_parser.add_argument("--all", action="store_true", help="Mark every notification read")
    read_parser.set_defaults(func=cmd_read)

    # dismiss
    dismiss_parser = subparsers.add_parser("dismiss", help="Dismiss a notification")
    dismiss_parser.add_argument("id", help="Notification id")
    dismiss_parser.add_argument("--user", required=True, help="User id")
    dismiss_parser.set_defaults(func=cmd_dismiss)

    # stats
    stats_parser = subparsers.add_parser("stats", help="Show notification statistics")
    stats_parser.add_argument("--user", required=True, help="User id")
    stats_parser.set_defaults(func=cmd_stats)

    # prefs show|set
    prefs_parser = subparsers.add_parser("prefs", help="Show or update preferences")
    prefs_subparsers = prefs_parser.add_subparsers(
        dest="prefs_command",
        help="Preference commands",
    )

    show_parser = prefs_subparsers.add_parser("show", help="Show a user's preferences")
    show_parser.add_argument("--user", required=True, help="User id")
    show_parser.set_defaults(func=cmd_prefs_show)

    set_parser = prefs_subparsers.add_parser("set", help="Apply a partial update")
    set_parser.add_argument("--user", required=True, help="User id")
    source = set_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--json", help='Patch as JSON, e.g. \'{"channels": {"sms": true}}\'')
    source.add_argument("--file", help="YAML or JSON file holding the patch")
    set_parser.set_defaults(func=cmd_prefs_set)

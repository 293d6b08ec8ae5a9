"""
alertflow Rule Commands

List, load, validate, export, enable and disable trigger rules.
"""

import argparse
from pathlib import Path
from typing import Any

from ..core import get_utc_timestamp
from ..services.notifications import NotificationError, RuleLoader, RuleValidationError
from .notifications import error_result, run_with_engine


def cmd_rules_list(args: argparse.Namespace) -> dict[str, Any]:
    """List registered rules, built-in and stored."""
    query_ts = get_utc_timestamp()

    async def action(engine):
        return engine.list_rules()

    rules = run_with_engine(action)
    if args.active:
        rules = [r for r in rules if r.is_active]

    return {
        "query_timestamp": query_ts,
        "status": "ok",
        "count": len(rules),
        "rules": [
            {
                "id": r.id,
                "name": r.name,
                "priority": r.priority.value,
                "channels": [c.value for c in r.channels],
                "conditions": len(r.conditions),
                "cooldown_minutes": r.cooldown_minutes,
                "max_per_day": r.max_per_day,
                "is_active": r.is_active,
            }
            for r in rules
        ],
    }


def cmd_rules_load(args: argparse.Namespace) -> dict[str, Any]:
    """
    Load rules from a YAML file or directory and persist them.

    Args:
        args: Parsed arguments with path

    Returns:
        Result dict with the loaded rule ids
    """
    query_ts = get_utc_timestamp()
    path = Path(args.path)

    try:
        loaded = run_with_engine(lambda engine: engine.load_rules(path))
    except FileNotFoundError as e:
        return error_result("not_found", str(e))
    except RuleValidationError as e:
        return error_result("invalid_rule", str(e), errors=e.errors)
    except ValueError as e:
        return error_result("invalid_yaml", str(e))

    return {
        "query_timestamp": query_ts,
        "status": "ok",
        "loaded": [r.id for r in loaded],
    }


def cmd_rules_validate(args: argparse.Namespace) -> dict[str, Any]:
    """Validate rule files without registering them."""
    query_ts = get_utc_timestamp()
    path = Path(args.path)

    if path.is_dir():
        files = RuleLoader.list_rule_files(path)
    else:
        files = [path]

    results = []
    for rule_file in files:
        errors = RuleLoader.validate_file(rule_file)
        results.append(
            {
                "file": rule_file.name,
                "valid": not errors,
                "errors": errors,
            }
        )

    invalid = sum(1 for r in results if not r["valid"])
    return {
        "query_timestamp": query_ts,
        "status": "ok" if invalid == 0 else "invalid",
        "total": len(results),
        "invalid": invalid,
        "results": results,
    }


def cmd_rules_export(args: argparse.Namespace) -> dict[str, Any]:
    """Write registered rules to a YAML file that `rules load` accepts."""
    query_ts = get_utc_timestamp()
    path = Path(args.path)

    async def action(engine):
        return engine.list_rules()

    rules = run_with_engine(action)
    if args.active:
        rules = [r for r in rules if r.is_active]

    try:
        RuleLoader.save_rules(rules, path)
    except OSError as e:
        return error_result("write_failed", str(e))

    return {
        "query_timestamp": query_ts,
        "status": "ok",
        "path": str(path),
        "exported": [r.id for r in rules],
    }


def _set_rule_active(rule_id: str, active: bool) -> dict[str, Any]:
    query_ts = get_utc_timestamp()

    try:
        rule = run_with_engine(lambda engine: engine.set_rule_active(rule_id, active))
    except NotificationError as e:
        return error_result("not_found", str(e))

    return {
        "query_timestamp": query_ts,
        "status": "ok",
        "id": rule.id,
        "is_active": rule.is_active,
    }


def cmd_rules_enable(args: argparse.Namespace) -> dict[str, Any]:
    return _set_rule_active(args.id, True)


def cmd_rules_disable(args: argparse.Namespace) -> dict[str, Any]:
    return _set_rule_active(args.id, False)


def register_parsers(subparsers: argparse._SubParsersAction) -> None:
    """Register rule command parsers."""
    rules_parser = subparsers.add_parser("rules", help="Manage trigger rules")
    rules_subparsers = rules_parser.add_subparsers(
        dest="rules_command",
        help="Rule commands",
    )

    list_parser = rules_subparsers.add_parser("list", help="List registered rules")
    list_parser.add_argument("--active", action="store_true", help="Only active rules")
    list_parser.set_defaults(func=cmd_rules_list)

    load_parser = rules_subparsers.add_parser("load", help="Load rules from YAML")
    load_parser.add_argument("path", help="Rule file or directory")
    load_parser.set_defaults(func=cmd_rules_load)

    validate_parser = rules_subparsers.add_parser("validate", help="Validate rule files")
    validate_parser.add_argument("path", help="Rule file or directory")
    validate_parser.set_defaults(func=cmd_rules_validate)

    export_parser = rules_subparsers.add_parser("export", help="Write rules to a YAML file")
    export_parser.add_argument("path", help="Destination YAML file")
    export_parser.add_argument("--active", action="store_true", help="Only active rules")
    export_parser.set_defaults(func=cmd_rules_export)

    enable_parser = rules_subparsers.add_parser("enable", help="Activate a rule")
    enable_parser.add_argument("id", help="Rule id")
    enable_parser.set_defaults(func=cmd_rules_enable)

    disable_parser = rules_subparsers.add_parser("disable", help="Deactivate a rule")
    disable_parser.add_argument("id", help="Rule id")
    disable_parser.set_defaults(func=cmd_rules_disable)

#!/usr/bin/env python3
"""
alertflow CLI Entry Point

Provides command-line access to the notification engine.
Run with: python -m alertflow <command> [args]
"""

import argparse
import json
import sys

from .core import get_utc_timestamp


def output_json(data: dict, indent: int = 2) -> None:
    """Print JSON output to stdout."""
    print(json.dumps(data, indent=indent, default=str))


def output_error(message: str, exit_code: int = 1, **kwargs) -> None:
    """Print error JSON and exit."""
    error_data = {
        "error": kwargs.pop("error_type", "error"),
        "message": message,
        "query_timestamp": get_utc_timestamp(),
    }
    error_data.update(kwargs)
    output_json(error_data)
    sys.exit(exit_code)


HELP_TEXT = """
alertflow - smart notification engine

Event Commands:
  trigger --user U --type T --title ... --message ... [--data JSON]
                             Offer an event to the rule engine

Inbox Commands:
  list --user U [opts]       List notifications (newest first)
                             --unread, --category C, --priority P,
                             --include-dismissed, --limit N, --offset N
  read <id> --user U         Mark a notification read (--all for every one)
  dismiss <id> --user U      Dismiss a notification
  stats --user U             Notification statistics

Preference Commands:
  prefs show --user U        Show preferences, quiet hours and quota usage
  prefs set --user U         Apply a partial update (--json or --file)

Rule Commands:
  rules list [--active]      List registered rules
  rules load <path>          Load rules from a YAML file or directory
  rules validate <path>      Validate rule files
  rules export <path>        Write registered rules to a YAML file
  rules enable <id>          Activate a rule
  rules disable <id>         Deactivate a rule

Examples:
  alertflow trigger --user u1 --type churn_risk_alert --title "Churn" \\
      --message "Acme at risk" --source ai_engine --data '{"churnProbability": 85}'
  alertflow list --user u1 --unread
  alertflow prefs set --user u1 --json '{"channels": {"sms": true}}'
  alertflow rules load rules/
"""


def cmd_help(args: argparse.Namespace) -> dict:
    """Show help message."""
    print(HELP_TEXT)
    return {}


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="alertflow",
        description="alertflow - smart notification engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    help_parser = subparsers.add_parser("help", help="Show help message")
    help_parser.set_defaults(func=cmd_help)

    from .commands import notifications, rules

    notifications.register_parsers(subparsers)
    rules.register_parsers(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Default to help if no command
    if not args.command:
        cmd_help(args)
        return 0

    if not hasattr(args, "func"):
        output_error(
            f"Missing subcommand for: {args.command}",
            error_type="unknown_command",
            hint="Run 'alertflow help' for usage",
        )

    try:
        result = args.func(args)

        if isinstance(result, dict) and result:
            output_json(result)

            # Return non-zero exit code if result contains error
            if "error" in result:
                return 1

        return 0

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except Exception as e:
        output_error(str(e), error_type="command_error", command=args.command)
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""
alertflow Commands

Command implementations for the alertflow CLI.
Each module handles a logical group of related commands.
"""

from . import notifications, rules

__all__ = ["notifications", "rules"]

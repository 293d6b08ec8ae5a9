"""
Notification Rule Loader.

Loads rule definitions from YAML files. A file holds either a single rule
mapping or a mapping with a ``rules`` list. Rules without an explicit ``id``
take the file stem (suffixed with the position for multi-rule files).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ...core.logging import get_logger
from .errors import RuleValidationError
from .rules import Rule

logger = get_logger(__name__)


class RuleLoader:
    """Load and save rule definitions as YAML."""

    @classmethod
    def list_rule_files(cls, directory: Path) -> list[Path]:
        """
        List rule files in a directory.

        Returns:
            Sorted list of .yaml/.yml paths (empty if the directory is missing)
        """
        if not directory.is_dir():
            return []
        paths = list(directory.glob("*.yaml")) + list(directory.glob("*.yml"))
        return sorted(paths)

    @classmethod
    def _read(cls, path: Path) -> dict[str, Any]:
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in rule file {path.name}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Rule file {path.name} must be a YAML mapping")
        return data

    @classmethod
    def load_file(cls, path: Path) -> list[Rule]:
        """
        Load every rule defined in one file.

        Args:
            path: YAML file path

        Returns:
            Rules in file order

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the YAML is malformed
            RuleValidationError: If any rule is invalid
        """
        if not path.exists():
            raise FileNotFoundError(f"Rule file not found: {path}")

        data = cls._read(path)

        if "rules" in data:
            entries = data["rules"]
            if not isinstance(entries, list):
                raise ValueError(f"'rules' in {path.name} must be a list")
            rules = []
            for index, entry in enumerate(entries, start=1):
                rule_id = f"{path.stem}-{index}"
                if not isinstance(entry, dict):
                    raise RuleValidationError(
                        [f"rule entry must be a mapping, got {type(entry).__name__}"],
                        rule_name=rule_id,
                    )
                rules.append(Rule.from_dict(entry, rule_id=entry.get("id") or rule_id))
            return rules

        return [Rule.from_dict(data, rule_id=data.get("id") or path.stem)]

    @classmethod
    def load_directory(cls, directory: Path) -> list[Rule]:
        """
        Load rules from every file in a directory.

        Invalid files are logged and skipped so one bad file does not
        block the rest.
        """
        rules: list[Rule] = []
        for path in cls.list_rule_files(directory):
            try:
                rules.extend(cls.load_file(path))
            except (ValueError, RuleValidationError) as e:
                logger.warning("Failed to load rules from '%s': %s", path.name, e)
        return rules

    @classmethod
    def validate_file(cls, path: Path) -> list[str]:
        """
        Validate a rule file without registering anything.

        Returns:
            List of error messages (empty if valid)
        """
        try:
            cls.load_file(path)
        except RuleValidationError as e:
            return [f"{e.rule_name or path.stem}: {err}" for err in e.errors]
        except (FileNotFoundError, ValueError) as e:
            return [str(e)]
        return []

    @classmethod
    def save_rules(cls, rules: list[Rule], path: Path) -> Path:
        """
        Write rules to a YAML file.

        Returns:
            Path to saved file
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {"rules": [_to_yaml(rule) for rule in rules]}

        with open(path, "w") as f:
            yaml.dump(
                data,
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

        logger.info("Saved %d rule(s) to %s", len(rules), path)
        return path


def _to_yaml(rule: Rule) -> dict[str, Any]:
    data = rule.to_dict()
    # Timestamps are runtime state, not authored content
    data.pop("created_at", None)
    data.pop("updated_at", None)
    if data.get("user_id") is None:
        data.pop("user_id", None)
    return data

"""
Rule Repository

Loads curated game-knowledge rules from JSON files and renders them as prompt
text. Rule files live under `<rules_dir>/<game name>/` (any depth); each is a
JSON array of {RuleId, RuleText, Category, Children[]} trees.
"""

import json
import logging
from itertools import groupby
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from .errors import ConfigurationError, MissingRuleFileError, ValidationError
from .models import GameRule

logger = logging.getLogger(__name__)

RULES_HEADER = "=== GAME KNOWLEDGE RULES ==="

_RULE_LIST = TypeAdapter(List[GameRule])


class RuleRepository:
    """Reads rule forests from a rules directory and formats them."""

    def __init__(self, rules_dir: str):
        self.rules_dir = Path(rules_dir)

    def rules_path(self, domain_name: str) -> Path:
        """Per-game directory, or the rules root when it does not exist."""
        game_dir = self.rules_dir / domain_name.strip()
        return game_dir if game_dir.is_dir() else self.rules_dir

    def find_rule_file(self, domain_name: str, rule_file: str) -> Path:
        """
        Locate `{rule_file}.json` recursively.

        Raises:
            MissingRuleFileError: If no file matches
        """
        search_root = self.rules_path(domain_name)
        pattern = f"{rule_file}.json"
        matches = sorted(search_root.rglob(pattern)) if search_root.is_dir() else []

        if not matches:
            logger.error(f"Rules file not found: {pattern} in {search_root}")
            raise MissingRuleFileError(rule_file, str(search_root))

        if len(matches) > 1:
            logger.warning(f"Multiple files found for {pattern}: {', '.join(map(str, matches))}. Using first match.")

        return matches[0]

    def load(self, domain_name: str, rule_file_names: Optional[List[str]]) -> List[GameRule]:
        """
        Load the rules from each named file, in the order given.

        Returns:
            The concatenated rule forest; empty when no files are requested

        Raises:
            MissingRuleFileError: If a named file cannot be found
            ConfigurationError: If a file is not a valid rule array
        """
        if not rule_file_names:
            logger.info("No rule files specified, returning empty list")
            return []

        logger.info(f"Loading game rules from {len(rule_file_names)} file(s): {', '.join(rule_file_names)}")

        all_rules: List[GameRule] = []
        for rule_file in rule_file_names:
            rules_file_path = self.find_rule_file(domain_name, rule_file)
            try:
                with open(rules_file_path, 'r', encoding='utf-8') as f:
                    raw = json.load(f)
                rules = _RULE_LIST.validate_python(raw)
            except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
                logger.error(f"Failed to load game rules from: {rules_file_path}")
                raise ConfigurationError(f"Failed to load game rules from {rules_file_path}: {e}") from e

            logger.info(f"Loaded {len(rules)} game rules from {rules_file_path}")
            all_rules.extend(rules)

        logger.info(f"Total rules loaded: {len(all_rules)}")
        return all_rules

    def format(self, rules: List[GameRule], domain_name: str) -> str:
        """
        Render rules grouped by category (alphabetical), each rule tree as an
        indented bullet list in load order. Empty input renders as "".
        """
        if not rules:
            return ""

        lines = [
            "",
            RULES_HEADER,
            f"These rules provide specific guidance for {domain_name}. Apply them when relevant to the user's query.",
            "",
        ]

        # sorted() is stable, so load order is kept inside each category
        by_category = sorted(rules, key=lambda rule: rule.category)
        for category, group in groupby(by_category, key=lambda rule: rule.category):
            lines.append(f"## {category}")
            for rule in group:
                _format_rule(lines, rule, 0)
            lines.append("")

        return "\n".join(lines) + "\n"

    def save(self, domain_name: str, rule_type: str, name: str, rules: List[GameRule]) -> Path:
        """Write rules to `<rules_dir>/<game>/<rule_type>/<name>.json`."""
        for label, value in (("Game name", domain_name), ("Type", rule_type), ("Name", name)):
            if not value or not value.strip():
                raise ValidationError(f"{label} cannot be null or empty")
        if not rules:
            raise ValidationError("Rules list cannot be null or empty")

        type_dir = self.rules_dir / domain_name.strip() / rule_type
        type_dir.mkdir(parents=True, exist_ok=True)
        file_path = type_dir / f"{name}.json"

        logger.info(f"Saving {len(rules)} rules to {file_path}")
        payload = _RULE_LIST.dump_python(rules, by_alias=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        return file_path


def _format_rule(lines: List[str], rule: GameRule, level: int):
    lines.append(f"{'  ' * level}- {rule.rule_text}")
    for child in rule.children:
        _format_rule(lines, child, level + 1)

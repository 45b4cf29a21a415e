# src/logicalimager/rules/parser.py

"""
Parser and validator for logical-imager rule configuration documents.

The document format is a closed schema:

    {
      "finalize-image-writer": false,
      "rule-sets": [
        {"set-name": "...", "rules": [{"name": "...", "extensions": ["jpg"]}]}
      ]
    }

Any key the parser does not recognize, at any nesting level, is rejected.
"""

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from logicalimager.core.errors import ConfigError
from logicalimager.rules.model import Configuration, DateRange, Rule, RuleSet, SizeRange

logger = logging.getLogger(__name__)

TOP_LEVEL_KEYS = frozenset({"finalize-image-writer", "rule-sets"})
RULE_SET_KEYS = frozenset({"set-name", "rules"})

MISSING_RULE_SET = "Missing rule-set"
FULL_PATHS_EXCLUSIVE = "A rule with full-paths cannot have other rule definitions"


def _unsupported(key: str) -> ConfigError:
    return ConfigError(f"Unsupported key: {key}")


def _as_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"Value of {key} must be a boolean")
    return value


def _as_str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"Value of {key} must be a string")
    return value


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Value of {key} must be an integer")
    return value


def _as_str_list(key: str, value: Any) -> List[str]:
    if not isinstance(value, list):
        raise ConfigError(f"Value of {key} must be an array")
    return [_as_str(key, v) for v in value]


def _as_object(key: str, value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"Value of {key} must be an object")
    return value


@dataclass
class _RuleBuilder:
    """Values collected for one rule while walking its keys."""

    should_alert: bool = True
    should_save: bool = False
    name: Optional[str] = None
    description: Optional[str] = None
    extensions: Optional[List[str]] = None
    folder_names: Optional[List[str]] = None
    file_names: Optional[List[str]] = None
    full_paths: Optional[List[str]] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    min_date: Optional[int] = None
    max_date: Optional[int] = None
    min_days: Optional[int] = None

    def apply(self, key: str, value: Any) -> None:
        if key == "shouldAlert":
            self.should_alert = _as_bool(key, value)
        elif key == "shouldSave":
            self.should_save = _as_bool(key, value)
        elif key == "name":
            self.name = _as_str(key, value)
        elif key == "description":
            self.description = _as_str(key, value)
        elif key == "extensions":
            self.extensions = _as_str_list(key, value)
        elif key == "folder-names":
            self.folder_names = _as_str_list(key, value)
        elif key == "file-names":
            self.file_names = _as_str_list(key, value)
        elif key == "full-paths":
            self.full_paths = _as_str_list(key, value)
        elif key == "size-range":
            for size_key, size_value in _as_object(key, value).items():
                if size_key == "min":
                    self.min_size = _as_int(size_key, size_value)
                elif size_key == "max":
                    self.max_size = _as_int(size_key, size_value)
                else:
                    raise _unsupported(size_key)
        elif key == "date-range":
            for date_key, date_value in _as_object(key, value).items():
                if date_key == "min":
                    self.min_date = _as_int(date_key, date_value)
                elif date_key == "max":
                    self.max_date = _as_int(date_key, date_value)
                elif date_key == "min-days":
                    self.min_days = _as_int(date_key, date_value)
                else:
                    raise _unsupported(date_key)
        else:
            raise _unsupported(key)

    def check_full_paths(self) -> None:
        if self.full_paths and (self.extensions or self.folder_names or self.file_names):
            raise ConfigError(FULL_PATHS_EXCLUSIVE)

    def build(self) -> Rule:
        if self.name is None:
            raise ConfigError("Rule is missing a name")

        size_range = None
        if self.min_size is not None or self.max_size is not None:
            size_range = SizeRange(min=self.min_size, max=self.max_size)
        date_range = None
        if self.min_date is not None or self.max_date is not None or self.min_days is not None:
            date_range = DateRange(min=self.min_date, max=self.max_date, min_days=self.min_days)

        def _frozen(values: Optional[List[str]]):
            return frozenset(values) if values is not None else None

        try:
            return Rule(
                name=self.name,
                description=self.description,
                should_alert=self.should_alert,
                should_save=self.should_save,
                extensions=_frozen(self.extensions),
                folder_names=_frozen(self.folder_names),
                file_names=_frozen(self.file_names),
                full_paths=_frozen(self.full_paths),
                size_range=size_range,
                date_range=date_range,
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid rule {self.name}: {e}") from e


def _parse_rules(rules_value: Any, carry_over_defaults: bool) -> List[Rule]:
    """
    Parse the rules array of a single rule set.

    With carry_over_defaults each rule starts from the values collected for
    the previous rule in the same array, which is how existing configuration
    files have always been interpreted.
    """
    if not isinstance(rules_value, list):
        raise ConfigError("Value of rules must be an array")

    rules: List[Rule] = []
    snapshot = _RuleBuilder()
    for element in rules_value:
        entries = _as_object("rules", element)
        builder = replace(snapshot) if carry_over_defaults else _RuleBuilder()
        for key, value in entries.items():
            builder.apply(key, value)
        builder.check_full_paths()
        rules.append(builder.build())
        snapshot = builder
    return rules


def parse_configuration(
    document: Mapping[str, Any], carry_over_defaults: bool = True
) -> Configuration:
    """
    Parse a rule configuration document into a Configuration.

    Args:
        document: Decoded JSON document
        carry_over_defaults: Seed each rule from the previous rule in its set

    Returns:
        Immutable Configuration.

    Raises:
        ConfigError: On any schema violation.
    """
    if not isinstance(document, Mapping):
        raise ConfigError("Configuration document must be an object")

    for key in document:
        if key not in TOP_LEVEL_KEYS:
            raise _unsupported(key)

    finalize_image_writer = False
    if document.get("finalize-image-writer") is not None:
        finalize_image_writer = _as_bool(
            "finalize-image-writer", document["finalize-image-writer"]
        )

    rule_sets_value = document.get("rule-sets")
    if not isinstance(rule_sets_value, list):
        raise ConfigError(MISSING_RULE_SET)

    rule_sets: List[RuleSet] = []
    for element in rule_sets_value:
        entries = _as_object("rule-sets", element)
        for key in entries:
            if key not in RULE_SET_KEYS:
                raise _unsupported(key)
        if "set-name" not in entries:
            raise ConfigError("Rule set is missing set-name")
        if "rules" not in entries:
            raise ConfigError(f"Rule set {entries['set-name']} is missing rules")
        set_name = _as_str("set-name", entries["set-name"])
        rules = _parse_rules(entries["rules"], carry_over_defaults)
        rule_sets.append(RuleSet(name=set_name, rules=tuple(rules)))
        logger.debug(f"Parsed rule set {set_name} with {len(rules)} rules")

    return Configuration(
        finalize_image_writer=finalize_image_writer, rule_sets=tuple(rule_sets)
    )


def parse_configuration_json(text: str, carry_over_defaults: bool = True) -> Configuration:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON: {e}") from e
    return parse_configuration(document, carry_over_defaults=carry_over_defaults)


def load_rule_configuration(
    path: Union[str, Path], carry_over_defaults: bool = True
) -> Configuration:
    """Load and parse a rule configuration file (UTF-8 JSON)."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read rule configuration {path}: {e}") from e
    config = parse_configuration_json(text, carry_over_defaults=carry_over_defaults)
    logger.info(f"Loaded {len(config.rule_sets)} rule sets from {path}")
    return config


def dump_configuration(config: Configuration) -> str:
    return json.dumps(config.to_document(), indent=2)

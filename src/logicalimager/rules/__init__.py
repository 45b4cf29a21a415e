# src/logicalimager/rules/__init__.py

"""
Rule configuration for logicalimager.
Rule model, closed-schema parser and the criteria matcher.
"""

from .matcher import matches, scan_directory
from .model import Configuration, DateRange, Rule, RuleSet, SizeRange
from .parser import (
    dump_configuration,
    load_rule_configuration,
    parse_configuration,
    parse_configuration_json,
)

__all__ = [
    "matches",
    "scan_directory",
    "Configuration",
    "DateRange",
    "Rule",
    "RuleSet",
    "SizeRange",
    "dump_configuration",
    "load_rule_configuration",
    "parse_configuration",
    "parse_configuration_json",
]

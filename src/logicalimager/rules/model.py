# src/logicalimager/rules/model.py
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SizeRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: Optional[int] = Field(None, ge=0, description="Minimum size in bytes")
    max: Optional[int] = Field(None, ge=0, description="Maximum size in bytes")

    def contains(self, size: int) -> bool:
        if self.min is not None and size < self.min:
            return False
        if self.max is not None and size > self.max:
            return False
        return True


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: Optional[int] = Field(None, description="Earliest date in epoch days")
    max: Optional[int] = Field(None, description="Latest date in epoch days")
    min_days: Optional[int] = Field(None, description="Minimum age in days")

    @property
    def has_bounds(self) -> bool:
        return self.min is not None or self.max is not None


class Rule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Rule name, reported as the artifact category")
    description: Optional[str] = None
    should_alert: bool = True
    should_save: bool = False
    extensions: Optional[FrozenSet[str]] = None
    folder_names: Optional[FrozenSet[str]] = None
    file_names: Optional[FrozenSet[str]] = None
    full_paths: Optional[FrozenSet[str]] = None
    size_range: Optional[SizeRange] = None
    date_range: Optional[DateRange] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("rule name must not be empty")
        return v

    def to_document(self) -> Dict[str, Any]:
        """Serialize back to the rule shape of the configuration document."""
        doc: Dict[str, Any] = {
            "shouldAlert": self.should_alert,
            "shouldSave": self.should_save,
            "name": self.name,
        }
        if self.description is not None:
            doc["description"] = self.description
        for key, values in (
            ("extensions", self.extensions),
            ("folder-names", self.folder_names),
            ("file-names", self.file_names),
            ("full-paths", self.full_paths),
        ):
            if values is not None:
                doc[key] = sorted(values)
        if self.size_range is not None:
            doc["size-range"] = {
                k: v
                for k, v in (("min", self.size_range.min), ("max", self.size_range.max))
                if v is not None
            }
        if self.date_range is not None:
            doc["date-range"] = {
                k: v
                for k, v in (
                    ("min", self.date_range.min),
                    ("max", self.date_range.max),
                    ("min-days", self.date_range.min_days),
                )
                if v is not None
            }
        return doc


class RuleSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    rules: Tuple[Rule, ...] = ()

    def find(self, name: str) -> Optional[Rule]:
        """Find a rule with the given name. Returns None if not found."""
        for rule in self.rules:
            if rule.name == name:
                return rule
        return None

    def to_document(self) -> Dict[str, Any]:
        return {"set-name": self.name, "rules": [r.to_document() for r in self.rules]}


class Configuration(BaseModel):
    model_config = ConfigDict(frozen=True)

    finalize_image_writer: bool = False
    rule_sets: Tuple[RuleSet, ...] = ()

    def find_rule_set(self, name: str) -> Optional[RuleSet]:
        for rule_set in self.rule_sets:
            if rule_set.name == name:
                return rule_set
        return None

    def find_rule(self, set_name: str, rule_name: str) -> Optional[Rule]:
        rule_set = self.find_rule_set(set_name)
        return rule_set.find(rule_name) if rule_set else None

    @property
    def rule_set_names(self) -> List[str]:
        return [rs.name for rs in self.rule_sets]

    def to_document(self) -> Dict[str, Any]:
        return {
            "finalize-image-writer": self.finalize_image_writer,
            "rule-sets": [rs.to_document() for rs in self.rule_sets],
        }

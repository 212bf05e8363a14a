"""Rule data models — immutable dataclasses shared by loaders and the rule engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from policyscan.scanner.models import Severity


class DetectionType(enum.Enum):
    """How a rule's pattern is interpreted."""

    REGEX = "regex"
    SDK_CHECK = "sdk-check"


@dataclass(frozen=True)
class ViolationRule:
    """A single regex or substring check, independent of the signature registry."""

    code: str
    name: str
    platform: str
    severity: Severity
    pattern: str
    detection_type: DetectionType = DetectionType.REGEX
    file_types: tuple[str, ...] = ()
    description: str = ""
    category: str = ""
    recommendation: str = ""
    fix_example: str = ""
    doc_urls: tuple[str, ...] = ()
    enabled: bool = True


@dataclass(frozen=True)
class RuleFilter:
    """Selects a subset of rules from a rule source."""

    platform: str | None = None
    min_severity: Severity | None = None
    category: str | None = None
    enabled: bool | None = True

    def accepts(self, rule: ViolationRule) -> bool:
        if self.platform and self.platform != "all":
            if rule.platform not in (self.platform, "all"):
                return False
        if self.min_severity and rule.severity.rank < self.min_severity.rank:
            return False
        if self.category and rule.category.lower() != self.category.lower():
            return False
        if self.enabled is not None and rule.enabled != self.enabled:
            return False
        return True


@dataclass(frozen=True)
class RuleSet:
    """A named collection of rules as loaded from one YAML document."""

    name: str
    rules: tuple[ViolationRule, ...] = ()
    description: str = ""
    inherit: tuple[str, ...] = field(default_factory=tuple)

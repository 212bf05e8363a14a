"""Load and resolve violation rules from YAML files and bundled presets."""

from __future__ import annotations

import importlib.resources
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

import yaml

from policyscan.errors import RuleLoadError
from policyscan.rules.models import DetectionType, RuleFilter, RuleSet, ViolationRule
from policyscan.scanner.models import Severity

logger = logging.getLogger(__name__)

_PRESET_PREFIX = "preset:"
DEFAULT_PRESET = "meta"

_CODE_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")


class RuleSource(Protocol):
    """Anything that can hand the scanner a list of rules."""

    def load_rules(self, rule_filter: RuleFilter | None = None) -> list[ViolationRule]:
        ...


class BundledRuleSource:
    """Rules shipped inside the package (``rules/presets/<name>.yaml``)."""

    def __init__(self, preset: str = DEFAULT_PRESET) -> None:
        self.preset = preset

    def load_rules(self, rule_filter: RuleFilter | None = None) -> list[ViolationRule]:
        ruleset = _load_preset(self.preset, set())
        return filter_rules(ruleset.rules, rule_filter)


class FileRuleSource:
    """Bundled rules plus rules from user YAML files (user rules win on code clash)."""

    def __init__(
        self,
        paths: Iterable[str | Path],
        include_bundled: bool = True,
    ) -> None:
        self.paths = [Path(p) for p in paths]
        self.include_bundled = include_bundled

    def load_rules(self, rule_filter: RuleFilter | None = None) -> list[ViolationRule]:
        rules: list[ViolationRule] = []
        for path in self.paths:
            if path.is_dir():
                for child in sorted(path.glob("*.yaml")) + sorted(path.glob("*.yml")):
                    rules.extend(load_ruleset(child).rules)
            else:
                rules.extend(load_ruleset(path).rules)
        if self.include_bundled:
            rules.extend(_load_preset(DEFAULT_PRESET, set()).rules)
        return filter_rules(_unique(rules), rule_filter)


def load_ruleset(path: str | Path, _resolved: set[str] | None = None) -> RuleSet:
    """Load a rule set from a YAML file path."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise RuleLoadError(f"Cannot read rule file {path}: {e}") from e
    data = _safe_load(text)
    return _build_ruleset(data, _resolved=_resolved if _resolved is not None else set())


def load_ruleset_from_string(text: str) -> RuleSet:
    """Parse a YAML string into a RuleSet, resolving inheritance."""
    return _build_ruleset(_safe_load(text), _resolved=set())


def filter_rules(
    rules: Iterable[ViolationRule], rule_filter: RuleFilter | None
) -> list[ViolationRule]:
    if rule_filter is None:
        return list(rules)
    return [r for r in rules if rule_filter.accepts(r)]


def rule_stats(rules: Iterable[ViolationRule]) -> dict:
    """Count rules in total, by platform and by severity."""
    by_platform: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    total = 0
    for rule in rules:
        total += 1
        by_platform[rule.platform] = by_platform.get(rule.platform, 0) + 1
        by_severity[rule.severity.value] = by_severity.get(rule.severity.value, 0) + 1
    return {"total": total, "by_platform": by_platform, "by_severity": by_severity}


def export_rules(rules: Iterable[ViolationRule], name: str = "exported-rules") -> str:
    """Serialize rules to YAML that ``load_ruleset`` reads back unchanged."""
    data: dict = {"name": name, "rules": []}

    for rule in rules:
        detection: dict = {
            "type": rule.detection_type.value,
            "pattern": rule.pattern,
        }
        if rule.file_types:
            detection["file_types"] = list(rule.file_types)

        entry: dict = {
            "code": rule.code,
            "name": rule.name,
            "platform": rule.platform,
            "severity": rule.severity.value,
        }
        if rule.category:
            entry["category"] = rule.category
        if rule.description:
            entry["description"] = rule.description
        entry["detection"] = detection
        if rule.recommendation:
            entry["recommendation"] = rule.recommendation
        if rule.fix_example:
            entry["fix_example"] = rule.fix_example
        if rule.doc_urls:
            entry["doc_urls"] = list(rule.doc_urls)
        if not rule.enabled:
            entry["enabled"] = False
        data["rules"].append(entry)

    text: str = yaml.dump(data, default_flow_style=False, sort_keys=False)
    return text


def _safe_load(text: str) -> dict:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise RuleLoadError(f"Invalid rule YAML: {e}") from e
    if not isinstance(data, dict):
        raise RuleLoadError("Rule YAML must be a mapping")
    return data


def _build_ruleset(data: dict, _resolved: set[str]) -> RuleSet:
    name = data.get("name", "unnamed")

    # Only names on the current inheritance chain form a cycle
    if name in _resolved:
        raise RuleLoadError(f"Circular rule inheritance detected: {name}")
    chain = _resolved | {name}

    own_rules = _parse_rules(data.get("rules", []) or [])

    inherited_rules: list[ViolationRule] = []
    inherit_list = data.get("inherit", []) or []
    if isinstance(inherit_list, str):
        inherit_list = [inherit_list]

    for ref in inherit_list:
        parent = _load_ref(ref, chain)
        inherited_rules.extend(parent.rules)

    # Own rules first so they shadow inherited rules with the same code
    return RuleSet(
        name=name,
        rules=tuple(_unique(own_rules + inherited_rules)),
        description=data.get("description", ""),
        inherit=tuple(inherit_list),
    )


def _parse_rules(rules_data: list) -> list[ViolationRule]:
    rules: list[ViolationRule] = []
    for r in rules_data:
        if not isinstance(r, dict):
            continue
        rules.append(_parse_rule(r))
    return rules


def _parse_rule(r: dict) -> ViolationRule:
    code = r.get("code", "")
    if not _CODE_RE.match(code):
        raise RuleLoadError(f"Rule code must be UPPER_SNAKE_CASE: {code!r}")

    detection = r.get("detection", {}) or {}
    kind = detection.get("type", "regex")
    pattern = detection.get("pattern", "") or ""
    if kind in ("package", "sdk"):
        # Package lists become a substring check
        kind = DetectionType.SDK_CHECK.value
        pattern = pattern or "|".join(detection.get("packages", []) or [])

    file_types = detection.get("file_types", ()) or ()
    if isinstance(file_types, str):
        file_types = (file_types,)

    doc_urls = r.get("doc_urls", ()) or ()
    if isinstance(doc_urls, str):
        doc_urls = (doc_urls,)
    if r.get("doc_url"):
        doc_urls = (r["doc_url"], *doc_urls)

    try:
        return ViolationRule(
            code=code,
            name=r.get("name", code),
            platform=r.get("platform", "all"),
            severity=Severity(r.get("severity", "warning")),
            pattern=pattern,
            detection_type=DetectionType(kind),
            file_types=tuple(file_types),
            description=r.get("description", ""),
            category=r.get("category", ""),
            recommendation=r.get("recommendation", ""),
            fix_example=r.get("fix_example", ""),
            doc_urls=tuple(doc_urls),
            enabled=bool(r.get("enabled", True)),
        )
    except ValueError as e:
        raise RuleLoadError(f"Invalid rule {code}: {e}") from e


def _unique(rules: list[ViolationRule]) -> list[ViolationRule]:
    seen: set[str] = set()
    unique: list[ViolationRule] = []
    for rule in rules:
        if rule.code in seen:
            logger.debug("Dropping duplicate rule %s", rule.code)
            continue
        seen.add(rule.code)
        unique.append(rule)
    return unique


def _load_ref(ref: str, _resolved: set[str]) -> RuleSet:
    if ref.startswith(_PRESET_PREFIX):
        preset_name = ref[len(_PRESET_PREFIX) :]
        return _load_preset(preset_name, _resolved)
    # Treat as file path
    return load_ruleset(ref, _resolved=_resolved)


def _load_preset(name: str, _resolved: set[str]) -> RuleSet:
    filename = f"{name}.yaml"
    pkg = importlib.resources.files("policyscan.rules.presets")
    resource = pkg.joinpath(filename)
    try:
        text = resource.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise RuleLoadError(f"Unknown rule preset: {name}") from e
    return _build_ruleset(_safe_load(text), _resolved)

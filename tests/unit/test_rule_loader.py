"""Tests for rule YAML loading, inheritance and filtering."""

from __future__ import annotations

from pathlib import Path

import pytest

from policyscan.errors import RuleLoadError
from policyscan.rules.loader import (
    BundledRuleSource,
    FileRuleSource,
    load_ruleset,
    export_rules,
    load_ruleset_from_string,
    rule_stats,
)
from policyscan.rules.models import DetectionType, RuleFilter
from policyscan.scanner.models import Severity


def test_bundled_rules_load():
    rules = BundledRuleSource().load_rules()
    codes = [r.code for r in rules]
    assert len(rules) == 13
    assert codes[0] == "TOKEN_EXPOSED"
    assert "WHATSAPP_UNOFFICIAL_API" in codes
    assert len(set(codes)) == len(codes)


def test_package_detection_becomes_sdk_check():
    rules = {r.code: r for r in BundledRuleSource().load_rules()}
    ig = rules["UNOFFICIAL_IG_LIBRARY"]
    assert ig.detection_type is DetectionType.SDK_CHECK
    assert "instagram-private-api" in ig.pattern.split("|")


def test_bundled_doc_url_collected():
    rules = {r.code: r for r in BundledRuleSource().load_rules()}
    assert rules["TOKEN_EXPOSED"].doc_urls
    assert rules["OUTDATED_SDK"].file_types == (".json",)


def test_load_custom_rules(custom_rules_path: Path):
    ruleset = load_ruleset(custom_rules_path)
    assert ruleset.name == "custom-test"
    assert [r.code for r in ruleset.rules] == ["INTERNAL_GRAPH_HOST", "TOKEN_EXPOSED"]
    graph = ruleset.rules[0]
    assert graph.severity is Severity.WARNING
    assert graph.file_types == ("js", ".ts")
    assert graph.category == "Architecture"


def test_load_with_inheritance(inherit_rules_path: Path):
    ruleset = load_ruleset(inherit_rules_path)
    # Own rules come first, then inherited bundled rules
    assert ruleset.rules[0].code == "NO_SCRAPING"
    assert ruleset.rules[0].pattern == "puppeteer|selenium"
    assert "TOKEN_EXPOSED" in [r.code for r in ruleset.rules]
    assert ruleset.inherit == ("preset:meta",)


def test_own_rule_shadows_inherited():
    ruleset = load_ruleset_from_string(
        """
name: shadow
inherit: preset:meta
rules:
  - code: TOKEN_EXPOSED
    name: Stricter token check
    severity: info
    detection:
      pattern: 'EAA'
"""
    )
    tokens = [r for r in ruleset.rules if r.code == "TOKEN_EXPOSED"]
    assert len(tokens) == 1
    assert tokens[0].name == "Stricter token check"
    assert tokens[0].severity is Severity.INFO


def test_file_source_puts_user_rules_first(custom_rules_path: Path):
    rules = FileRuleSource([custom_rules_path]).load_rules()
    codes = [r.code for r in rules]
    assert codes[:2] == ["INTERNAL_GRAPH_HOST", "TOKEN_EXPOSED"]
    assert codes.count("TOKEN_EXPOSED") == 1
    token = next(r for r in rules if r.code == "TOKEN_EXPOSED")
    assert token.name == "Token Override"


def test_file_source_reads_directory(tmp_path: Path, custom_rules_path: Path):
    (tmp_path / "team.yaml").write_text(custom_rules_path.read_text())
    (tmp_path / "ignored.txt").write_text("not yaml")
    rules = FileRuleSource([tmp_path], include_bundled=False).load_rules()
    assert [r.code for r in rules] == ["INTERNAL_GRAPH_HOST", "TOKEN_EXPOSED"]


def test_filter_by_platform_keeps_all_platform_rules():
    rules = BundledRuleSource().load_rules(RuleFilter(platform="whatsapp"))
    platforms = {r.platform for r in rules}
    assert platforms == {"whatsapp", "all"}


def test_filter_by_min_severity():
    rules = BundledRuleSource().load_rules(RuleFilter(min_severity=Severity.WARNING))
    assert rules
    assert all(r.severity in (Severity.ERROR, Severity.WARNING) for r in rules)


def test_filter_by_category():
    rules = BundledRuleSource().load_rules(RuleFilter(category="deprecation"))
    assert {r.code for r in rules} == {"DEPRECATED_API_V1_V9", "DEPRECATED_API_V10_V15"}


def test_disabled_rules_filtered():
    ruleset = load_ruleset_from_string(
        """
name: toggles
rules:
  - code: OFF_RULE
    enabled: false
    detection: {pattern: x}
  - code: ON_RULE
    detection: {pattern: y}
"""
    )
    source_rules = [r for r in ruleset.rules if RuleFilter().accepts(r)]
    assert [r.code for r in source_rules] == ["ON_RULE"]
    assert ruleset.rules[1].severity is Severity.WARNING


def test_rule_stats():
    stats = rule_stats(BundledRuleSource().load_rules())
    assert stats["total"] == 13
    assert stats["by_platform"]["all"] == 8
    assert stats["by_severity"]["error"] == 6


def test_export_keeps_every_field():
    bundled = BundledRuleSource().load_rules(RuleFilter(enabled=None))
    off = load_ruleset_from_string(
        "name: t\nrules:\n  - code: OFF_RULE\n    enabled: false\n    detection: {pattern: x}\n"
    ).rules

    reloaded = load_ruleset_from_string(export_rules([*bundled, *off], name="copy"))

    assert reloaded.name == "copy"
    assert list(reloaded.rules) == [*bundled, *off]


def test_invalid_code_rejected():
    with pytest.raises(RuleLoadError, match="UPPER_SNAKE_CASE"):
        load_ruleset_from_string("name: bad\nrules:\n  - code: tokenExposed\n")


def test_invalid_severity_rejected():
    with pytest.raises(RuleLoadError):
        load_ruleset_from_string(
            "name: bad\nrules:\n  - code: X\n    severity: critical\n"
        )


def test_non_mapping_rejected():
    with pytest.raises(RuleLoadError, match="mapping"):
        load_ruleset_from_string("- just\n- a list\n")


def test_malformed_yaml_rejected():
    with pytest.raises(RuleLoadError):
        load_ruleset_from_string("name: [unclosed")


def test_unknown_preset():
    with pytest.raises(RuleLoadError, match="Unknown rule preset"):
        load_ruleset_from_string("name: x\ninherit: [preset:nope]\n")


def test_circular_inheritance(tmp_path: Path):
    a = tmp_path / "a.yaml"
    b = tmp_path / "b.yaml"
    a.write_text(f"name: a\ninherit: ['{b}']\n")
    b.write_text(f"name: b\ninherit: ['{a}']\n")
    with pytest.raises(RuleLoadError, match="Circular"):
        load_ruleset(a)


def test_shared_parent_is_not_circular(tmp_path: Path):
    a = tmp_path / "a.yaml"
    b = tmp_path / "b.yaml"
    b.write_text(
        "name: b\ninherit: preset:meta\nrules:\n  - code: B_RULE\n    detection: {pattern: b}\n"
    )
    a.write_text(f"name: a\ninherit: ['preset:meta', '{b}']\n")

    ruleset = load_ruleset(a)

    codes = [r.code for r in ruleset.rules]
    assert "B_RULE" in codes
    assert codes.count("TOKEN_EXPOSED") == 1


def test_missing_file():
    with pytest.raises(RuleLoadError, match="Cannot read"):
        load_ruleset("/nonexistent/rules.yaml")

"""Rule engine — hot path, evaluates compiled violation rules line by line."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath

from policyscan.rules.models import DetectionType, ViolationRule
from policyscan.scanner.models import Violation

logger = logging.getLogger(__name__)

# Applied to rules that do not declare file_types
DEFAULT_RULE_EXTENSIONS = frozenset(
    {
        ".js",
        ".jsx",
        ".ts",
        ".tsx",
        ".mjs",
        ".cjs",
        ".py",
        ".php",
        ".java",
        ".go",
        ".rb",
        ".json",
        ".yaml",
        ".yml",
        ".html",
        ".vue",
        ".svelte",
        ".sql",
        ".prisma",
        ".graphql",
        ".gql",
    }
)

_SNIPPET_LEN = 200


@dataclass
class _CompiledRule:
    """A rule with its pattern prepared for fast evaluation."""

    rule: ViolationRule
    extensions: frozenset[str]
    regex: re.Pattern[str] | None = None
    substrings: tuple[str, ...] = ()
    valid: bool = True


class RuleEngine:
    """Evaluates file content against a set of violation rules.

    Patterns are compiled once per rule. A rule with an invalid regex is
    skipped (and logged once); it never prevents other rules from running.
    """

    def __init__(self, rules: Iterable[ViolationRule] = ()) -> None:
        self._compiled: dict[str, _CompiledRule] = {}
        self.rules: list[ViolationRule] = []
        for rule in rules:
            if not rule.enabled:
                continue
            self.rules.append(rule)
            self._compiled[rule.code] = _compile_rule(rule)

    def evaluate_all(self, content: str, file_path: str) -> list[Violation]:
        """Run every rule against one file. Violations come out in rule order."""
        lines = content.splitlines()
        violations: list[Violation] = []
        for rule in self.rules:
            violations.extend(self._evaluate_lines(self._get(rule), lines, file_path))
        return violations

    def evaluate(
        self, rule: ViolationRule, content: str, file_path: str
    ) -> list[Violation]:
        """Run a single rule against one file, in ascending line order."""
        return self._evaluate_lines(self._get(rule), content.splitlines(), file_path)

    def _get(self, rule: ViolationRule) -> _CompiledRule:
        cr = self._compiled.get(rule.code)
        if cr is None or cr.rule is not rule:
            cr = _compile_rule(rule)
            self._compiled[rule.code] = cr
        return cr

    def _evaluate_lines(
        self,
        cr: _CompiledRule,
        lines: Sequence[str],
        file_path: str,
    ) -> list[Violation]:
        if not cr.valid or not _applies_to(cr, file_path):
            return []

        violations: list[Violation] = []
        for line_num, line in enumerate(lines, start=1):
            column = _match_column(cr, line)
            if column is None:
                continue
            violations.append(_build_violation(cr.rule, file_path, line_num, column, line))
        return violations


def deduplicate_violations(violations: Iterable[Violation]) -> list[Violation]:
    """Keep the first occurrence of each (rule_code, file, line)."""
    seen: set[tuple[str, str, int]] = set()
    unique: list[Violation] = []
    for v in violations:
        if v.key in seen:
            continue
        seen.add(v.key)
        unique.append(v)
    return unique


def _compile_rule(rule: ViolationRule) -> _CompiledRule:
    extensions = (
        frozenset(_normalize_ext(t) for t in rule.file_types)
        if rule.file_types
        else DEFAULT_RULE_EXTENSIONS
    )
    cr = _CompiledRule(rule=rule, extensions=extensions)

    if not rule.pattern:
        cr.valid = False
        return cr

    if rule.detection_type is DetectionType.SDK_CHECK:
        cr.substrings = tuple(
            s.strip().lower() for s in rule.pattern.split("|") if s.strip()
        )
        cr.valid = bool(cr.substrings)
        return cr

    try:
        cr.regex = re.compile(rule.pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning("Skipping rule %s: invalid pattern (%s)", rule.code, e)
        cr.valid = False
    return cr


def _applies_to(cr: _CompiledRule, file_path: str) -> bool:
    return PurePosixPath(file_path).suffix.lower() in cr.extensions


def _match_column(cr: _CompiledRule, line: str) -> int | None:
    if cr.regex is not None:
        m = cr.regex.search(line)
        return m.start() + 1 if m else None

    # sdk-check: first substring hit wins
    lowered = line.lower()
    for needle in cr.substrings:
        idx = lowered.find(needle)
        if idx >= 0:
            return idx + 1
    return None


def _build_violation(
    rule: ViolationRule,
    file_path: str,
    line_num: int,
    column: int,
    line: str,
) -> Violation:
    return Violation(
        rule_code=rule.code,
        rule_name=rule.name,
        severity=rule.severity,
        platform=rule.platform,
        file=file_path,
        line=line_num,
        column=column,
        message=rule.description or f"Violation of {rule.name}",
        code_snippet=line.strip()[:_SNIPPET_LEN],
        recommendation=rule.recommendation,
        doc_urls=rule.doc_urls,
        fix_example=rule.fix_example,
    )


def _normalize_ext(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"

"""Signature registry — static table of known libraries and endpoints.

Signatures are plain data (``rules/presets/signatures.yaml``) interpreted by a
single generic matcher. The only semantic step is for direct-api hits: a
version token is extracted from the line and a version below the configured
minimum turns the match into a violation.
"""

from __future__ import annotations

import importlib.resources
import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import yaml

from policyscan.errors import RuleLoadError
from policyscan.scanner.models import (
    DetectionSignature,
    RiskLevel,
    Severity,
    SignatureCategory,
    SignatureMatch,
    Violation,
)

logger = logging.getLogger(__name__)

DEFAULT_VERSION_PATTERN = r"/v(\d+\.\d+)\b"
DEFAULT_MIN_API_VERSION = 10.0

# Category evaluation order; also the order matches are reported within a line.
_CATEGORY_ORDER = (
    SignatureCategory.OFFICIAL,
    SignatureCategory.WRAPPER,
    SignatureCategory.UNOFFICIAL,
    SignatureCategory.DIRECT_API,
    SignatureCategory.DEPRECATED,
)


@dataclass
class _CompiledSignature:
    signature: DetectionSignature
    patterns: list[re.Pattern[str]]
    version_regex: re.Pattern[str] | None = None


class SignatureRegistry:
    """Matches file content against a fixed set of detection signatures."""

    def __init__(
        self,
        signatures: Iterable[DetectionSignature],
        min_api_version: float = DEFAULT_MIN_API_VERSION,
        manifest_packages: Iterable[str] = (),
    ) -> None:
        self.min_api_version = min_api_version
        self.manifest_packages = frozenset(manifest_packages)
        self._by_category: dict[SignatureCategory, list[_CompiledSignature]] = {
            c: [] for c in _CATEGORY_ORDER
        }
        for sig in signatures:
            compiled = _compile_signature(sig)
            if compiled is not None:
                self._by_category[sig.category].append(compiled)

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_category.values())

    def detect(self, file_path: str, content: str) -> list[SignatureMatch]:
        """Return every signature match in ``content``, in line order.

        Within one category only the first matching pattern per line is kept;
        different categories on the same line are all reported.
        """
        matches: list[SignatureMatch] = []
        for line_num, line in enumerate(content.splitlines(), start=1):
            for category in _CATEGORY_ORDER:
                match = self._match_category(category, line)
                if match is None:
                    continue
                cs, m = match
                matches.append(self._build_match(cs, m, line, line_num, file_path))
        return matches

    def detect_manifest(self, file_path: str, content: str) -> list[Violation]:
        """Flag unofficial packages declared in a package.json manifest."""
        if not self.manifest_packages:
            return []
        try:
            data = json.loads(content)
        except ValueError:
            logger.debug("Unparseable manifest %s", file_path)
            return []
        if not isinstance(data, dict):
            return []

        declared: list[str] = []
        for section in ("dependencies", "devDependencies"):
            deps = data.get(section)
            if isinstance(deps, dict):
                declared.extend(deps)

        lines = content.splitlines()
        violations: list[Violation] = []
        for pkg in dict.fromkeys(declared):
            if pkg not in self.manifest_packages:
                continue
            line_num, line = _find_declaration(lines, pkg)
            violations.append(
                Violation(
                    rule_code="UNOFFICIAL_LIBRARY",
                    rule_name="Unofficial Library",
                    severity=Severity.ERROR,
                    platform="instagram",
                    file=file_path,
                    line=line_num,
                    column=max(line.find(f'"{pkg}"'), 0) + 1,
                    message=(
                        f'Unofficial library "{pkg}" in {file_path} '
                        "violates Meta Platform Terms."
                    ),
                    code_snippet=line.strip() or f'"{pkg}": "..."',
                    recommendation=(
                        "Use official Instagram Graph API via "
                        "facebook-nodejs-business-sdk"
                    ),
                    doc_urls=("https://developers.facebook.com/docs/instagram-api/",),
                )
            )
        return violations

    def _match_category(
        self, category: SignatureCategory, line: str
    ) -> tuple[_CompiledSignature, re.Match[str]] | None:
        for cs in self._by_category[category]:
            for pattern in cs.patterns:
                m = pattern.search(line)
                if m:
                    return cs, m
        return None

    def _build_match(
        self,
        cs: _CompiledSignature,
        m: re.Match[str],
        line: str,
        line_num: int,
        file_path: str,
    ) -> SignatureMatch:
        sig = cs.signature
        risk = sig.risk_level
        recommendation = sig.recommendation
        platform = sig.platform
        version = None

        if sig.category is SignatureCategory.DIRECT_API:
            platform = _platform_from_line(line, sig.platform)
            version = _extract_version(cs.version_regex, line)
            if version is not None and 0 < version < self.min_api_version:
                risk = RiskLevel.VIOLATION
                recommendation = (
                    f"API version v{_format_version(version)} is deprecated. "
                    "Use v18.0+"
                )

        return SignatureMatch(
            signature_id=sig.id,
            category=sig.category,
            package=sig.package or sig.id,
            platform=platform,
            file=file_path,
            line=line_num,
            column=m.start() + 1,
            code_snippet=line.strip(),
            risk_level=risk,
            recommendation=recommendation,
            version=version,
            rule_code=sig.rule_code,
        )


def to_violations(matches: Iterable[SignatureMatch]) -> list[Violation]:
    """Convert violation-level signature matches into rule violations."""
    violations: list[Violation] = []
    for match in matches:
        if match.risk_level is not RiskLevel.VIOLATION:
            continue
        if match.rule_code:
            code, name = match.rule_code, match.package
        elif match.category is SignatureCategory.UNOFFICIAL:
            code, name = "UNOFFICIAL_LIBRARY", "Unofficial Library"
        else:
            code, name = "DEPRECATED_API_VERSION", "Deprecated API"
        violations.append(
            Violation(
                rule_code=code,
                rule_name=name,
                severity=Severity.ERROR,
                platform=match.platform,
                file=match.file,
                line=match.line,
                column=match.column,
                message=f"{match.package}: {match.recommendation or 'Policy violation'}",
                code_snippet=match.code_snippet[:200],
                recommendation=match.recommendation,
            )
        )
    return violations


def load_signatures(
    path: str | Path | None = None,
    min_api_version: float = DEFAULT_MIN_API_VERSION,
) -> SignatureRegistry:
    """Build a registry from a signature YAML file (bundled preset by default)."""
    if path is None:
        resource = importlib.resources.files("policyscan.rules.presets").joinpath(
            "signatures.yaml"
        )
        text = resource.read_text(encoding="utf-8")
    else:
        text = Path(path).read_text(encoding="utf-8")
    return load_signatures_from_string(text, min_api_version=min_api_version)


def load_signatures_from_string(
    text: str, min_api_version: float = DEFAULT_MIN_API_VERSION
) -> SignatureRegistry:
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise RuleLoadError("Signature YAML must be a mapping")

    signatures: list[DetectionSignature] = []
    for raw in data.get("signatures", []):
        if not isinstance(raw, dict):
            continue
        try:
            signatures.append(_parse_signature(raw))
        except (KeyError, ValueError) as e:
            raise RuleLoadError(f"Invalid signature {raw.get('id', '?')}: {e}") from e

    manifest = data.get("manifest", {}) or {}
    return SignatureRegistry(
        signatures,
        min_api_version=min_api_version,
        manifest_packages=manifest.get("unofficial") or (),
    )


def _parse_signature(raw: dict) -> DetectionSignature:
    patterns = raw.get("patterns", ())
    if isinstance(patterns, str):
        patterns = [patterns]
    return DetectionSignature(
        id=raw["id"],
        category=SignatureCategory(raw["category"]),
        match_patterns=tuple(patterns),
        risk_level=RiskLevel(raw.get("risk", "safe")),
        platform=raw.get("platform", "facebook"),
        package=raw.get("package", ""),
        recommendation=raw.get("recommendation", ""),
        doc_url=raw.get("doc_url", ""),
        rule_code=raw.get("rule_code", ""),
        version_pattern=raw.get("version_pattern", ""),
    )


def _compile_signature(sig: DetectionSignature) -> _CompiledSignature | None:
    patterns: list[re.Pattern[str]] = []
    for source in sig.match_patterns:
        try:
            patterns.append(re.compile(source, re.IGNORECASE))
        except re.error as e:
            logger.warning("Skipping malformed pattern %r in %s: %s", source, sig.id, e)
    if not patterns:
        return None

    version_regex = None
    if sig.category is SignatureCategory.DIRECT_API:
        try:
            version_regex = re.compile(sig.version_pattern or DEFAULT_VERSION_PATTERN)
        except re.error as e:
            logger.warning("Bad version pattern in %s: %s", sig.id, e)
            version_regex = re.compile(DEFAULT_VERSION_PATTERN)

    return _CompiledSignature(signature=sig, patterns=patterns, version_regex=version_regex)


def _extract_version(regex: re.Pattern[str] | None, line: str) -> float | None:
    if regex is None:
        return None
    m = regex.search(line)
    if not m:
        return None
    token = m.group(1) if m.groups() else m.group(0)
    try:
        return float(token)
    except ValueError:
        return None


def _format_version(version: float) -> str:
    return f"{version:g}" if version != int(version) else f"{int(version)}.0"


def _platform_from_line(line: str, default: str) -> str:
    if "instagram" in line:
        return "instagram"
    if "/me/messages" in line:
        return "messenger"
    if "act_" in line or "insights" in line:
        return "ads"
    return default


def _find_declaration(lines: list[str], pkg: str) -> tuple[int, str]:
    needle = f'"{pkg}"'
    for i, line in enumerate(lines, start=1):
        if needle in line:
            return i, line
    return 1, lines[0] if lines else ""

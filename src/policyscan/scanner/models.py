"""Scanner data models — remote entries, budgets, rules, violations and results."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from policyscan.scanner.indexer import CodebaseStructure


class Severity(enum.Enum):
    """Violation severity level."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.ERROR: 3, Severity.WARNING: 2, Severity.INFO: 1}


class RiskLevel(enum.Enum):
    """Risk classification attached to a signature match."""

    SAFE = "safe"
    CAUTION = "caution"
    VIOLATION = "violation"


class SignatureCategory(enum.Enum):
    """Kind of library or endpoint a signature identifies."""

    OFFICIAL = "official"
    WRAPPER = "wrapper"
    UNOFFICIAL = "unofficial"
    DEPRECATED = "deprecated"
    DIRECT_API = "direct-api"


class EntryKind(enum.Enum):
    FILE = "file"
    DIR = "dir"


@dataclass(frozen=True)
class RemoteEntry:
    """One node of a remote tree, as returned by a directory listing."""

    path: str
    kind: EntryKind
    size_bytes: int = 0
    content_ref: str | None = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass
class FetchBudget:
    """Counters bounding a single traversal. Exhaustion halts, never raises."""

    max_files: int = 500
    max_dirs: int = 100
    max_file_size_bytes: int = 100 * 1024
    files_visited: int = 0
    dirs_visited: int = 0

    @property
    def files_exhausted(self) -> bool:
        return self.files_visited >= self.max_files

    @property
    def dirs_exhausted(self) -> bool:
        return self.dirs_visited >= self.max_dirs

    @property
    def exhausted(self) -> bool:
        return self.files_exhausted or self.dirs_exhausted


@dataclass
class RateLimitState:
    """Remote quota as last reported by the API."""

    remaining: int = 60
    reset_at_epoch_seconds: int = 0
    consecutive_failures: int = 0


@dataclass(frozen=True)
class DetectionSignature:
    """A known library or endpoint and how risky its use is."""

    id: str
    category: SignatureCategory
    match_patterns: tuple[str, ...]
    risk_level: RiskLevel
    platform: str = "facebook"
    package: str = ""
    recommendation: str = ""
    doc_url: str = ""
    rule_code: str = ""
    version_pattern: str = ""


@dataclass(frozen=True)
class SignatureMatch:
    """A signature hit on a single line."""

    signature_id: str
    category: SignatureCategory
    package: str
    platform: str
    file: str
    line: int
    column: int
    code_snippet: str
    risk_level: RiskLevel
    recommendation: str = ""
    version: float | None = None
    rule_code: str = ""


@dataclass(frozen=True)
class Violation:
    """A single policy finding."""

    rule_code: str
    rule_name: str
    severity: Severity
    platform: str
    file: str
    line: int
    column: int
    message: str
    code_snippet: str
    recommendation: str = ""
    doc_urls: tuple[str, ...] = ()
    fix_example: str = ""

    @property
    def key(self) -> tuple[str, str, int]:
        """Deduplication identity."""
        return (self.rule_code, self.file, self.line)


@dataclass(frozen=True)
class ScanSource:
    """What was scanned."""

    kind: str
    path: str = ""
    url: str = ""
    owner: str = ""
    repo: str = ""
    branch: str = ""

    @property
    def display_name(self) -> str:
        if self.kind == "github":
            return f"{self.owner}/{self.repo}"
        return self.path


@dataclass
class SdkAnalysis:
    """Signature matches grouped by what they identified."""

    official: list[SignatureMatch] = field(default_factory=list)
    wrappers: list[SignatureMatch] = field(default_factory=list)
    direct_api: list[SignatureMatch] = field(default_factory=list)
    violations: list[SignatureMatch] = field(default_factory=list)

    def add(self, match: SignatureMatch) -> None:
        if match.category is SignatureCategory.OFFICIAL:
            self.official.append(match)
        elif match.category is SignatureCategory.WRAPPER:
            self.wrappers.append(match)
        elif match.category is SignatureCategory.DIRECT_API:
            self.direct_api.append(match)
        else:
            self.violations.append(match)


@dataclass
class SeveritySummary:
    errors: int = 0
    warnings: int = 0
    info: int = 0

    @classmethod
    def from_violations(cls, violations: list[Violation]) -> SeveritySummary:
        summary = cls()
        for v in violations:
            if v.severity is Severity.ERROR:
                summary.errors += 1
            elif v.severity is Severity.WARNING:
                summary.warnings += 1
            else:
                summary.info += 1
        return summary


@dataclass
class ScanResult:
    """Aggregate result of one scan invocation."""

    source: ScanSource
    violations: list[Violation] = field(default_factory=list)
    files_scanned: int = 0
    files_discovered: int = 0
    files_skipped: int = 0
    duration_ms: int = 0
    structure: CodebaseStructure | None = None
    sdk_analysis: SdkAnalysis | None = None
    summary: SeveritySummary = field(default_factory=SeveritySummary)
    truncated: bool = False
    timestamp: float = field(default_factory=time.time)

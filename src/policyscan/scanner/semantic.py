"""Semantic analysis hook — optional per-file stage run after indexing.

The analyzer itself (an LLM-backed reviewer, a rules service, ...) lives
outside this package; the orchestrator only hands it each fetched file with
the codebase context built by the indexer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from policyscan.scanner.indexer import (
    PATTERN_CATEGORIES,
    CodebaseIndex,
    CodebaseStructure,
    RelatedCode,
)
from policyscan.scanner.models import Violation


@dataclass(frozen=True)
class AnalysisContext:
    """Codebase-wide context shared by every per-file analysis call."""

    summary: str
    structure: CodebaseStructure
    pattern_usage: dict[str, list[RelatedCode]] = field(default_factory=dict)
    index: CodebaseIndex | None = None


class SemanticAnalyzer(Protocol):
    def analyze(
        self, file_path: str, content: str, context: AnalysisContext
    ) -> list[Violation]:
        """Return violations found in one file. May raise; callers contain it."""
        ...


def build_context(index: CodebaseIndex) -> AnalysisContext:
    usage = {}
    for category in PATTERN_CATEGORIES:
        found = index.find_pattern_usage(category)
        if found:
            usage[category] = found
    return AnalysisContext(
        summary=index.summary_for_analysis(),
        structure=index.structure,
        pattern_usage=usage,
        index=index,
    )

"""Scan orchestrator — fetches a tree and runs the detection pipeline over it."""

from __future__ import annotations

import dataclasses
import logging
import sys
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from policyscan.config import ScannerConfig
from policyscan.errors import InvalidSourceError
from policyscan.rules.evaluator import RuleEngine, deduplicate_violations
from policyscan.rules.loader import FileRuleSource, filter_rules
from policyscan.rules.models import RuleFilter, ViolationRule
from policyscan.scanner.fetcher import (
    DEFAULT_EXCLUDE,
    ContentFetcher,
    FetchedFile,
    ProgressSink,
)
from policyscan.scanner.indexer import CodebaseIndex
from policyscan.scanner.local import LocalDirectoryClient
from policyscan.scanner.models import (
    FetchBudget,
    ScanResult,
    ScanSource,
    SdkAnalysis,
    Severity,
    SeveritySummary,
    Violation,
)
from policyscan.scanner.remote import (
    GitHubContentsClient,
    RemoteContentClient,
    is_github_url,
    parse_github_url,
)
from policyscan.scanner.semantic import SemanticAnalyzer, build_context
from policyscan.scanner.signatures import (
    SignatureRegistry,
    load_signatures,
    to_violations,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ScanSource, ScannerConfig], RemoteContentClient]

_MANIFEST_NAME = "package.json"


@dataclass(frozen=True)
class ScanOptions:
    """Per-scan knobs.

    ``None`` limits fall back to the ScannerConfig values; local sources
    default to unbounded file and directory counts.
    """

    branch: str | None = None
    max_files: int | None = None
    max_dirs: int | None = None
    max_file_size: int | None = None
    exclude_patterns: tuple[str, ...] = ()
    platform: str | None = None
    min_severity: Severity | None = None
    include_sdk_analysis: bool = True
    min_api_version: float | None = None


def parse_source(source: str) -> ScanSource:
    """Turn a GitHub URL or a local directory path into a ScanSource."""
    if is_github_url(source):
        parsed = parse_github_url(source)
        if parsed is None:
            raise InvalidSourceError(f"Cannot parse GitHub URL: {source}")
        return parsed

    path = Path(source).expanduser()
    if path.is_dir():
        return ScanSource(kind="local", path=str(path.resolve()))
    raise InvalidSourceError(f"Not a GitHub URL or local directory: {source}")


def default_client_factory(source: ScanSource, config: ScannerConfig) -> RemoteContentClient:
    if source.kind == "github":
        return GitHubContentsClient(
            source.owner,
            source.repo,
            token=config.github_token,
            api_base=config.api_base,
            timeout=config.request_timeout,
        )
    if source.kind == "local":
        return LocalDirectoryClient(source.path)
    raise InvalidSourceError(f"Unsupported source kind: {source.kind}")


def _log_progress(message: str) -> None:
    logger.info(message.strip())


class ScanOrchestrator:
    """Runs one scan end to end: fetch, evaluate, index, analyze, deduplicate.

    Collaborators are injectable. Without explicit ``rules`` the bundled
    preset plus any user rule directories from the config are used; without
    a ``registry`` the bundled signature table is loaded per scan.
    """

    def __init__(
        self,
        rules: Iterable[ViolationRule] | None = None,
        registry: SignatureRegistry | None = None,
        semantic: SemanticAnalyzer | None = None,
        progress: ProgressSink | None = None,
        config: ScannerConfig | None = None,
        client_factory: ClientFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or ScannerConfig.load()
        self._rules = list(rules) if rules is not None else None
        self._registry = registry
        self._semantic = semantic
        self._progress = progress or _log_progress
        self._client_factory = client_factory or default_client_factory
        self._sleep = sleep
        self._clock = clock

    def scan(self, source: ScanSource | str, options: ScanOptions | None = None) -> ScanResult:
        """Scan ``source`` and return the aggregated, deduplicated result.

        Raises RateLimitExceeded, SourceNotFoundError or InvalidSourceError;
        every other failure is contained and the scan continues.
        """
        options = options or ScanOptions()
        if isinstance(source, str):
            source = parse_source(source)
        start = time.monotonic()

        engine = RuleEngine(self._select_rules(options))
        registry = self._select_registry(options)
        client = self._client_factory(source, self.config)
        fetcher = ContentFetcher(
            client,
            progress=self._progress,
            sleep=self._sleep,
            clock=self._clock,
        )

        if source.kind == "local":
            ref, root = "", ""
        else:
            ref = fetcher.resolve_ref(options.branch or source.branch or None)
            root = source.path

        budget = self._budget(source, options)
        excludes = (*DEFAULT_EXCLUDE, *options.exclude_patterns)

        self._progress(f"Scanning {source.display_name}...")
        sdk = SdkAnalysis() if options.include_sdk_analysis else None
        contents: list[tuple[str, str]] = []
        raw: list[Violation] = []

        for fetched in fetcher.fetch_tree(root, ref, budget, excludes):
            contents.append((fetched.path, fetched.content))
            raw.extend(self._evaluate_file(fetched, engine, registry, sdk))

        self._progress(f"Fetched {len(contents)} files, building index...")
        index = CodebaseIndex.build(contents)
        if self._semantic is not None and contents:
            raw.extend(self._run_semantic(contents, index))

        order = {path: i for i, (path, _) in enumerate(contents)}
        violations = deduplicate_violations(v for v in raw if v.file in order)
        violations.sort(key=lambda v: (order[v.file], v.line))
        if options.min_severity is not None:
            floor = options.min_severity.rank
            violations = [v for v in violations if v.severity.rank >= floor]

        stats = fetcher.stats
        result = ScanResult(
            source=_with_branch(source, fetcher.resolved_ref),
            violations=violations,
            files_scanned=len(contents),
            files_discovered=stats.files_discovered,
            files_skipped=stats.files_skipped,
            duration_ms=int((time.monotonic() - start) * 1000),
            structure=index.structure,
            sdk_analysis=sdk,
            summary=SeveritySummary.from_violations(violations),
            truncated=stats.truncated,
        )
        if result.truncated:
            self._progress("Scan budget exhausted; results are partial")
        self._progress(
            f"Scan complete: {len(violations)} violation(s) in {result.files_scanned} files"
        )
        return result

    def _budget(self, source: ScanSource, options: ScanOptions) -> FetchBudget:
        """Local trees have no file or directory cap unless the options set one."""
        if source.kind == "local":
            max_files = max_dirs = sys.maxsize
        else:
            max_files, max_dirs = self.config.max_files, self.config.max_dirs
        return FetchBudget(
            max_files=options.max_files or max_files,
            max_dirs=options.max_dirs or max_dirs,
            max_file_size_bytes=options.max_file_size or self.config.max_file_size,
        )

    def _select_rules(self, options: ScanOptions) -> list[ViolationRule]:
        rule_filter = RuleFilter(platform=options.platform)
        if self._rules is not None:
            return filter_rules(self._rules, rule_filter)
        return FileRuleSource(self.config.rule_dirs).load_rules(rule_filter)

    def _select_registry(self, options: ScanOptions) -> SignatureRegistry | None:
        if not options.include_sdk_analysis:
            return None
        if self._registry is not None:
            return self._registry
        min_version = options.min_api_version
        if min_version is None:
            min_version = self.config.min_api_version
        return load_signatures(min_api_version=min_version)

    def _evaluate_file(
        self,
        fetched: FetchedFile,
        engine: RuleEngine,
        registry: SignatureRegistry | None,
        sdk: SdkAnalysis | None,
    ) -> list[Violation]:
        """Manifest check, then signatures, then rules, in that order."""
        path, content = fetched.path, fetched.content
        found: list[Violation] = []

        if registry is not None:
            if PurePosixPath(path).name == _MANIFEST_NAME:
                found.extend(registry.detect_manifest(path, content))
            matches = registry.detect(path, content)
            if sdk is not None:
                for match in matches:
                    sdk.add(match)
            found.extend(to_violations(matches))

        found.extend(engine.evaluate_all(content, path))
        return found

    def _run_semantic(
        self, contents: list[tuple[str, str]], index: CodebaseIndex
    ) -> list[Violation]:
        context = build_context(index)
        found: list[Violation] = []
        for path, content in contents:
            try:
                found.extend(self._semantic.analyze(path, content, context))
            except Exception as e:
                logger.warning("Semantic analysis failed for %s: %s", path, e)
                self._progress(f"  Semantic analysis failed for {path}: {e}")
        return found


def _with_branch(source: ScanSource, ref: str) -> ScanSource:
    if source.kind != "github" or not ref or source.branch == ref:
        return source
    return dataclasses.replace(source, branch=ref)

"""Content fetcher — bounded breadth-first retrieval of a remote tree.

Owns the per-scan bookkeeping that keeps a scan inside the remote API's
hourly quota: the rate-limit state read before every call, retry with
exponential backoff on transient failures, and the traversal budget. Budget
exhaustion ends the traversal quietly; the only condition that escapes as an
exception is a quota that stays exhausted after every backoff attempt (or a
root that cannot be listed on any branch).
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from functools import partial
from pathlib import PurePosixPath

from policyscan.errors import (
    RateLimitExceeded,
    RemoteTransportError,
    SourceNotFoundError,
)
from policyscan.scanner.models import EntryKind, FetchBudget, RateLimitState, RemoteEntry
from policyscan.scanner.remote import RemoteContentClient, RemoteResponse

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], None]

SCANNABLE_EXTENSIONS = frozenset(
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
        ".rb",
        ".go",
        ".json",  # package.json manifests
        ".sql",
        ".prisma",
        ".graphql",
        ".gql",
    }
)

DEFAULT_EXCLUDE = (
    "node_modules",
    "dist",
    "build",
    ".git",
    "vendor",
    "__pycache__",
    "venv",
    ".next",
    "coverage",
    ".min.js",
    ".bundle.js",
    ".map",
)

_BINARY_SNIFF_BYTES = 8192
_NON_PRINTABLE_RATIO = 0.1
_TEXT_CONTROL_BYTES = frozenset({9, 10, 13})

# HTTP statuses treated as throttling and retried
_RETRY_STATUSES = frozenset({403, 429})

_PROGRESS_EVERY = 10


@dataclass(frozen=True)
class FetchedFile:
    """A decoded text file pulled from the remote tree."""

    path: str
    content: str
    size_bytes: int


@dataclass
class TraversalStats:
    files_discovered: int = 0
    files_fetched: int = 0
    files_skipped: int = 0
    dirs_listed: int = 0
    truncated: bool = False


def is_binary(data: bytes) -> bool:
    """Sniff the first 8 KiB: two NULs, or >10% control bytes, means binary."""
    sample = data[:_BINARY_SNIFF_BYTES]
    if not sample:
        return False
    if sample.count(0) > 1:
        return True
    non_printable = sum(1 for b in sample if b < 32 and b not in _TEXT_CONTROL_BYTES)
    return non_printable / len(sample) > _NON_PRINTABLE_RATIO


def decode_content(data: bytes) -> str | None:
    """Decode file bytes as text; None for binary content."""
    if is_binary(data):
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 30.0) -> float:
    return min(base * (2**attempt), cap)


def normalize_excludes(patterns: Iterable[str]) -> tuple[str, ...]:
    """Glob-ish excludes (``**/dist/**``, ``*.min.js``) to lowercase substrings."""
    out: list[str] = []
    for p in patterns:
        p = p.strip().strip("*/").lower()
        if p:
            out.append(p)
    return tuple(dict.fromkeys(out))


class ContentFetcher:
    """Walks one remote tree under a FetchBudget, yielding decoded files."""

    def __init__(
        self,
        client: RemoteContentClient,
        progress: ProgressSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        max_attempts: int = 3,
        max_rate_limit_retries: int = 3,
        max_quota_wait: float = 120.0,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        extensions: Iterable[str] = SCANNABLE_EXTENSIONS,
    ) -> None:
        self._client = client
        self._progress = progress or (lambda msg: None)
        self._sleep = sleep
        self._clock = clock
        self.max_attempts = max_attempts
        self.max_rate_limit_retries = max_rate_limit_retries
        self.max_quota_wait = max_quota_wait
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.extensions = frozenset(e.lower() for e in extensions)

        self.rate_limit = RateLimitState()
        self.stats = TraversalStats()
        self.resolved_ref = ""

    def resolve_ref(self, branch: str | None = None) -> str:
        """Return ``branch`` or ask the repository for its default branch (once)."""
        if branch:
            return branch
        response = self._request(self._client.get_repository, "repository metadata")
        if response is not None and response.ok and isinstance(response.payload, dict):
            default = response.payload.get("default_branch")
            if isinstance(default, str):
                return default
        return "main"

    def fetch_tree(
        self,
        root: str,
        ref: str,
        budget: FetchBudget,
        exclude_patterns: Iterable[str] = (),
    ) -> Iterator[FetchedFile]:
        """Breadth-first traversal from ``root``, lazily yielding fetched files.

        Stops when the queue empties or the budget saturates. Directories and
        files that keep failing are skipped; oversized, binary and excluded
        files are dropped silently.
        """
        self.stats = TraversalStats()
        self.resolved_ref = ref
        root = root.strip("/")
        excludes = normalize_excludes(exclude_patterns)
        fallbacks = ["master"] if ref == "main" else []
        tried = [ref]
        root_listed = False

        queue: deque[str] = deque([root])
        while queue and not budget.exhausted:
            path = queue.popleft()
            budget.dirs_visited += 1
            response = self._request(
                partial(self._client.list_entries, path, self.resolved_ref),
                f"directory '{path or '/'}'",
            )
            if response is None:
                continue

            if not root_listed and path == root and response.not_found:
                if not fallbacks:
                    raise SourceNotFoundError(
                        f"Cannot list '{root or '/'}' on "
                        + ", ".join(repr(r) for r in tried)
                    )
                fallback = fallbacks.pop(0)
                self._progress(f"Branch '{self.resolved_ref}' not found, trying '{fallback}'...")
                self.resolved_ref = fallback
                tried.append(fallback)
                budget.dirs_visited -= 1
                queue.appendleft(root)
                continue

            if not response.ok:
                logger.debug("Listing %s returned HTTP %d", path or "/", response.status)
                continue

            root_listed = True
            self.stats.dirs_listed += 1
            yield from self._visit_listing(response.payload or [], queue, budget, excludes)

        unfetched = self.stats.files_discovered > budget.files_visited
        if queue or (budget.files_exhausted and unfetched):
            self.stats.truncated = True

    def _visit_listing(
        self,
        entries: list[RemoteEntry],
        queue: deque[str],
        budget: FetchBudget,
        excludes: tuple[str, ...],
    ) -> Iterator[FetchedFile]:
        for entry in entries:
            if _is_excluded(entry.path, excludes):
                continue

            if entry.kind is EntryKind.DIR:
                queue.append(entry.path)
                continue

            if not self._is_scannable(entry):
                continue
            if entry.size_bytes > budget.max_file_size_bytes:
                self.stats.files_skipped += 1
                continue

            self.stats.files_discovered += 1
            if budget.files_exhausted:
                continue

            budget.files_visited += 1
            fetched = self._fetch_file(entry, budget.max_file_size_bytes)
            if fetched is None:
                self.stats.files_skipped += 1
                continue

            self.stats.files_fetched += 1
            if self.stats.files_fetched % _PROGRESS_EVERY == 0:
                self._progress(f"  Fetched {self.stats.files_fetched} files...")
            yield fetched

    def _fetch_file(self, entry: RemoteEntry, max_size: int) -> FetchedFile | None:
        response = self._request(
            partial(self._client.fetch_content, entry), f"file '{entry.path}'"
        )
        if response is None:
            return None
        if not response.ok or not isinstance(response.payload, (bytes, bytearray)):
            self._progress(f"  Skipped {entry.path} (HTTP {response.status})")
            return None

        data = bytes(response.payload)
        if len(data) > max_size:
            return None
        content = decode_content(data)
        if content is None:
            logger.debug("Skipping binary file %s", entry.path)
            return None
        return FetchedFile(path=entry.path, content=content, size_bytes=len(data))

    def _is_scannable(self, entry: RemoteEntry) -> bool:
        if not entry.content_ref:
            return False
        return PurePosixPath(entry.name).suffix.lower() in self.extensions

    # --- rate limiting & retry ---

    def _request(
        self, call: Callable[[], RemoteResponse], what: str
    ) -> RemoteResponse | None:
        """Issue one remote call with quota checks and retries.

        Returns None when every attempt failed; the caller skips the item.
        """
        for attempt in range(self.max_attempts):
            self._wait_for_quota()
            last_attempt = attempt == self.max_attempts - 1
            try:
                response = call()
            except RemoteTransportError as e:
                logger.debug("Request for %s failed: %s", what, e)
                if not last_attempt:
                    delay = self._backoff(attempt)
                    self._progress(f"Request for {what} failed, retrying in {delay:g}s...")
                    self._sleep(delay)
                continue

            self._record_quota(response)
            if response.status in _RETRY_STATUSES:
                if not last_attempt:
                    wait = response.retry_after
                    if wait is None:
                        wait = self._backoff(attempt)
                    wait = min(wait, self.max_quota_wait)
                    self._progress(f"Rate limited on {what}, waiting {wait:g}s...")
                    self._sleep(wait)
                continue

            return response

        logger.warning("Giving up on %s after %d attempts", what, self.max_attempts)
        self._progress(f"  Skipped {what} after {self.max_attempts} failed attempts")
        return None

    def _wait_for_quota(self) -> None:
        """Sleep through (or back off from) an exhausted quota before a call."""
        state = self.rate_limit
        if state.remaining > 1:
            return

        wait = state.reset_at_epoch_seconds - self._clock()
        if wait <= 0:
            return

        if wait <= self.max_quota_wait:
            self._progress(f"Rate limit reached, waiting {math.ceil(wait)}s until reset...")
            self._sleep(wait + 1)
            state.consecutive_failures = 0
            return

        state.consecutive_failures += 1
        if state.consecutive_failures > self.max_rate_limit_retries:
            raise RateLimitExceeded(
                f"Rate limit exceeded. Wait {math.ceil(wait / 60)} minutes or "
                "provide a GITHUB_TOKEN for 5,000 requests/hour "
                "(vs 60/hour unauthenticated).",
                reset_at=state.reset_at_epoch_seconds,
            )
        delay = self._backoff(state.consecutive_failures - 1)
        self._progress(
            f"Rate limit exceeded, backing off {delay:g}s "
            f"(attempt {state.consecutive_failures}/{self.max_rate_limit_retries})..."
        )
        self._sleep(delay)

    def _record_quota(self, response: RemoteResponse) -> None:
        if response.rate_remaining is not None:
            self.rate_limit.remaining = response.rate_remaining
            if response.rate_remaining > 1:
                self.rate_limit.consecutive_failures = 0
        if response.rate_reset is not None:
            self.rate_limit.reset_at_epoch_seconds = response.rate_reset

    def _backoff(self, attempt: int) -> float:
        return backoff_delay(attempt, self.backoff_base, self.backoff_cap)


def _is_excluded(path: str, excludes: tuple[str, ...]) -> bool:
    lowered = path.lower()
    return any(p in lowered for p in excludes)

"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from policyscan.config import ScannerConfig
from policyscan.errors import RemoteTransportError
from policyscan.rules.models import DetectionType, ViolationRule
from policyscan.scanner.models import EntryKind, RemoteEntry, Severity
from policyscan.scanner.remote import RemoteResponse

TOKEN = "EAAA" + "Bc1" * 20


class FakeClock:
    """Deterministic clock whose sleep() advances time instead of blocking."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRepoClient:
    """In-memory RemoteContentClient over a ``{path: content}`` mapping.

    Directories are implied by the file paths. Listings are sorted by name
    like the GitHub contents API. Paths in ``broken`` raise a transport error
    on every fetch.
    """

    def __init__(
        self,
        files: dict[str, str | bytes],
        branches: tuple[str, ...] = ("main",),
        default_branch: str = "main",
        broken: tuple[str, ...] = (),
        rate_remaining: int | None = None,
        rate_reset: int | None = None,
    ) -> None:
        self.files = {
            p: c.encode("utf-8") if isinstance(c, str) else c for p, c in files.items()
        }
        self.branches = set(branches)
        self.default_branch = default_branch
        self.broken = set(broken)
        self.rate_remaining = rate_remaining
        self.rate_reset = rate_reset
        self.calls: list[tuple] = []

    def get_repository(self) -> RemoteResponse:
        self.calls.append(("repo",))
        return self._response(200, {"default_branch": self.default_branch})

    def list_entries(self, path: str, ref: str) -> RemoteResponse:
        self.calls.append(("list", path, ref))
        if ref not in self.branches:
            return self._response(404)

        prefix = f"{path}/" if path else ""
        children: dict[str, RemoteEntry] = {}
        for file_path, data in self.files.items():
            if not file_path.startswith(prefix):
                continue
            head, _, tail = file_path[len(prefix) :].partition("/")
            if tail:
                children[head] = RemoteEntry(path=prefix + head, kind=EntryKind.DIR)
            else:
                children[head] = RemoteEntry(
                    path=file_path,
                    kind=EntryKind.FILE,
                    size_bytes=len(data),
                    content_ref=f"mem://{file_path}",
                )
        if path and not children:
            return self._response(404)
        return self._response(200, [children[name] for name in sorted(children)])

    def fetch_content(self, entry: RemoteEntry) -> RemoteResponse:
        self.calls.append(("fetch", entry.path))
        if entry.path in self.broken:
            raise RemoteTransportError(f"connection reset fetching {entry.path}")
        return self._response(200, self.files[entry.path])

    @property
    def fetched(self) -> list[str]:
        return [c[1] for c in self.calls if c[0] == "fetch"]

    @property
    def listed(self) -> list[str]:
        return [c[1] for c in self.calls if c[0] == "list"]

    def _response(self, status: int, payload=None) -> RemoteResponse:
        return RemoteResponse(
            status=status,
            payload=payload,
            rate_remaining=self.rate_remaining,
            rate_reset=self.rate_reset,
        )


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def custom_rules_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "custom_rules.yaml"


@pytest.fixture
def inherit_rules_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "inherit_rules.yaml"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path: Path) -> ScannerConfig:
    return ScannerConfig(config_dir=tmp_path / "config")


@pytest.fixture
def token_rule() -> ViolationRule:
    return ViolationRule(
        code="TOKEN_EXPOSED",
        name="Access Token in Source Code",
        platform="all",
        severity=Severity.ERROR,
        pattern=r"EAAA[A-Za-z0-9]{50,}",
        description="Access token exposed in source code.",
    )


@pytest.fixture
def console_log_rule() -> ViolationRule:
    return ViolationRule(
        code="LOGGING_SENSITIVE_DATA",
        name="Logging Sensitive Data",
        platform="all",
        severity=Severity.WARNING,
        pattern=r"console\.log\(.*token",
    )


@pytest.fixture
def whatsapp_rule() -> ViolationRule:
    return ViolationRule(
        code="WHATSAPP_UNOFFICIAL_API",
        name="Unofficial WhatsApp API",
        platform="whatsapp",
        severity=Severity.ERROR,
        pattern="whatsapp-web.js|baileys",
        detection_type=DetectionType.SDK_CHECK,
    )


@pytest.fixture
def make_repo():
    """Factory for in-memory repositories: ``make_repo({"a.js": "..."})``."""
    return FakeRepoClient


@pytest.fixture
def token() -> str:
    return TOKEN

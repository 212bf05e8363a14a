"""Remote content clients — the listing/fetch API the fetcher traverses.

A client performs exactly one HTTP round trip per call and reports what came
back; retry, backoff and quota bookkeeping are the fetcher's job.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import requests

from policyscan import __version__
from policyscan.config import DEFAULT_API_BASE
from policyscan.errors import RemoteTransportError
from policyscan.scanner.models import EntryKind, RemoteEntry, ScanSource

logger = logging.getLogger(__name__)

_USER_AGENT = f"policyscan/{__version__}"

_GITHUB_URL_PATTERNS = [
    # https://github.com/owner/repo/tree/branch[/path]
    re.compile(r"github\.com/([^/\s]+)/([^/\s]+)/tree/([^/\s]+)(?:/(.*))?"),
    # https://github.com/owner/repo/blob/branch/path
    re.compile(r"github\.com/([^/\s]+)/([^/\s]+)/blob/([^/\s]+)/(.+)"),
    # https://github.com/owner/repo
    re.compile(r"github\.com/([^/\s]+)/([^/\s?#]+)"),
]


@dataclass(frozen=True)
class RemoteResponse:
    """Status, payload and quota metadata of one remote call."""

    status: int
    payload: Any = None
    rate_remaining: int | None = None
    rate_reset: int | None = None
    retry_after: float | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def not_found(self) -> bool:
        return self.status == 404


class RemoteContentClient(Protocol):
    """Listing/fetch interface. Network failures raise RemoteTransportError."""

    def get_repository(self) -> RemoteResponse:
        """Repository metadata; payload is a mapping with ``default_branch``."""
        ...

    def list_entries(self, path: str, ref: str) -> RemoteResponse:
        """Directory listing; payload is a list of RemoteEntry."""
        ...

    def fetch_content(self, entry: RemoteEntry) -> RemoteResponse:
        """Raw file bytes as payload."""
        ...


class GitHubContentsClient:
    """GitHub REST v3 contents API over a requests session."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str = "",
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": _USER_AGENT,
            }
        )
        if token:
            self._session.headers["Authorization"] = f"token {token}"

    @property
    def authenticated(self) -> bool:
        return bool(self._token)

    def get_repository(self) -> RemoteResponse:
        url = f"{self.api_base}/repos/{self.owner}/{self.repo}"
        resp = self._get(url)
        payload = self._json(resp) if resp.ok else None
        return _to_response(resp, payload if isinstance(payload, dict) else None)

    def list_entries(self, path: str, ref: str) -> RemoteResponse:
        url = (
            f"{self.api_base}/repos/{self.owner}/{self.repo}"
            f"/contents/{quote(path.strip('/'))}"
        )
        resp = self._get(url, params={"ref": ref} if ref else None)
        if not resp.ok:
            return _to_response(resp, None)

        data = self._json(resp)
        # A file path returns a single object rather than a listing
        items = data if isinstance(data, list) else [data]
        entries = [e for e in (_parse_entry(item) for item in items) if e is not None]
        return _to_response(resp, entries)

    def fetch_content(self, entry: RemoteEntry) -> RemoteResponse:
        if not entry.content_ref:
            return RemoteResponse(status=404)
        resp = self._get(entry.content_ref)
        return _to_response(resp, resp.content if resp.ok else None)

    def _get(self, url: str, params: dict | None = None) -> requests.Response:
        try:
            return self._session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteTransportError(f"GET {url} failed: {e}") from e

    def _json(self, resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteTransportError(f"Malformed JSON from {resp.url}: {e}") from e


def parse_github_url(url: str) -> ScanSource | None:
    """Parse the common github.com URL shapes into a ScanSource."""
    for pattern in _GITHUB_URL_PATTERNS:
        m = pattern.search(url)
        if not m:
            continue
        groups = m.groups()
        owner = groups[0]
        repo = re.sub(r"\.git$", "", groups[1])
        branch = groups[2] if len(groups) > 2 and groups[2] else ""
        path = (groups[3] or "") if len(groups) > 3 else ""
        return ScanSource(
            kind="github",
            url=url,
            owner=owner,
            repo=repo,
            branch=branch,
            path=path.strip("/"),
        )
    return None


def is_github_url(url: str) -> bool:
    return re.match(r"^https?://(?:www\.)?github\.com/", url) is not None


def _parse_entry(item: Any) -> RemoteEntry | None:
    if not isinstance(item, dict):
        return None
    kind = item.get("type")
    if kind not in ("file", "dir"):
        # symlinks and submodules are not traversed
        return None
    return RemoteEntry(
        path=item.get("path", ""),
        kind=EntryKind(kind),
        size_bytes=int(item.get("size") or 0),
        content_ref=item.get("download_url"),
    )


def _to_response(resp: requests.Response, payload: Any) -> RemoteResponse:
    return RemoteResponse(
        status=resp.status_code,
        payload=payload,
        rate_remaining=_int_header(resp, "X-RateLimit-Remaining"),
        rate_reset=_int_header(resp, "X-RateLimit-Reset"),
        retry_after=_float_header(resp, "Retry-After"),
    )


def _int_header(resp: requests.Response, name: str) -> int | None:
    value = resp.headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _float_header(resp: requests.Response, name: str) -> float | None:
    value = resp.headers.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None

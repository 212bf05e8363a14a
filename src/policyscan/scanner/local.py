"""Local directory client — serves a working tree through the remote client interface."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from policyscan.scanner.models import EntryKind, RemoteEntry
from policyscan.scanner.remote import RemoteResponse

logger = logging.getLogger(__name__)

# Directories never worth listing
_SKIP_DIRS = {
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    ".venv",
    "venv",
    ".tox",
    ".eggs",
}


class LocalDirectoryClient:
    """Lists and reads files under ``root``. ``ref`` is ignored."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def get_repository(self) -> RemoteResponse:
        return RemoteResponse(status=200, payload={"default_branch": ""})

    def list_entries(self, path: str, ref: str) -> RemoteResponse:
        directory = self.root / path if path else self.root
        if not directory.is_dir():
            return RemoteResponse(status=404)

        try:
            children = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            logger.debug("Cannot list %s: %s", directory, e)
            return RemoteResponse(status=500)

        entries: list[RemoteEntry] = []
        for child in children:
            if child.is_symlink():
                continue
            rel = Path(child.path).relative_to(self.root).as_posix()
            if child.is_dir():
                if child.name in _SKIP_DIRS or child.name.endswith(".egg-info"):
                    continue
                entries.append(RemoteEntry(path=rel, kind=EntryKind.DIR))
            elif child.is_file():
                try:
                    size = child.stat().st_size
                except OSError:
                    continue
                entries.append(
                    RemoteEntry(
                        path=rel,
                        kind=EntryKind.FILE,
                        size_bytes=size,
                        content_ref=child.path,
                    )
                )
        return RemoteResponse(status=200, payload=entries)

    def fetch_content(self, entry: RemoteEntry) -> RemoteResponse:
        if not entry.content_ref:
            return RemoteResponse(status=404)
        try:
            data = Path(entry.content_ref).read_bytes()
        except OSError as e:
            logger.debug("Skipping %s: %s", entry.path, e)
            return RemoteResponse(status=500)
        return RemoteResponse(status=200, payload=data)

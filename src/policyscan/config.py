"""Global configuration — XDG paths, env vars, scan defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_API_BASE = "https://api.github.com"


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "policyscan"
    return Path.home() / ".config" / "policyscan"


@dataclass
class ScannerConfig:
    """Application-wide configuration."""

    config_dir: Path = field(default_factory=_default_config_dir)
    rule_dirs: list[Path] = field(default_factory=list)
    github_token: str = ""
    api_base: str = DEFAULT_API_BASE
    request_timeout: float = 30.0
    max_files: int = 500
    max_dirs: int = 100
    max_file_size: int = 100 * 1024
    min_api_version: float = 10.0
    verbose: bool = False

    @classmethod
    def load(cls) -> ScannerConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        config.github_token = (
            os.environ.get("GITHUB_TOKEN") or os.environ.get("GITHUB_PAT") or ""
        )

        env_base = os.environ.get("POLICYSCAN_API_BASE")
        if env_base:
            config.api_base = env_base.rstrip("/")

        env_timeout = os.environ.get("POLICYSCAN_TIMEOUT")
        if env_timeout:
            config.request_timeout = float(env_timeout)

        env_files = os.environ.get("POLICYSCAN_MAX_FILES")
        if env_files:
            config.max_files = int(env_files)

        env_dirs = os.environ.get("POLICYSCAN_MAX_DIRS")
        if env_dirs:
            config.max_dirs = int(env_dirs)

        env_size = os.environ.get("POLICYSCAN_MAX_FILE_SIZE")
        if env_size:
            config.max_file_size = int(env_size)

        env_version = os.environ.get("POLICYSCAN_MIN_API_VERSION")
        if env_version:
            config.min_api_version = float(env_version)

        # Add config dir's rules/ subdirectory if it exists
        rules_dir = config.config_dir / "rules"
        if rules_dir.is_dir():
            config.rule_dirs.append(rules_dir)

        return config

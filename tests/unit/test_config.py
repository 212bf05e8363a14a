"""Tests for environment-driven configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from policyscan.config import DEFAULT_API_BASE, ScannerConfig

_ENV_VARS = (
    "GITHUB_TOKEN",
    "GITHUB_PAT",
    "POLICYSCAN_API_BASE",
    "POLICYSCAN_TIMEOUT",
    "POLICYSCAN_MAX_FILES",
    "POLICYSCAN_MAX_DIRS",
    "POLICYSCAN_MAX_FILE_SIZE",
    "POLICYSCAN_MIN_API_VERSION",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))


def test_defaults(tmp_path: Path):
    config = ScannerConfig.load()
    assert config.config_dir == tmp_path / "policyscan"
    assert config.github_token == ""
    assert config.api_base == DEFAULT_API_BASE
    assert (config.max_files, config.max_dirs, config.max_file_size) == (500, 100, 102400)
    assert config.min_api_version == 10.0
    assert config.rule_dirs == []


def test_token_precedence(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("GITHUB_PAT", "pat")
    assert ScannerConfig.load().github_token == "pat"
    monkeypatch.setenv("GITHUB_TOKEN", "tok")
    assert ScannerConfig.load().github_token == "tok"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("POLICYSCAN_API_BASE", "https://ghe.example.com/api/v3/")
    monkeypatch.setenv("POLICYSCAN_TIMEOUT", "5")
    monkeypatch.setenv("POLICYSCAN_MAX_FILES", "20")
    monkeypatch.setenv("POLICYSCAN_MAX_DIRS", "3")
    monkeypatch.setenv("POLICYSCAN_MAX_FILE_SIZE", "1024")
    monkeypatch.setenv("POLICYSCAN_MIN_API_VERSION", "16")

    config = ScannerConfig.load()

    assert config.api_base == "https://ghe.example.com/api/v3"
    assert config.request_timeout == 5.0
    assert (config.max_files, config.max_dirs, config.max_file_size) == (20, 3, 1024)
    assert config.min_api_version == 16.0


def test_user_rules_dir_picked_up(tmp_path: Path):
    rules_dir = tmp_path / "policyscan" / "rules"
    rules_dir.mkdir(parents=True)
    assert ScannerConfig.load().rule_dirs == [rules_dir]

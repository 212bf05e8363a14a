"""Exception types shared across the scanner."""

from __future__ import annotations


class PolicyScanError(Exception):
    """Base class for policyscan errors."""


class RateLimitExceeded(PolicyScanError):
    """The remote API quota stayed exhausted after every backoff attempt."""

    def __init__(self, message: str, reset_at: int = 0) -> None:
        super().__init__(message)
        self.reset_at = reset_at


class SourceNotFoundError(PolicyScanError):
    """The scan root could not be listed on any candidate branch."""


class InvalidSourceError(PolicyScanError, ValueError):
    """The source is neither a GitHub URL nor a local directory."""


class RemoteTransportError(PolicyScanError):
    """A network-level failure talking to the remote API (retryable)."""


class RuleLoadError(PolicyScanError, ValueError):
    """A rule or signature file could not be parsed."""

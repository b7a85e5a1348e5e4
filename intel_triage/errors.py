"""Exception taxonomy shared by every pipeline stage.

Two of these are not failures: ``DuplicateItem`` marks an idempotent no-op
during ingestion and ``RateLimitWait`` tells a caller how long to suspend
before the classifier may be called again.
"""

from __future__ import annotations

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class FetchError(PipelineError):
    """Network or HTTP failure while retrieving a feed."""

    def __init__(self, url: str, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ParseError(PipelineError):
    """Malformed feed XML or CSV upload."""


class DuplicateItem(PipelineError):
    """Item was already ingested (content hash or feed-native id)."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"duplicate by {reason}: {key}")
        self.key = key
        self.reason = reason


class RateLimitWait(PipelineError):
    """The rate limiter cannot admit a request for ``wait_seconds``."""

    def __init__(self, wait_seconds: float) -> None:
        super().__init__(f"rate limited, retry in {wait_seconds:.2f}s")
        self.wait_seconds = wait_seconds


class InvalidResponse(PipelineError):
    """Classifier output violates the structured result contract."""


class ProviderError(PipelineError):
    """Classifier transport, quota or authentication failure."""


class ProviderUnavailable(ProviderError):
    """No usable classifier backend (e.g. missing credentials)."""


class QueueExhausted(PipelineError):
    """A queue entry used up its attempts and needs operator attention."""

    def __init__(self, entry: Any) -> None:
        super().__init__(
            f"queue entry {entry.id} exhausted after {entry.attempts} attempts: {entry.last_error}"
        )
        self.entry = entry


class NotFound(PipelineError):
    """Referenced entity no longer exists."""


class InvalidTransition(PipelineError):
    """Requested state change is not allowed from the current state."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(slots=True)
class PipelineConfig:
    """Runtime knobs handed to each component at construction.

    Defaults can be overridden through ``TRIAGE_*`` environment variables;
    values from the YAML ``settings`` block override both.
    """

    db_url: str = field(default_factory=lambda: os.getenv("TRIAGE_DB_URL", "sqlite:///data/intel-triage.db"))
    ai_backend: str = field(default_factory=lambda: os.getenv("TRIAGE_AI_BACKEND", "anthropic"))

    # classifier rate limiting
    max_requests_per_minute: int = field(default_factory=lambda: _env_int("TRIAGE_MAX_REQUESTS_PER_MINUTE", 50))
    rate_window_seconds: float = field(default_factory=lambda: _env_float("TRIAGE_RATE_WINDOW_SECONDS", 60.0))
    request_spacing_seconds: float = field(default_factory=lambda: _env_float("TRIAGE_REQUEST_SPACING_SECONDS", 1.2))
    max_content_chars: int = field(default_factory=lambda: _env_int("TRIAGE_MAX_CONTENT_CHARS", 10_000))
    classify_timeout: float = field(default_factory=lambda: _env_float("TRIAGE_CLASSIFY_TIMEOUT", 60.0))
    pir_cache_ttl: float = field(default_factory=lambda: _env_float("TRIAGE_PIR_CACHE_TTL", 30.0))

    # queue
    max_attempts: int = field(default_factory=lambda: _env_int("TRIAGE_MAX_ATTEMPTS", 3))
    retry_backoff_seconds: float = field(default_factory=lambda: _env_float("TRIAGE_RETRY_BACKOFF_SECONDS", 30.0))
    claim_timeout_seconds: float = field(default_factory=lambda: _env_float("TRIAGE_CLAIM_TIMEOUT_SECONDS", 600.0))
    default_priority: int = field(default_factory=lambda: _env_int("TRIAGE_DEFAULT_PRIORITY", 5))
    workers: int = field(default_factory=lambda: _env_int("TRIAGE_WORKERS", 2))
    worker_idle_sleep: float = field(default_factory=lambda: _env_float("TRIAGE_WORKER_IDLE_SLEEP", 2.0))

    # fetching and scheduling
    fetch_timeout: float = field(default_factory=lambda: _env_float("TRIAGE_FETCH_TIMEOUT", 30.0))
    default_refresh_interval: int = field(default_factory=lambda: _env_int("TRIAGE_DEFAULT_REFRESH_INTERVAL", 3600))
    activation_delay: float = field(default_factory=lambda: _env_float("TRIAGE_ACTIVATION_DELAY", 1.0))
    max_items_per_fetch: int = field(default_factory=lambda: _env_int("TRIAGE_MAX_ITEMS_PER_FETCH", 0))

    def update(self, values: dict) -> "PipelineConfig":
        """Apply overrides from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(self)}
        for key, value in values.items():
            if key in known and value is not None:
                current = getattr(self, key)
                setattr(self, key, type(current)(value))
        return self

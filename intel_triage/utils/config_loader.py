from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import urlparse

import yaml

from ..models import PIR, SOURCE_KINDS, FEED_KINDS, Source


class ConfigError(Exception):
    """Raised when the configuration file is invalid or missing required fields."""


REQUIRED_SOURCE_FIELDS = {"name", "url"}
REQUIRED_PIR_FIELDS = {"name", "category"}
PROXY_TYPES = {"prefix", "json_envelope", "authenticated"}


@dataclass(slots=True)
class ProxySpec:
    type: str
    url: str
    token: str = ""


@dataclass(slots=True)
class LoadedConfig:
    sources: List[Source] = field(default_factory=list)
    pirs: List[PIR] = field(default_factory=list)
    proxies: List[ProxySpec] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)


def _validate_url(value: Any, what: str) -> str:
    url_str = str(value).strip()
    parsed = urlparse(url_str)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"Invalid {what} URL '{url_str}'. Must be absolute http(s) URL.")
    return url_str


def _string_list(entry: dict, key: str) -> List[str]:
    values = entry.get(key)
    if values is None:
        return []
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise ConfigError(f"'{key}' must be a list of strings if provided")
    return [v.strip() for v in values if v.strip()]


def _coerce_source(entry: dict, default_interval: int) -> Source:
    """Validate a single source mapping from YAML.

    Required fields: name, url. Optional: kind ('rss' | 'atom' | 'manual' |
    'csv', default 'rss'), refresh_interval (seconds), active, target_pirs.
    Feed kinds need an absolute http(s) URL.
    """
    missing = REQUIRED_SOURCE_FIELDS - set(entry)
    if missing:
        raise ConfigError(f"Missing required fields: {sorted(missing)} in {entry}")

    kind = str(entry.get("kind", "rss")).strip().lower()
    if kind not in SOURCE_KINDS:
        raise ConfigError(f"Invalid kind '{kind}'. Must be one of {list(SOURCE_KINDS)}.")

    url = str(entry["url"]).strip()
    if kind in FEED_KINDS:
        url = _validate_url(url, "source")

    interval = entry.get("refresh_interval", default_interval)
    if not isinstance(interval, int) or interval <= 0:
        raise ConfigError(f"'refresh_interval' must be a positive integer, got {interval!r}")

    active = bool(entry.get("active", True))
    return Source(
        name=str(entry["name"]).strip(),
        url=url,
        kind=kind,
        refresh_interval=interval,
        active=active,
        status="active" if active else "inactive",
        target_pirs=_string_list(entry, "target_pirs"),
    )


def _coerce_pir(entry: dict, position: int) -> PIR:
    missing = REQUIRED_PIR_FIELDS - set(entry)
    if missing:
        raise ConfigError(f"Missing required PIR fields: {sorted(missing)} in {entry}")
    threshold = entry.get("confidence_threshold", 70)
    if not isinstance(threshold, int) or not 0 <= threshold <= 100:
        raise ConfigError(f"'confidence_threshold' must be an integer 0-100, got {threshold!r}")
    category = str(entry["category"]).strip().lower()
    if category == "none":
        raise ConfigError("'none' is reserved and cannot be used as a PIR category")
    return PIR(
        name=str(entry["name"]).strip(),
        category=category,
        description=str(entry.get("description") or "").strip(),
        keywords=[k.lower() for k in _string_list(entry, "keywords")],
        confidence_threshold=threshold,
        active=bool(entry.get("active", True)),
        display_order=int(entry.get("display_order", position)),
    )


def _coerce_proxy(entry: dict) -> ProxySpec:
    ptype = str(entry.get("type", "")).strip().lower()
    if ptype not in PROXY_TYPES:
        raise ConfigError(f"Invalid proxy type '{ptype}'. Must be one of {sorted(PROXY_TYPES)}.")
    url = _validate_url(entry.get("url", ""), "proxy")
    token = ""
    if ptype == "authenticated":
        # Tokens come from the environment, never from the YAML file itself
        token_env = str(entry.get("token_env") or "PROXY_TOKEN")
        token = os.environ.get(token_env, "")
    return ProxySpec(type=ptype, url=url, token=token)


def _mapping_list(data: dict, key: str) -> List[dict]:
    raw = data.get(key)
    if raw is None:
        raw = []
    if not isinstance(raw, list):
        raise ConfigError(f"'{key}' must be a list in the YAML configuration")
    for item in raw:
        if not isinstance(item, dict):
            raise ConfigError(f"Each entry of '{key}' must be a mapping, got: {type(item)}")
    return raw


def load_pipeline_config(path: Path | str, *, default_interval: int = 3600) -> LoadedConfig:
    """Load the pipeline YAML into typed sources, PIRs and proxies.

    YAML structure (all keys optional):
      - ``settings``: mapping of :class:`PipelineConfig` overrides
      - ``proxies``: list of {type: prefix|json_envelope|authenticated, url, token_env}
      - ``pirs``: list of {name, category, description, keywords,
        confidence_threshold, active, display_order}
      - ``sources``: list of {name, url, kind, refresh_interval, active, target_pirs}

    Unknown top-level keys are ignored for forward compatibility.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError("Top-level YAML document must be a mapping")

    settings = data.get("settings")
    if settings is None:
        settings = {}
    if not isinstance(settings, dict):
        raise ConfigError("'settings' must be a mapping if provided")
    interval = int(settings.get("default_refresh_interval", default_interval))

    loaded = LoadedConfig(settings=dict(settings))
    loaded.sources = [_coerce_source(e, interval) for e in _mapping_list(data, "sources")]
    loaded.pirs = [_coerce_pir(e, i) for i, e in enumerate(_mapping_list(data, "pirs"), start=1)]
    loaded.proxies = [_coerce_proxy(e) for e in _mapping_list(data, "proxies")]

    names = [s.name for s in loaded.sources]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate source names: {duplicates}")
    return loaded

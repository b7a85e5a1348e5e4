"""Feed retrieval (proxy strategies) and RSS/Atom parsing."""

from .http import (
    AuthenticatedProxy,
    DirectStrategy,
    FeedFetcher,
    JsonEnvelopeProxy,
    PrefixProxy,
    ProxyStrategy,
    build_strategies,
)
from .rss import fetch_feed, parse_feed, probe_feed

__all__ = [
    "AuthenticatedProxy",
    "DirectStrategy",
    "FeedFetcher",
    "JsonEnvelopeProxy",
    "PrefixProxy",
    "ProxyStrategy",
    "build_strategies",
    "fetch_feed",
    "parse_feed",
    "probe_feed",
]

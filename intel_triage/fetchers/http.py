from __future__ import annotations

import base64
import binascii
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote, unquote, urlparse

import requests

from ..errors import FetchError
from ..utils.logging import get_logger

logger = get_logger("triage.fetchers.http")


_DEFAULT_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/127.0.0.0 Safari/537.36"
    ),
    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*;q=0.8",
}


def _validated_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise FetchError(url, f"Invalid URL for feed fetch: {url}")
    return url


@dataclass(slots=True)
class ProxyRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    json: Optional[Dict[str, Any]] = None


class StrategyFailed(Exception):
    """One strategy could not deliver the feed; the next one is tried."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ProxyStrategy:
    """How to reach a feed URL: which request to send and how to read the answer."""

    name = "proxy"

    def build_request(self, url: str) -> ProxyRequest:
        raise NotImplementedError

    def decode(self, response: requests.Response) -> str:
        return response.text

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class DirectStrategy(ProxyStrategy):
    name = "direct"

    def build_request(self, url: str) -> ProxyRequest:
        return ProxyRequest("GET", url)


class PrefixProxy(ProxyStrategy):
    """Forwarding proxy addressed as ``prefix + quote(url)``; body is the feed."""

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self.name = urlparse(prefix).netloc or prefix

    def build_request(self, url: str) -> ProxyRequest:
        return ProxyRequest("GET", self.prefix + quote(url, safe=""))


class JsonEnvelopeProxy(PrefixProxy):
    """Proxy that wraps the feed in ``{"contents": ...}``.

    Some upstreams hand back the payload as a ``data:`` URL; base64 data URLs
    are decoded, anything else in ``contents`` is used as-is.
    """

    def decode(self, response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError as exc:
            raise StrategyFailed(f"envelope is not JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise StrategyFailed("envelope is not a JSON object")
        contents = payload.get("contents")
        if not isinstance(contents, str) or not contents:
            raise StrategyFailed("envelope has no contents")
        if contents.startswith("data:"):
            return decode_data_url(contents)
        return contents


class AuthenticatedProxy(ProxyStrategy):
    """Own edge function: POST ``{"url": ...}`` with a bearer token."""

    def __init__(self, endpoint: str, token: str) -> None:
        self.endpoint = endpoint
        self.token = token
        self.name = urlparse(endpoint).netloc or endpoint

    def build_request(self, url: str) -> ProxyRequest:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return ProxyRequest("POST", self.endpoint, headers=headers, json={"url": url})


def decode_data_url(value: str) -> str:
    """Return the text payload of a ``data:`` URL."""
    header, sep, data = value.partition(",")
    if not sep:
        raise StrategyFailed("malformed data URL")
    if header.endswith(";base64"):
        try:
            raw = base64.b64decode(data, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise StrategyFailed(f"bad base64 payload: {exc}") from exc
        charset = "utf-8"
        for part in header[5:].split(";"):
            if part.startswith("charset="):
                charset = part[len("charset="):] or charset
        return raw.decode(charset, errors="replace")
    return unquote(data)


def build_strategies(proxies: Sequence[Any]) -> List[ProxyStrategy]:
    """Turn proxy specs from the YAML config into strategy objects."""
    strategies: List[ProxyStrategy] = []
    for spec in proxies:
        if spec.type == "prefix":
            strategies.append(PrefixProxy(spec.url))
        elif spec.type == "json_envelope":
            strategies.append(JsonEnvelopeProxy(spec.url))
        elif spec.type == "authenticated":
            strategies.append(AuthenticatedProxy(spec.url, spec.token))
        else:
            raise ValueError(f"Unknown proxy type: {spec.type}")
    return strategies or [DirectStrategy()]


class FeedFetcher:
    """Retrieve raw feed documents through an ordered list of strategies.

    The strategy that last succeeded is tried first on the next call and the
    rest follow in list order, wrapping around. That index is the only shared
    mutable state and is read and written under a lock, so one fetcher can be
    used from several scheduler threads.
    """

    def __init__(
        self,
        strategies: Optional[Sequence[ProxyStrategy]] = None,
        *,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.strategies: List[ProxyStrategy] = list(strategies or []) or [DirectStrategy()]
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(_DEFAULT_HEADERS)
        self._lock = threading.Lock()
        self._preferred = 0

    @property
    def preferred_index(self) -> int:
        with self._lock:
            return self._preferred

    def _order(self) -> List[int]:
        with self._lock:
            start = self._preferred
        n = len(self.strategies)
        return [(start + i) % n for i in range(n)]

    def _remember(self, index: int) -> None:
        with self._lock:
            self._preferred = index

    def _attempt(self, strategy: ProxyStrategy, url: str) -> str:
        req = strategy.build_request(url)
        try:
            resp = self.session.request(
                req.method,
                req.url,
                headers=req.headers or None,
                json=req.json,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StrategyFailed(f"{type(exc).__name__}: {exc}") from exc
        if resp.status_code in (401, 403):
            raise StrategyFailed(f"proxy rejected credentials ({resp.status_code})", resp.status_code)
        if resp.status_code >= 400:
            raise StrategyFailed(f"HTTP {resp.status_code}", resp.status_code)
        body = strategy.decode(resp)
        if not body or not body.strip():
            raise StrategyFailed("empty response body", resp.status_code)
        return body

    def fetch(self, url: str) -> str:
        """Return the feed body for ``url`` or raise ``FetchError``."""
        url = _validated_url(url)
        last: Optional[StrategyFailed] = None
        for index in self._order():
            strategy = self.strategies[index]
            logger.debug("Fetching %s via %s", url, strategy.name)
            try:
                body = self._attempt(strategy, url)
            except StrategyFailed as exc:
                logger.warning("Fetch via %s failed for %s: %s", strategy.name, url, exc)
                last = exc
                continue
            self._remember(index)
            logger.info("Fetched %s via %s (%d bytes)", url, strategy.name, len(body))
            return body

        message = f"all {len(self.strategies)} fetch strategies failed"
        if last is not None:
            message = f"{message}; last error: {last}"
        raise FetchError(url, message, status=last.status if last else None)

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """Small process-local key/value cache with per-entry expiry.

    ``ttl <= 0`` disables caching entirely; every lookup misses.
    """

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._data: Dict[Hashable, Tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            hit = self._data.get(key)
            if hit is None:
                return default
            expires_at, value = hit
            if expires_at <= self._clock():
                del self._data[key]
                return default
            return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.ttl if ttl is None else ttl
        if ttl <= 0:
            return
        with self._lock:
            self._data[key] = (self._clock() + ttl, value)

    def get_or_set(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        sentinel = object()
        value = self.get(key, sentinel)
        if value is sentinel:
            value = loader()
            self.set(key, value)
        return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._data.clear()
            else:
                self._data.pop(key, None)

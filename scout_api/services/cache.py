from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from typing import Any


def cache_key(name: str, params: dict[str, Any] | None = None) -> str:
    return f"{name}:{json.dumps(params or {}, sort_keys=True, default=str)}"


class TTLCache:
    """In-process cache whose entries expire ``ttl_seconds`` after being set."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                self.misses += 1
                return None
            expires_at, value = item
            if self.clock() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = (self.clock() + ttl, value)

    def invalidate(self, prefix: str = "") -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            doomed = [k for k, (exp, _) in self._entries.items() if now >= exp]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)

"""In-memory response cache with lazy per-entry expiry."""

from __future__ import annotations

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from .types import AIRequest


@dataclass
class CacheEntry:
    value: Any
    expires_at: Optional[float] = None
    tags: Tuple[str, ...] = ()

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    evictions: int
    hit_rate: float


def make_key(provider: str, request: AIRequest) -> str:
    """Stable key from provider and generation parameters; the request id is ignored."""
    payload = {
        "provider": provider,
        "prompt": request.prompt,
        "model": request.model,
        **request.generation_options(),
    }
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()
    return f"response:{provider}:{digest}"


class ResponseCache:
    """Thread-safe key/value cache; expired entries are evicted when touched."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                self._evictions += 1
                return None
            self._hits += 1
            return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at, tags=tuple(tags or ()))

    def delete(self, key: str) -> None:
        with self._lock:
            if self._entries.pop(key, None) is not None:
                self._evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._evictions += len(self._entries)
            self._entries.clear()

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.expired(self._clock()):
                del self._entries[key]
                self._evictions += 1
                return False
            return True

    def get_tags(self, key: str) -> Tuple[str, ...]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expired(self._clock()):
                return ()
            return entry.tags

    def get_stats(self) -> CacheStats:
        with self._lock:
            lookups = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._entries),
                evictions=self._evictions,
                hit_rate=self._hits / lookups if lookups else 0.0,
            )

    def cleanup(self) -> int:
        """Sweep every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
            self._evictions += len(expired)
            return len(expired)

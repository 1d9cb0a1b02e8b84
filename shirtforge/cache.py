from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class _Entry:
    value: Any
    stored_at: float
    ttl_seconds: float


class TTLCache:
    """In-process expiring map shared by the gateway, catalog, product and rate-limit caches.

    An entry stored at ``t0`` with a ttl of ``T`` is served while ``now - t0 <= T``
    and evicted on the first read after that. Writes are last-write-wins; there is
    no locking because every caller runs on the same event loop.
    """

    def __init__(
        self,
        *,
        default_ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() - entry.stored_at > entry.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def peek(self, key: str) -> Any | None:
        """Return a value even if it has expired, without touching hit counters."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def stored_at(self, key: str) -> float | None:
        entry = self._entries.get(key)
        return entry.stored_at if entry is not None else None

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = _Entry(value=value, stored_at=self._clock(), ttl_seconds=ttl)

    def replace(self, key: str, value: Any) -> bool:
        """Swap the value of a live entry, keeping its original timestamp and ttl."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.value = value
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def purge_expired(self) -> int:
        """Drop every entry past its ttl, not only the ones being read."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.stored_at > entry.ttl_seconds]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "keys": self.keys(),
            "hits": self.hits,
            "misses": self.misses,
            "defaultTtlSeconds": self.default_ttl_seconds,
        }

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheKey:
    """Identity of a cached response: the kind of bundle plus the filters it was built for."""

    kind: str
    biller: str = "all"
    warehouse: str = "all"
    date_range: str = "30d"


@dataclass
class _Entry:
    value: Any
    stored_at: float


class ResponseCache:
    """Bounded in-memory cache with least-recently-used eviction and a TTL.

    ``clock`` returns seconds on a monotonic scale; tests pass a fake one.
    A ``ttl`` of ``None`` keeps entries until they are evicted or cleared.
    """

    def __init__(
        self,
        max_entries: int = 128,
        ttl: Optional[float] = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl = ttl
        self.clock = clock
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: _Entry, max_age: Optional[float]) -> bool:
        return max_age is not None and self.clock() - entry.stored_at > max_age

    def get(self, key: CacheKey) -> Any:
        entry = self._entries.get(key)
        if entry is None or self._expired(entry, self.ttl):
            if entry is not None:
                del self._entries[key]
            self.misses += 1
            logger.debug("Cache miss: %s", key)
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        logger.debug("Cache hit: %s", key)
        return entry.value

    def set(self, key: CacheKey, value: Any) -> None:
        self._entries[key] = _Entry(value, self.clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache evicted: %s", evicted)

    def delete(self, key: CacheKey) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def is_fresh(self, key: CacheKey, max_age: Optional[float] = None) -> bool:
        """True when ``key`` is cached and younger than ``max_age`` (default: the TTL)."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        return not self._expired(entry, self.ttl if max_age is None else max_age)

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
            "keys": [asdict(key) for key in self._entries],
        }

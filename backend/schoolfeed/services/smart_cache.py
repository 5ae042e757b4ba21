"""
In-process TTL cache for recomputed feed lists

Absorbs redundant refresh calls issued within a few seconds of each other.
Entries expire lazily on read once `now - timestamp > ttl`.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

from schoolfeed.core.logging_config import logger

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: float
    ttl: float


class SmartCache(Generic[T]):
    """
    Keyed TTL cache.

    Usage:
        cache = SmartCache(default_ttl=10.0)
        cache.set("notifications", items)
        items = cache.get("notifications")  # None once expired
    """

    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.time):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}

    def set(self, key: str, data: T, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(
            data=data,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp > entry.ttl:
            del self._entries[key]
            logger.debug(f"[SmartCache] expired: {key}")
            return None
        return entry.data

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """Drop every expired entry, returns how many were removed"""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.timestamp > entry.ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

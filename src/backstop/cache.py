"""
In-memory read cache with TTL and explicit invalidation.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass

import structlog

from backstop.clock import Clock, now_ms

log = structlog.get_logger(__name__)

V = t.TypeVar("V")

DEFAULT_CACHE_TTL_MS = 300_000


@dataclass(frozen=True)
class CacheEntry(t.Generic[V]):
    """
    Cached value and the time it was stored.

    Parameters
    ----------
    key : str
        Cache key.
    value : V
        Cached value.
    stored_at_ms : int
        Epoch milliseconds when the value was stored.
    """

    key: str
    value: V
    stored_at_ms: int

    def age_ms(self, now: int) -> int:
        return now - self.stored_at_ms


@dataclass(frozen=True)
class CacheStats:
    size: int
    keys: list[str]
    oldest_entry_age_ms: int | None
    stale_unpurged_count: int


class ResponseCache(t.Generic[V]):
    """
    Key/value store whose entries expire ``ttl_ms`` after being stored.

    Stale entries are purged lazily, when ``get`` touches them. ``stats``
    reports stale entries that nobody has read yet without purging them.
    """

    def __init__(self, *, ttl_ms: int = DEFAULT_CACHE_TTL_MS, clock: Clock = now_ms) -> None:
        """
        Initialize an empty cache.

        Parameters
        ----------
        ttl_ms : int, optional
            Maximum entry age in milliseconds.
        clock : typing.Callable[[], int], optional
            Millisecond time source.
        """
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive")
        self._ttl_ms = ttl_ms
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    def _is_stale(self, entry: CacheEntry[V], now: int) -> bool:
        return entry.age_ms(now) > self._ttl_ms

    def get(self, key: str) -> V | None:
        """
        Return the fresh value stored under ``key``.

        Parameters
        ----------
        key : str
            Cache key.

        Returns
        -------
        V | None
            Cached value, or ``None`` when missing or stale. A stale entry is
            deleted.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_stale(entry, self._clock()):
            log.debug(event="Purging stale cache entry", key=key)
            del self._entries[key]
            return None
        log.debug(event="Cache hit", key=key)
        return entry.value

    def set(self, key: str, value: V) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, stored_at_ms=self._clock())

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        if self._entries:
            log.debug(event="Clearing response cache", size=len(self._entries))
        self._entries.clear()

    def stats(self) -> CacheStats:
        now = self._clock()
        entries = list(self._entries.values())
        return CacheStats(
            size=len(entries),
            keys=[entry.key for entry in entries],
            oldest_entry_age_ms=max((entry.age_ms(now) for entry in entries), default=None),
            stale_unpurged_count=sum(1 for entry in entries if self._is_stale(entry, now)),
        )

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

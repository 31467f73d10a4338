"""
dealpilot - Result Cache

Bounded, time-expiring store for completed analysis results.

Keys are built from (subject id, operation, optional params). Expiry is lazy:
validity is checked on read, and a cleanup pass runs whenever a ``set`` pushes
the store over its ceiling. Cleanup drops expired entries first, then the
oldest-inserted ones (TTL-then-FIFO, not LRU: reads never refresh an entry).
"""

from __future__ import annotations

import base64
import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .logging import get_logger

__all__ = [
    "CacheEntry",
    "CacheInfo",
    "CacheStats",
    "ResultCache",
    "make_cache_key",
]

logger = get_logger(__name__)


EntryId = Tuple[str, str, Optional[str]]


def _encode_params(params: Optional[Any]) -> Optional[str]:
    """Canonical JSON (sorted keys, compact separators), base64url encoded."""
    if params is None:
        return None
    param_string = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return base64.urlsafe_b64encode(param_string.encode("utf-8")).decode("ascii")


def make_cache_key(subject_id: str, operation: str, params: Optional[Any] = None) -> str:
    """
    Build the printable key for a cached result, as used in logs.

    Equal parameter objects produce the same key regardless of insertion
    order. The store itself is indexed by the (subject, operation, params)
    tuple, since ids containing "_" can join to the same string.
    """
    return _printable(_entry_id(subject_id, operation, params))


def _entry_id(subject_id: str, operation: str, params: Optional[Any]) -> EntryId:
    return (subject_id, operation, _encode_params(params))


def _printable(entry_id: EntryId) -> str:
    return "_".join(part for part in entry_id if part is not None)


@dataclass(frozen=True)
class CacheEntry:
    """A cached result. Replaced wholesale on re-set, never mutated."""

    key: str
    subject_id: str
    operation: str
    value: Any
    created_at: float
    expires_after: float

    def is_valid(self, now: float) -> bool:
        return now - self.created_at < self.expires_after


@dataclass
class CacheStats:
    """Read counters for the cache."""

    hits: int = 0
    misses: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage rounded to two decimals."""
        total = self.total_requests
        if total == 0:
            return 0.0
        return round(self.hits / total * 100, 2)

    def to_dict(self) -> Dict[str, int]:
        return {"hits": self.hits, "misses": self.misses}


@dataclass(frozen=True)
class CacheInfo:
    """Diagnostic snapshot evaluated against the clock at call time."""

    total: int
    active: int
    expired: int
    stats: Dict[str, int] = field(default_factory=dict)
    hit_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "active": self.active,
            "expired": self.expired,
            "stats": dict(self.stats),
            "hit_rate": f"{self.hit_rate:.2f}%",
        }


class ResultCache:
    """
    Process-local result store with per-entry TTL and an entry-count ceiling.

    Create one per client session and pass it to whatever needs it. All
    operations take an internal lock, so the store may be shared with worker
    threads as well as the event loop.

    Example:
        >>> cache = ResultCache(ttl=300, max_entries=50)
        >>> cache.set("deal-1", "summarize", {"text": "A"})
        >>> cache.get("deal-1", "summarize")
        {'text': 'A'}
    """

    make_key = staticmethod(make_cache_key)

    def __init__(
        self,
        ttl: float = 300.0,
        max_entries: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[EntryId, CacheEntry] = {}
        self._stats = CacheStats()
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ResultCache":
        return cls(ttl=settings.cache_ttl, max_entries=settings.cache_max_entries, **kwargs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def get(self, subject_id: str, operation: str, params: Optional[Any] = None) -> Optional[Any]:
        """Return the cached value, or None on a miss or an expired entry."""
        entry_id = _entry_id(subject_id, operation, params)
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is not None and entry.is_valid(self._clock()):
                self._stats.hits += 1
                logger.debug("Cache hit", cache_key=entry.key)
                return entry.value
            self._stats.misses += 1
            logger.debug("Cache miss", cache_key=_printable(entry_id), expired=entry is not None)
            return None

    def set(
        self,
        subject_id: str,
        operation: str,
        value: Any,
        params: Optional[Any] = None,
        ttl: Optional[float] = None,
    ) -> None:
        """Insert or replace an entry; trims the store if it grew past the ceiling."""
        if ttl is None:
            ttl = self.ttl
        elif ttl <= 0:
            raise ValueError("ttl must be positive")

        entry_id = _entry_id(subject_id, operation, params)
        with self._lock:
            # Re-insert so dict order tracks creation order.
            self._entries.pop(entry_id, None)
            self._entries[entry_id] = CacheEntry(
                key=_printable(entry_id),
                subject_id=subject_id,
                operation=operation,
                value=value,
                created_at=self._clock(),
                expires_after=ttl,
            )
            if len(self._entries) > self.max_entries:
                self.cleanup()

    def invalidate(
        self,
        subject_id: Optional[str] = None,
        operation: Optional[str] = None,
        params: Optional[Any] = None,
    ) -> int:
        """
        Drop entries and return how many were removed.

        - no subject: clear everything
        - subject only: every entry recorded for that subject
        - subject and operation: the single matching entry
        """
        with self._lock:
            if subject_id is None:
                removed = len(self._entries)
                self._entries.clear()
            elif operation is None:
                doomed = [entry_id for entry_id in self._entries if entry_id[0] == subject_id]
                for entry_id in doomed:
                    del self._entries[entry_id]
                removed = len(doomed)
            else:
                entry_id = _entry_id(subject_id, operation, params)
                removed = 1 if self._entries.pop(entry_id, None) is not None else 0

        logger.debug("Cache invalidated", subject_id=subject_id, operation=operation, removed=removed)
        return removed

    def cleanup(self) -> int:
        """Remove expired entries, then the oldest until at or under the ceiling."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if not e.is_valid(now)]
            for entry_id in expired:
                del self._entries[entry_id]

            evicted = 0
            overflow = len(self._entries) - self.max_entries
            if overflow > 0:
                # Stable sort keeps insertion order for equal timestamps.
                oldest = sorted(self._entries.items(), key=lambda item: item[1].created_at)[:overflow]
                for entry_id, _ in oldest:
                    del self._entries[entry_id]
                evicted = len(oldest)

        if expired or evicted:
            logger.debug("Cache cleanup", expired=len(expired), evicted=evicted)
        return len(expired) + evicted

    def info(self) -> CacheInfo:
        with self._lock:
            now = self._clock()
            total = len(self._entries)
            active = sum(1 for e in self._entries.values() if e.is_valid(now))
            return CacheInfo(
                total=total,
                active=active,
                expired=total - active,
                stats=self._stats.to_dict(),
                hit_rate=self._stats.hit_rate,
            )

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .models import Record

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]

TIER_BROWSER = "browser"
TIER_OS = "os"
TIER_RESOLVER = "resolver"
TIERS = (TIER_BROWSER, TIER_OS, TIER_RESOLVER)


class TTLCache:
    """
    Thread-safe in-memory cache where each entry carries its own TTL.

    Inputs:
        now: Optional callable returning current time in seconds (float).
            Defaults to time.time; tests pass a fake clock.
        max_entries: Soft cap on stored entries.
    Outputs:
        TTLCache instance

    Notes:
        All dictionary operations are synchronized with an RLock, so
        concurrent access to independent keys never conflicts and same-key
        writes resolve last-write-wins.
        Expiry is passive: entries are dropped when read at or after their
        expiry, and opportunistically on set().

    Example use:
        >>> cache = TTLCache()
        >>> cache.set(("example.com", "A"), 60, "payload")
        >>> cache.get(("example.com", "A"))
        'payload'
    """

    def __init__(
        self,
        *,
        now: Optional[Callable[[], float]] = None,
        max_entries: int = 4096,
    ) -> None:
        self._now: Callable[[], float] = now or time.time
        self._max_entries = max(1, int(max_entries))
        self._store: Dict[CacheKey, Tuple[float, Any]] = {}
        self._lock = threading.RLock()

    def get(self, key: CacheKey) -> Any | None:
        """
        Retrieves an item from the cache.

        Inputs:
            key: The key to retrieve.

        Outputs:
            The cached value, or None if the key is not found or has expired.
        """
        now = self._now()
        with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None
            expiry, data = entry
            if now >= expiry:
                self._store.pop(key, None)
                return None
            return data

    def set(self, key: CacheKey, ttl: int, data: Any) -> None:
        """
        Adds an item to the cache with a specified TTL.

        Inputs:
            key: The key to store the value under.
            ttl: The Time-To-Live in seconds; values <= 0 are not retained.
            data: The value to store.
        Outputs:
            None
        """
        ttl_int = max(0, int(ttl))
        now = self._now()
        with self._lock:
            self._purge_expired_locked(now=now)
            if ttl_int == 0:
                self._store.pop(key, None)
                return
            if len(self._store) >= self._max_entries and key not in self._store:
                # Best-effort eviction of the oldest inserted entry.
                victim = next(iter(self._store))
                self._store.pop(victim, None)
            self._store[key] = (now + ttl_int, data)

    def _purge_expired_locked(self, now: float) -> None:
        for k, (exp, _) in list(self._store.items()):
            if exp <= now:
                del self._store[k]

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


@dataclass(frozen=True)
class CacheEntry:
    """Cached answer owned by a single tier.

    Inputs:
      - key: (domain, record_type).
      - records: Answer records.
      - ttl_seconds: TTL the entry was stored with.
      - inserted_at: Clock value (seconds) at insertion.
    """

    key: CacheKey
    records: Tuple[Record, ...]
    ttl_seconds: int
    inserted_at: float

    def remaining_seconds(self, now: float) -> int:
        return max(0, int(self.inserted_at + self.ttl_seconds - now))


class TieredCache:
    """Browser, OS and resolver cache tiers sharing one contract.

    Inputs:
      - now: Optional clock shared by all tiers (seconds, float).
      - max_entries: Soft cap applied to each tier.

    Outputs:
      - Long-lived store created once per process (or per test) and injected
        into the orchestrator. Tiers never share entries; each successful
        resolution writes its own copy to every tier it populates.
    """

    def __init__(
        self,
        *,
        now: Optional[Callable[[], float]] = None,
        max_entries: int = 4096,
    ) -> None:
        self._now: Callable[[], float] = now or time.time
        self._tiers: Dict[str, TTLCache] = {
            tier: TTLCache(now=self._now, max_entries=max_entries) for tier in TIERS
        }

    @staticmethod
    def key(domain: str, record_type: str) -> CacheKey:
        return (str(domain).lower().rstrip("."), str(record_type).upper())

    def tier(self, name: str) -> TTLCache:
        try:
            return self._tiers[name]
        except KeyError:
            raise ValueError(f"unknown cache tier {name!r}") from None

    def now(self) -> float:
        return self._now()

    def get(self, tier: str, domain: str, record_type: str) -> Optional[CacheEntry]:
        """Brief: Look up (domain, record_type) in one tier.

        Outputs:
          - CacheEntry when present and unexpired, else None.
        """

        entry = self.tier(tier).get(self.key(domain, record_type))
        logger.debug(
            "%s cache %s for %s/%s",
            tier,
            "hit" if entry is not None else "miss",
            domain,
            record_type,
        )
        return entry

    def set(
        self,
        tier: str,
        domain: str,
        record_type: str,
        records: Iterable[Record],
        ttl: int,
    ) -> CacheEntry:
        """Brief: Store records in one tier under (domain, record_type)."""

        key = self.key(domain, record_type)
        entry = CacheEntry(
            key=key,
            records=tuple(records),
            ttl_seconds=max(0, int(ttl)),
            inserted_at=self._now(),
        )
        self.tier(tier).set(key, entry.ttl_seconds, entry)
        return entry

    def clear(self) -> None:
        for cache in self._tiers.values():
            cache.clear()

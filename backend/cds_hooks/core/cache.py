"""
In-memory TTL cache shared by the service catalog and the hook executor
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict

V = TypeVar("V")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(BaseModel, Generic[V]):
    """Cache entry; replaced as a whole, never patched"""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    value: V
    cached_at: datetime


class TTLCache(Generic[V]):
    """
    Key/value cache whose entries go stale after ``ttl``

    ``get`` only returns fresh values. ``peek`` ignores age so callers can
    fall back to a stale value when a refresh fails. Expired entries stay
    until ``prune`` or ``invalidate`` removes them.
    """

    def __init__(self, ttl: Union[timedelta, float], clock: Optional[Clock] = None):
        self.ttl = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)
        self._clock = clock or utc_now
        self._entries: Dict[Hashable, CacheEntry[V]] = {}

    def now(self) -> datetime:
        return self._clock()

    def _is_fresh(self, entry: CacheEntry[V]) -> bool:
        return self.now() - entry.cached_at < self.ttl

    def get(self, key: Hashable) -> Optional[V]:
        """Return the value if present and younger than the TTL"""
        entry = self._entries.get(key)
        if entry is None or not self._is_fresh(entry):
            return None
        return entry.value

    def peek(self, key: Hashable) -> Optional[V]:
        """Return the value regardless of age"""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def is_fresh(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._is_fresh(entry)

    def set(self, key: Hashable, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, cached_at=self.now())

    def age(self, key: Hashable) -> Optional[timedelta]:
        """Age of the entry, or None when the key is absent"""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return self.now() - entry.cached_at

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when no key is given"""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def prune(self) -> int:
        """Remove expired entries and return how many were dropped"""
        expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.is_fresh(key)

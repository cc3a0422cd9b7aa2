"""Small in-process TTL cache shared by the credential and category resolvers."""

import time
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")

_MISSING = object()


class TTLCache(Generic[V]):
    """
    Key/value cache whose entries expire a fixed number of seconds after
    they were stored.

    The clock is injectable so tests can move time forward without sleeping.
    A TTL of 0 disables caching entirely.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[V, float]] = {}

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        value = self.lookup(key)
        return default if value is _MISSING else value

    def lookup(self, key: Hashable):
        """Return the cached value, or the module sentinel when absent/expired.

        Lets callers cache ``None`` as a legitimate value.
        """
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return _MISSING
        return value

    def set(self, key: Hashable, value: V) -> None:
        if self.ttl == 0:
            return
        self._entries[key] = (value, self._clock() + self.ttl)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.lookup(key) is not _MISSING

    def __len__(self) -> int:
        return len(self._entries)


def is_missing(value) -> bool:
    return value is _MISSING

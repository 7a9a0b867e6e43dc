"""TTL key-value store backing the result cache and the scan job store.

The detective core only needs get/set/delete with a per-key TTL and a prefix
listing. MemoryStore is the in-process implementation; anything with the same
shape (a Redis client wrapper, a transient table) can be injected instead.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple


class KeyValueStore(Protocol):
    """Key-value storage with TTL support."""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl: float) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> List[str]: ...

    def purge_expired(self) -> int: ...


class MemoryStore:
    """In-memory TTL store. Last writer wins per key."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        now = self._clock()
        with self._lock:
            return [
                key for key, (_, expires_at) in self._data.items()
                if key.startswith(prefix) and now < expires_at
            ]

    def purge_expired(self) -> int:
        """Drop every expired key. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._data.items() if now >= expires_at]
            for key in expired:
                del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self.keys())

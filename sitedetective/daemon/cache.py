"""Result cache for provider analyses and file listings.

Payloads are serialized to JSON at write time. Anything larger than the
compression threshold is stored zlib-compressed; the choice is recorded in the
payload type so reads never have to guess.
"""

import json
import time
import zlib
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional, Tuple, Union

from loguru import logger

from .metrics import MetricsCollector
from .store import KeyValueStore


@dataclass(frozen=True)
class RawPayload:
    data: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class CompressedPayload:
    data: bytes
    original_size: int

    @property
    def size(self) -> int:
        return len(self.data)


Payload = Union[RawPayload, CompressedPayload]


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Payload
    cached_at: float
    ttl: float
    hit_count: int = 0

    @property
    def compressed(self) -> bool:
        return isinstance(self.payload, CompressedPayload)

    def expires_at(self) -> float:
        return self.cached_at + self.ttl


def encode_payload(value: Any, threshold: int) -> Payload:
    """Serialize a value, compressing it when it exceeds the threshold."""
    text = json.dumps(value, separators=(',', ':'), default=str)
    encoded = text.encode('utf-8')
    if len(encoded) > threshold:
        return CompressedPayload(data=zlib.compress(encoded), original_size=len(encoded))
    return RawPayload(data=text)


def decode_payload(payload: Payload) -> Any:
    if isinstance(payload, CompressedPayload):
        return json.loads(zlib.decompress(payload.data).decode('utf-8'))
    return json.loads(payload.data)


class ResultCache:
    """Keyed, TTL-bound, size-aware cache with hit counting."""

    KEY_PREFIX = "cache:"

    def __init__(self,
                 store: KeyValueStore,
                 compress_threshold: int = 50_000,
                 default_ttl: float = 3600,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize result cache.

        Args:
            store: Backing TTL key-value store
            compress_threshold: Serialized size in bytes above which payloads are compressed
            default_ttl: TTL used when set() is called without one
            metrics: Optional metrics sink
            clock: Time source, injectable for tests
        """
        self.store = store
        self.compress_threshold = compress_threshold
        self.default_ttl = default_ttl
        self.metrics = metrics
        self._clock = clock

    def _store_key(self, key: str) -> str:
        return self.KEY_PREFIX + key

    def get(self, key: str) -> Tuple[Optional[Any], bool]:
        """Return (payload, found). Reads count hits but never extend expiry."""
        entry: Optional[CacheEntry] = self.store.get(self._store_key(key))
        if entry is None:
            self._count("cache.miss")
            return None, False

        remaining = entry.expires_at() - self._clock()
        if remaining <= 0:
            self.store.delete(self._store_key(key))
            self._count("cache.miss")
            return None, False

        try:
            value = decode_payload(entry.payload)
        except (ValueError, zlib.error) as e:
            logger.warning(f"Dropping unreadable cache entry {key}: {e}")
            self.store.delete(self._store_key(key))
            self._count("cache.miss")
            return None, False

        self.store.set(
            self._store_key(key),
            replace(entry, hit_count=entry.hit_count + 1),
            remaining
        )
        self._count("cache.hit")
        return value, True

    def set(self, key: str, payload: Any, ttl: Optional[float] = None) -> CacheEntry:
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(
            key=key,
            payload=encode_payload(payload, self.compress_threshold),
            cached_at=self._clock(),
            ttl=ttl
        )
        if entry.compressed:
            logger.debug(
                f"Compressed cache entry {key}: "
                f"{entry.payload.original_size} -> {entry.payload.size} bytes"
            )
            self._count("cache.compressed")
        self.store.set(self._store_key(key), entry, ttl)
        return entry

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Peek at an entry without counting a hit."""
        return self.store.get(self._store_key(key))

    def delete(self, key: str) -> bool:
        return self.store.delete(self._store_key(key))

    def sweep(self) -> int:
        """Remove entries whose TTL has elapsed. Called by an external scheduler."""
        now = self._clock()
        removed = 0
        for store_key in self.store.keys(self.KEY_PREFIX):
            entry = self.store.get(store_key)
            if entry is not None and entry.expires_at() <= now:
                self.store.delete(store_key)
                removed += 1
        removed += self.store.purge_expired()
        if removed:
            logger.debug(f"Cache sweep removed {removed} entries")
        return removed

    def stats(self) -> Dict[str, Any]:
        entries = [self.store.get(k) for k in self.store.keys(self.KEY_PREFIX)]
        entries = [e for e in entries if e is not None]
        return {
            'entries': len(entries),
            'compressed': sum(1 for e in entries if e.compressed),
            'total_hits': sum(e.hit_count for e in entries),
            'bytes': sum(e.payload.size for e in entries)
        }

    def _count(self, name: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(name)

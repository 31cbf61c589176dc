"""
In-process key/value store with per-bucket TTL expiration.

Each bucket maps a key to a list of byte blobs and owns a reaper thread that
sleeps until the earliest expiration and evicts it. Fresh keys get a default
expiration one year out; ``expire``/``setex`` reposition a key.

Usage:
    db = KVDatabase("cache")
    bucket = db.get_bucket("Note")
    bucket.setex("_id:5f9f...", [blob], ttl=60)
    blobs = bucket.get("_id:5f9f...")
    db.purge()
"""

from __future__ import annotations

import bisect
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from ..core.errors import KeyNotFoundError
from .locks import RWLock

logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_SECONDS = 365 * 24 * 60 * 60
IDLE_INTERVAL_SECONDS = 1.0


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Expiration queue
# =============================================================================


class ExpirationQueue:
    """
    Keys ordered by expiration time, earliest first.

    Not thread-safe; the owning bucket guards it with a lock.
    """

    def __init__(self):
        self._items: list[tuple[float, str]] = []
        self._index: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: str) -> bool:
        return key in self._index

    def get(self, key: str) -> Optional[float]:
        return self._index.get(key)

    def add(self, key: str, expires_at: float) -> None:
        if key in self._index:
            self.remove(key)
        bisect.insort(self._items, (expires_at, key))
        self._index[key] = expires_at

    def update(self, key: str, expires_at: float) -> None:
        self.add(key, expires_at)

    def remove(self, key: str) -> bool:
        expires_at = self._index.pop(key, None)
        if expires_at is None:
            return False
        pos = bisect.bisect_left(self._items, (expires_at, key))
        if pos < len(self._items) and self._items[pos] == (expires_at, key):
            del self._items[pos]
        return True

    def peek(self) -> Optional[tuple[str, float]]:
        if not self._items:
            return None
        expires_at, key = self._items[0]
        return key, expires_at

    def snapshot(self) -> list[tuple[str, float]]:
        return [(key, expires_at) for expires_at, key in self._items]

    def clear(self) -> None:
        self._items.clear()
        self._index.clear()


# =============================================================================
# Bucket
# =============================================================================


@dataclass
class BucketStats:
    """Point-in-time statistics of a bucket."""
    entries: int = 0
    hits: int = 0
    misses: int = 0
    avg_expiration_time: Optional[str] = None
    earliest_expiration_time: Optional[str] = None
    latest_expiration_time: Optional[str] = None
    expiration_queue_size: int = 0
    total_size: int = 0
    avg_obj_size: float = 0.0

    def to_dict(self) -> dict:
        return {
            "entries": self.entries,
            "hits": self.hits,
            "misses": self.misses,
            "avgExpirationTime": self.avg_expiration_time,
            "earliestExpirationTime": self.earliest_expiration_time,
            "latestExpirationTime": self.latest_expiration_time,
            "expirationQueueSize": self.expiration_queue_size,
            "totalSize": self.total_size,
            "avgObjSize": self.avg_obj_size,
        }


class Bucket:
    """
    A named map of key -> list of blobs with its own TTL reaper.

    Lock order is always data lock, then queue lock.
    """

    def __init__(
        self,
        name: str,
        clock: Callable[[], float] = time.time,
        idle_interval: float = IDLE_INTERVAL_SECONDS,
    ):
        self.name = name
        self._clock = clock
        self._idle_interval = idle_interval

        self._data: dict[str, list[bytes]] = {}
        self._data_lock = RWLock()
        self._queue = ExpirationQueue()
        self._queue_lock = RWLock()

        self._counter_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

        self._wakeup = threading.Condition()
        self._closed = False
        self._reaper = threading.Thread(
            target=self._reap_loop,
            name=f"kv-reaper-{name}",
            daemon=True,
        )
        self._reaper.start()

    # --- Public API ---

    def get(self, key: str) -> Optional[list[bytes]]:
        """Return the blobs for key, or None when missing or already expired."""
        with self._data_lock.read():
            value = self._data.get(key)
            if value is not None:
                with self._queue_lock.read():
                    expires_at = self._queue.get(key)
                if expires_at is not None and expires_at <= self._clock():
                    value = None
            result = list(value) if value is not None else None

        with self._counter_lock:
            if result is None:
                self._misses += 1
            else:
                self._hits += 1
        return result

    def set(self, key: str, value: Union[bytes, list[bytes]]) -> None:
        """Store value; a fresh key gets the default one-year expiration."""
        blobs = [value] if isinstance(value, (bytes, bytearray)) else list(value)
        with self._data_lock.write():
            is_new = key not in self._data
            self._data[key] = blobs
            if is_new or key not in self._queue:
                with self._queue_lock.write():
                    self._queue.add(key, self._clock() + DEFAULT_EXPIRATION_SECONDS)
        self._notify()

    def setex(self, key: str, value: Union[bytes, list[bytes]], ttl: float) -> None:
        self.set(key, value)
        self.expire(key, ttl)

    def expire(self, key: str, ttl: float) -> None:
        """
        Reposition key to expire ttl seconds from now.

        Raises:
            KeyNotFoundError: if key is not present
        """
        with self._data_lock.read():
            if key not in self._data:
                raise KeyNotFoundError("key not found")
            with self._queue_lock.write():
                self._queue.update(key, self._clock() + ttl)
        self._notify()

    def delete(self, key: str) -> bool:
        with self._data_lock.write():
            existed = self._data.pop(key, None) is not None
            with self._queue_lock.write():
                self._queue.remove(key)
        self._notify()
        return existed

    def flush(self) -> None:
        with self._data_lock.write():
            self._data.clear()
            with self._queue_lock.write():
                self._queue.clear()
        self._notify()

    def stats(self) -> BucketStats:
        with self._data_lock.read():
            entries = len(self._data)
            total_size = sum(
                sum(len(blob) for blob in blobs) + len(key.encode()) * 2
                for key, blobs in self._data.items()
            )
        with self._queue_lock.read():
            snapshot = self._queue.snapshot()
        with self._counter_lock:
            hits, misses = self._hits, self._misses

        stats = BucketStats(
            entries=entries,
            hits=hits,
            misses=misses,
            expiration_queue_size=len(snapshot),
            total_size=total_size,
            avg_obj_size=(total_size / entries) if entries else 0.0,
        )
        if snapshot:
            expirations = [expires_at for _, expires_at in snapshot]
            stats.earliest_expiration_time = _iso(expirations[0])
            stats.latest_expiration_time = _iso(expirations[-1])
            stats.avg_expiration_time = _iso(sum(expirations) / len(expirations))
        return stats

    def close(self) -> None:
        with self._wakeup:
            self._closed = True
            self._wakeup.notify_all()
        if self._reaper is not threading.current_thread():
            self._reaper.join(timeout=self._idle_interval + 1)

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Reaper ---

    def _notify(self) -> None:
        with self._wakeup:
            self._wakeup.notify_all()

    def _reap_loop(self) -> None:
        while True:
            with self._wakeup:
                if self._closed:
                    return
                with self._queue_lock.read():
                    head = self._queue.peek()
                if head is None:
                    self._wakeup.wait(self._idle_interval)
                    continue
                key, expires_at = head
                delay = expires_at - self._clock()
                if delay > 0:
                    self._wakeup.wait(min(delay, DEFAULT_EXPIRATION_SECONDS))
                    continue
            self._evict(key, expires_at)

    def _evict(self, key: str, expires_at: float) -> None:
        with self._data_lock.write():
            with self._queue_lock.write():
                # Key may have been repositioned since it was peeked
                if self._queue.get(key) != expires_at:
                    return
                self._queue.remove(key)
            self._data.pop(key, None)
        logger.debug(f"Evicted expired key '{key}' from bucket '{self.name}'")


# =============================================================================
# Database
# =============================================================================


class KVDatabase:
    """
    A set of named buckets created on demand.

    Usage:
        db = KVDatabase("cache")
        db.get_bucket("Note").set("k", b"v")
        print({name: s.to_dict() for name, s in db.stats().items()})
    """

    def __init__(
        self,
        name: str = "default",
        clock: Callable[[], float] = time.time,
        idle_interval: float = IDLE_INTERVAL_SECONDS,
    ):
        self.name = name
        self._clock = clock
        self._idle_interval = idle_interval
        self._buckets: dict[str, Bucket] = {}
        self._lock = RWLock()

    def get_bucket(self, name: str) -> Bucket:
        with self._lock.read():
            bucket = self._buckets.get(name)
        if bucket is not None:
            return bucket

        with self._lock.write():
            bucket = self._buckets.get(name)
            if bucket is None:
                bucket = Bucket(name, clock=self._clock, idle_interval=self._idle_interval)
                self._buckets[name] = bucket
                logger.debug(f"Created bucket '{name}' in KV database '{self.name}'")
            return bucket

    def buckets(self) -> list[str]:
        with self._lock.read():
            return list(self._buckets)

    def stats(self) -> dict[str, BucketStats]:
        with self._lock.read():
            buckets = list(self._buckets.values())
        return {bucket.name: bucket.stats() for bucket in buckets}

    def purge(self) -> None:
        """Flush and close every bucket."""
        with self._lock.write():
            buckets = list(self._buckets.values())
            self._buckets.clear()
        for bucket in buckets:
            bucket.flush()
            bucket.close()
        logger.info(f"Purged KV database '{self.name}' ({len(buckets)} buckets)")

    def close(self) -> None:
        self.purge()

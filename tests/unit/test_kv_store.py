"""
Unit tests for the in-process KV store.

Tests cover:
- Expiration queue ordering
- Bucket get/set/expire/delete/flush
- Default and explicit expiration
- Reaper eviction
- Statistics
- Database bucket management and purge
- Async reader/writer lock
"""

import asyncio
import threading
import time

import pytest

from modelstack.core.errors import KeyNotFoundError
from modelstack.kv.locks import AsyncRWLock
from modelstack.kv.store import DEFAULT_EXPIRATION_SECONDS, Bucket, ExpirationQueue, KVDatabase


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bucket(clock):
    b = Bucket("test", clock=clock, idle_interval=0.05)
    yield b
    b.close()


class TestExpirationQueue:
    """Tests for ExpirationQueue."""

    def test_peek_returns_earliest(self):
        q = ExpirationQueue()
        q.add("b", 20.0)
        q.add("a", 10.0)
        q.add("c", 30.0)
        assert q.peek() == ("a", 10.0)
        assert [key for key, _ in q.snapshot()] == ["a", "b", "c"]

    def test_update_repositions(self):
        q = ExpirationQueue()
        q.add("a", 10.0)
        q.add("b", 20.0)
        q.update("a", 30.0)
        assert q.peek() == ("b", 20.0)
        assert len(q) == 2

    def test_remove(self):
        q = ExpirationQueue()
        q.add("a", 10.0)
        assert q.remove("a") is True
        assert q.remove("a") is False
        assert q.peek() is None


class TestBucket:
    """Tests for Bucket operations."""

    def test_set_and_get(self, bucket):
        bucket.set("k", [b"one", b"two"])
        assert bucket.get("k") == [b"one", b"two"]

    def test_single_blob_is_wrapped(self, bucket):
        bucket.set("k", b"one")
        assert bucket.get("k") == [b"one"]

    def test_missing_key(self, bucket):
        assert bucket.get("nope") is None

    def test_fresh_key_gets_default_expiration(self, bucket, clock):
        bucket.set("k", b"v")
        stats = bucket.stats()
        assert stats.expiration_queue_size == 1
        # clock.now is 1970-01-12T13:46:40Z
        assert stats.avg_expiration_time == "1971-01-12T13:46:40Z"
        assert DEFAULT_EXPIRATION_SECONDS == 365 * 24 * 60 * 60

    def test_set_existing_key_keeps_expiration(self, bucket, clock):
        bucket.setex("k", b"v1", 10)
        bucket.set("k", b"v2")
        assert bucket.stats().avg_expiration_time == "1970-01-12T13:46:50Z"
        assert bucket.get("k") == [b"v2"]

    def test_expire_missing_key(self, bucket):
        with pytest.raises(KeyNotFoundError, match="key not found"):
            bucket.expire("nope", 10)

    def test_expired_entry_reads_as_miss(self, bucket, clock):
        bucket.setex("k", b"v", 10)
        clock.now += 11
        assert bucket.get("k") is None
        assert bucket.stats().misses == 1

    def test_delete(self, bucket):
        bucket.set("k", b"v")
        assert bucket.delete("k") is True
        assert bucket.get("k") is None
        assert bucket.stats().expiration_queue_size == 0

    def test_flush(self, bucket):
        bucket.set("a", b"1")
        bucket.set("b", b"2")
        bucket.flush()
        stats = bucket.stats()
        assert stats.entries == 0
        assert stats.expiration_queue_size == 0

    def test_stats(self, bucket):
        bucket.set("a", [b"xy", b"z"])
        bucket.get("a")
        bucket.get("missing")
        stats = bucket.stats()
        assert stats.entries == 1
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.total_size == 3 + 2
        assert stats.avg_obj_size == 5.0
        assert stats.earliest_expiration_time == stats.latest_expiration_time
        assert stats.to_dict()["expirationQueueSize"] == 1

    def test_expiration_stats_are_utc_timestamps(self, bucket):
        bucket.setex("a", b"1", 10)
        bucket.setex("b", b"2", 30)
        stats = bucket.stats().to_dict()
        assert stats["earliestExpirationTime"] == "1970-01-12T13:46:50Z"
        assert stats["latestExpirationTime"] == "1970-01-12T13:47:10Z"
        assert stats["avgExpirationTime"] == "1970-01-12T13:47:00Z"

    def test_stats_empty_bucket(self, bucket):
        stats = bucket.stats()
        assert stats.entries == 0
        assert stats.earliest_expiration_time is None
        assert stats.avg_expiration_time is None
        assert stats.avg_obj_size == 0.0


class TestReaper:
    """The reaper thread evicts entries once they expire."""

    def test_reaper_evicts_after_ttl(self):
        b = Bucket("reaped", idle_interval=0.05)
        try:
            b.setex("short", b"v", 0.05)
            b.set("long", b"v")
            deadline = time.time() + 2
            while time.time() < deadline and b.stats().entries > 1:
                time.sleep(0.02)
            stats = b.stats()
            assert stats.entries == 1
            assert stats.expiration_queue_size == 1
            assert b.get("long") == [b"v"]
        finally:
            b.close()

    def test_reposition_wakes_reaper(self):
        b = Bucket("woken", idle_interval=0.05)
        try:
            b.set("k", b"v")
            time.sleep(0.05)
            b.expire("k", 0.05)
            deadline = time.time() + 2
            while time.time() < deadline and b.stats().entries:
                time.sleep(0.02)
            assert b.stats().entries == 0
        finally:
            b.close()

    def test_close_stops_reaper(self):
        b = Bucket("closed", idle_interval=0.05)
        b.close()
        assert b.closed
        assert not any(t.name == "kv-reaper-closed" and t.is_alive() for t in threading.enumerate())


class TestKVDatabase:
    """Tests for KVDatabase."""

    def test_get_bucket_is_idempotent(self):
        db = KVDatabase("db", idle_interval=0.05)
        try:
            assert db.get_bucket("a") is db.get_bucket("a")
            assert db.buckets() == ["a"]
        finally:
            db.purge()

    def test_concurrent_get_bucket_creates_one(self):
        db = KVDatabase("db", idle_interval=0.05)
        seen = []

        def worker():
            seen.append(db.get_bucket("shared"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        try:
            assert len({id(b) for b in seen}) == 1
        finally:
            db.purge()

    def test_stats_per_bucket(self):
        db = KVDatabase("db", idle_interval=0.05)
        try:
            db.get_bucket("a").set("k", b"v")
            db.get_bucket("b")
            stats = db.stats()
            assert stats["a"].entries == 1
            assert stats["b"].entries == 0
        finally:
            db.purge()

    def test_purge_drops_buckets(self):
        db = KVDatabase("db", idle_interval=0.05)
        bucket = db.get_bucket("a")
        bucket.set("k", b"v")
        db.purge()
        assert db.buckets() == []
        assert bucket.closed
        assert bucket.get("k") is None


class TestAsyncRWLock:
    """Readers share the lock; a writer waits for them and blocks newcomers."""

    @pytest.mark.asyncio
    async def test_writer_waits_for_readers(self):
        lock = AsyncRWLock()
        order = []
        release = asyncio.Event()

        async def reader(name):
            async with lock.read():
                order.append(f"{name}-in")
                await release.wait()
            order.append(f"{name}-out")

        async def writer():
            async with lock.write():
                order.append("writer")

        readers = [asyncio.create_task(reader("r1")), asyncio.create_task(reader("r2"))]
        await asyncio.sleep(0.01)
        assert lock.readers == 2

        pending = asyncio.create_task(writer())
        await asyncio.sleep(0.01)
        assert "writer" not in order

        release.set()
        await asyncio.gather(*readers, pending)
        assert order.index("writer") > order.index("r1-out")
        assert order.index("writer") > order.index("r2-out")

    @pytest.mark.asyncio
    async def test_waiting_writer_blocks_new_readers(self):
        lock = AsyncRWLock()
        order = []
        release = asyncio.Event()

        async def first_reader():
            async with lock.read():
                await release.wait()

        async def writer():
            async with lock.write():
                order.append("writer")

        async def late_reader():
            async with lock.read():
                order.append("late")

        held = asyncio.create_task(first_reader())
        await asyncio.sleep(0.01)
        pending_writer = asyncio.create_task(writer())
        await asyncio.sleep(0.01)
        pending_reader = asyncio.create_task(late_reader())
        await asyncio.sleep(0.01)
        assert order == []

        release.set()
        await asyncio.gather(held, pending_writer, pending_reader)
        assert order == ["writer", "late"]

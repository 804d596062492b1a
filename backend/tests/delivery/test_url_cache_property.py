"""Property-based tests for the signed URL cache.

Covers: margin-adjusted expiry, reload revalidation, LRU bounds, quota
handling, debounced persistence and deterministic clearing.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import pytest
from hypothesis import given, settings, strategies as st

from adaptive_media.modules.delivery.cache import (
    JsonFileCacheStore,
    UrlCache,
    encode_records,
    make_cache_key,
)
from adaptive_media.modules.delivery.exceptions import CacheError, CacheQuotaExceeded
from adaptive_media.modules.delivery.formats import ImageTransform


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class MemoryStore:
    """Cache store kept in memory, enforcing its own quota."""

    def __init__(self, records: Optional[dict[str, dict[str, Any]]] = None, quota_bytes: int = 1024 * 1024):
        self.records = dict(records or {})
        self.quota_bytes = quota_bytes
        self.saves = 0
        self.cleared = 0
        self.reject_saves = 0

    async def load(self) -> dict[str, dict[str, Any]]:
        return dict(self.records)

    async def save(self, records: dict[str, dict[str, Any]]) -> None:
        self.saves += 1
        payload = encode_records(records)
        if self.reject_saves > 0:
            self.reject_saves -= 1
            raise CacheQuotaExceeded(len(payload), self.quota_bytes)
        if len(payload) > self.quota_bytes:
            raise CacheQuotaExceeded(len(payload), self.quota_bytes)
        self.records = dict(records)

    async def clear(self) -> None:
        self.cleared += 1
        self.records = {}


class BrokenStore(MemoryStore):
    async def save(self, records: dict[str, dict[str, Any]]) -> None:
        raise CacheError("disk full")


class BlockingStore(MemoryStore):
    """Store whose writes wait until released."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def save(self, records: dict[str, dict[str, Any]]) -> None:
        self.entered.set()
        await self.release.wait()
        await super().save(records)


MARGIN = 600.0


def make_cache(store=None, clock: Optional[FakeClock] = None, **kwargs) -> UrlCache:
    kwargs.setdefault("write_debounce", 0.01)
    return UrlCache(
        store=store,
        safety_margin=MARGIN,
        cleanup_interval=0,
        clock=clock or FakeClock(),
        **kwargs,
    )


class TestExpiry:
    """A hit is never returned once the margin-adjusted expiry passes."""

    @given(
        lifetime=st.floats(min_value=MARGIN + 1, max_value=7 * 24 * 3600),
        elapsed=st.floats(min_value=0, max_value=8 * 24 * 3600),
    )
    @settings(max_examples=100)
    def test_hit_until_adjusted_expiry(self, lifetime: float, elapsed: float) -> None:
        clock = FakeClock()
        cache = make_cache(clock=clock)
        true_expiry = clock.now + lifetime
        cache.set("k", "https://cdn/a", true_expiry, "granted")

        clock.now += elapsed
        entry = cache.get("k")

        if clock.now < true_expiry - MARGIN:
            assert entry is not None
            assert entry.url == "https://cdn/a"
            assert entry.expires_at < true_expiry
        else:
            assert entry is None
            assert "k" not in cache

    @given(lifetime=st.floats(min_value=0, max_value=MARGIN))
    @settings(max_examples=100)
    def test_short_lived_urls_not_stored(self, lifetime: float) -> None:
        clock = FakeClock()
        cache = make_cache(clock=clock)
        assert cache.set("k", "https://cdn/a", clock.now + lifetime, "granted") is None
        assert cache.get("k") is None

    def test_clean_expired_removes_only_expired(self) -> None:
        clock = FakeClock()
        cache = make_cache(clock=clock)
        cache.set("short", "u1", clock.now + MARGIN + 10, "granted")
        cache.set("long", "u2", clock.now + MARGIN + 1000, "granted")
        clock.now += 100
        assert cache.clean_expired() == 1
        assert "long" in cache and "short" not in cache


class TestKeys:
    """Keys separate access classes and transform parameter sets."""

    @given(
        width=st.integers(min_value=1, max_value=1920),
        quality=st.integers(min_value=1, max_value=95),
    )
    @settings(max_examples=100)
    def test_key_depends_on_transform_and_class(self, width: int, quality: int) -> None:
        transform = ImageTransform(width=width, quality=quality)
        assert make_cache_key("a.jpg", transform, "granted") != make_cache_key("a.jpg", transform, "privileged")
        assert make_cache_key("a.jpg", transform, "granted") != make_cache_key("a.jpg", None, "granted")
        assert make_cache_key("a.jpg", transform, "granted") == make_cache_key(
            "a.jpg", ImageTransform(quality=quality, width=width), "granted"
        )


class TestSizeBound:
    """Entry count never exceeds the maximum; least recently used go first."""

    @given(count=st.integers(min_value=1, max_value=60))
    @settings(max_examples=100)
    def test_never_exceeds_max_entries(self, count: int) -> None:
        clock = FakeClock()
        cache = make_cache(clock=clock, max_entries=20)
        for i in range(count):
            clock.now += 1
            cache.set(f"k{i}", f"u{i}", clock.now + 7200, "granted")
            assert len(cache) <= 20

    def test_lru_eviction_keeps_recently_read(self) -> None:
        clock = FakeClock()
        cache = make_cache(clock=clock, max_entries=2)
        cache.set("a", "ua", clock.now + 7200, "granted")
        clock.now += 1
        cache.set("b", "ub", clock.now + 7200, "granted")
        clock.now += 1
        cache.get("a")
        clock.now += 1
        cache.set("c", "uc", clock.now + 7200, "granted")
        assert "a" in cache and "c" in cache and "b" not in cache


class TestPersistence:
    """Debounced writes, reload revalidation and quota recovery."""

    @pytest.mark.asyncio
    async def test_reload_serves_valid_and_drops_expired(self) -> None:
        clock = FakeClock()
        store = MemoryStore()
        cache = make_cache(store=store, clock=clock)
        await cache.start()
        cache.set("soon", "u1", clock.now + MARGIN + 100, "granted")
        cache.set("later", "u2", clock.now + MARGIN + 5000, "granted")
        await cache.close()
        assert set(store.records) == {"soon", "later"}

        clock.now += 200
        reloaded = make_cache(store=store, clock=clock)
        await reloaded.start()
        assert reloaded.get("soon") is None
        assert reloaded.get("later").url == "u2"
        await reloaded.close()
        assert set(store.records) == {"later"}

    @pytest.mark.asyncio
    async def test_writes_are_debounced(self) -> None:
        clock = FakeClock()
        store = MemoryStore()
        cache = make_cache(store=store, clock=clock)
        await cache.start()
        for i in range(10):
            cache.set(f"k{i}", f"u{i}", clock.now + 7200, "granted")
        assert store.saves == 0
        await asyncio.sleep(0.1)
        assert store.saves == 1
        assert len(store.records) == 10
        await cache.close()

    @pytest.mark.asyncio
    async def test_handles_never_persisted(self) -> None:
        clock = FakeClock()
        store = MemoryStore()
        cache = make_cache(store=store, clock=clock)
        await cache.start()
        cache.set("k", "https://cdn/a", clock.now + 7200, "granted", handle=object())
        await cache.close()
        assert store.records["k"] == {
            "url": "https://cdn/a",
            "expires_at": clock.now + 7200 - MARGIN,
            "cached_at": clock.now,
            "access_class": "granted",
        }

    @pytest.mark.asyncio
    async def test_near_quota_evicts_lru_before_writing(self) -> None:
        clock = FakeClock()
        sample = encode_records({"k00": {"url": "u" * 50, "expires_at": 1.0, "cached_at": 1.0, "access_class": "granted"}})
        store = MemoryStore(quota_bytes=len(sample) * 10)
        cache = make_cache(store=store, clock=clock, max_entries=40)
        await cache.start()
        for i in range(20):
            clock.now += 1
            cache.set(f"k{i:02d}", "u" * 50, clock.now + 7200, "granted")
        await cache.flush()

        assert len(encode_records(store.records)) < store.quota_bytes * 0.8
        assert "k19" in store.records
        assert "k00" not in store.records
        await cache.close()

    @pytest.mark.asyncio
    async def test_quota_exceeded_evicts_half_and_retries(self) -> None:
        clock = FakeClock()
        store = MemoryStore()
        store.reject_saves = 1
        cache = make_cache(store=store, clock=clock)
        await cache.start()
        for i in range(10):
            clock.now += 1
            cache.set(f"k{i}", f"u{i}", clock.now + 7200, "granted")
        await cache.flush()

        assert store.saves == 2
        assert len(cache) == 5
        assert set(store.records) == {f"k{i}" for i in range(5, 10)}
        await cache.close()

    @pytest.mark.asyncio
    async def test_second_quota_failure_clears_store(self) -> None:
        clock = FakeClock()
        store = MemoryStore(records={"old": {"url": "u", "expires_at": clock.now + 9999, "cached_at": clock.now, "access_class": "granted"}})
        cache = make_cache(store=store, clock=clock)
        await cache.start()
        store.reject_saves = 2
        cache.set("k", "u", clock.now + 7200, "granted")
        await cache.flush()

        assert store.cleared == 1
        assert store.records == {}
        await cache.close()

    @pytest.mark.asyncio
    async def test_store_failure_does_not_break_cache(self) -> None:
        clock = FakeClock()
        cache = make_cache(store=BrokenStore(), clock=clock)
        await cache.start()
        cache.set("k", "u", clock.now + 7200, "granted")
        await cache.flush()
        assert cache.get("k").url == "u"
        await cache.close()

    @pytest.mark.asyncio
    async def test_store_failure_warning_carries_correlation_id(self, caplog) -> None:
        clock = FakeClock()
        cache = make_cache(store=BrokenStore(), clock=clock)
        await cache.start()
        cache.set("k", "u", clock.now + 7200, "granted")
        with caplog.at_level(logging.WARNING, logger="adaptive_media.modules.delivery.cache"):
            await cache.flush()
        await cache.close()

        records = [r for r in caplog.records if r.getMessage() == "URL cache persistence failed"]
        assert records
        assert records[0].error == "disk full"
        assert hasattr(records[0], "correlation_id")

    @pytest.mark.asyncio
    async def test_clear_cache_wipes_memory_and_store(self) -> None:
        clock = FakeClock()
        store = MemoryStore()
        cache = make_cache(store=store, clock=clock)
        await cache.start()
        cache.set("k", "u", clock.now + 7200, "granted")
        await cache.flush()
        await cache.clear_cache()

        assert len(cache) == 0
        assert store.records == {}
        await cache.close()
        assert store.records == {}

    @pytest.mark.asyncio
    async def test_clear_cache_waits_for_running_flush(self) -> None:
        clock = FakeClock()
        store = BlockingStore()
        cache = make_cache(store=store, clock=clock)
        await cache.start()
        cache.set("k", "u", clock.now + 7200, "granted")
        await store.entered.wait()

        clear_task = asyncio.create_task(cache.clear_cache())
        await asyncio.sleep(0)
        store.release.set()
        await clear_task

        assert store.records == {}
        assert store.cleared == 1
        await cache.close()

        reloaded = make_cache(store=store, clock=clock)
        await reloaded.start()
        assert reloaded.get("k") is None
        await reloaded.close()

    @pytest.mark.asyncio
    async def test_continuous_writes_still_reach_the_store(self) -> None:
        clock = FakeClock()
        store = MemoryStore()
        cache = make_cache(store=store, clock=clock, write_debounce=0.05, max_write_delay=0.1)
        await cache.start()
        for i in range(15):
            cache.set(f"k{i}", f"u{i}", clock.now + 7200, "granted")
            await asyncio.sleep(0.02)

        assert store.saves >= 1
        assert "k0" in store.records
        await cache.close()
        assert len(store.records) == 15


class TestJsonFileStore:
    """File-backed store."""

    @pytest.mark.asyncio
    async def test_round_trip_through_file(self, tmp_path) -> None:
        clock = FakeClock()
        path = tmp_path / "cache.json"
        cache = make_cache(store=JsonFileCacheStore(str(path)), clock=clock)
        await cache.start()
        cache.set("k", "https://cdn/a", clock.now + 7200, "privileged")
        await cache.close()

        assert json.loads(path.read_text())["k"]["access_class"] == "privileged"
        reloaded = make_cache(store=JsonFileCacheStore(str(path)), clock=clock)
        await reloaded.start()
        assert reloaded.get("k").url == "https://cdn/a"
        await reloaded.close()

    @pytest.mark.asyncio
    async def test_oversized_payload_rejected(self, tmp_path) -> None:
        store = JsonFileCacheStore(str(tmp_path / "cache.json"), quota_bytes=10)
        with pytest.raises(CacheQuotaExceeded):
            await store.save({"k": {"url": "https://cdn/" + "a" * 100, "expires_at": 1, "cached_at": 1, "access_class": "granted"}})

    @pytest.mark.asyncio
    async def test_corrupt_file_loads_empty(self, tmp_path) -> None:
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        assert await JsonFileCacheStore(str(path)).load() == {}

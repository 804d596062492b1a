"""Signed URL cache.

Entries expire a fixed safety margin before the URL they hold. Writes to the
backing store are debounced and run off the request path; the store only
ever receives durable URLs, never in-process handles.

The cache is constructed once per process, started with :meth:`UrlCache.start`
and torn down with :meth:`UrlCache.close`.
"""

import asyncio
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from adaptive_media.core.logging import log_warning
from adaptive_media.core.metrics import (
    URL_CACHE_ENTRIES,
    URL_CACHE_EVICTIONS_TOTAL,
    URL_CACHE_REQUESTS_TOTAL,
)
from adaptive_media.modules.delivery.exceptions import CacheError, CacheQuotaExceeded
from adaptive_media.modules.delivery.formats import ImageTransform

logger = logging.getLogger(__name__)


def make_cache_key(
    key: str,
    transform: Optional[ImageTransform],
    access_class: str,
) -> str:
    """Cache key from an already normalized object key."""
    params = transform.as_params() if transform is not None else {}
    return f"{access_class}|{key}|{json.dumps(params, sort_keys=True, separators=(',', ':'))}"


@dataclass
class UrlCacheEntry:
    url: str
    expires_at: float
    cached_at: float
    access_class: str
    last_access: float
    handle: Optional[Any] = None  # process-local, never persisted

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_record(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "expires_at": self.expires_at,
            "cached_at": self.cached_at,
            "access_class": self.access_class,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "UrlCacheEntry":
        return cls(
            url=str(record["url"]),
            expires_at=float(record["expires_at"]),
            cached_at=float(record["cached_at"]),
            access_class=str(record["access_class"]),
            last_access=float(record["cached_at"]),
        )


def encode_records(records: dict[str, dict[str, Any]]) -> bytes:
    return json.dumps(records, separators=(",", ":")).encode()


class CacheStore(Protocol):
    """Durable backing store for cache records."""

    quota_bytes: int

    async def load(self) -> dict[str, dict[str, Any]]: ...

    async def save(self, records: dict[str, dict[str, Any]]) -> None: ...

    async def clear(self) -> None: ...


class JsonFileCacheStore:
    """Stores all records as one JSON document, replaced atomically."""

    def __init__(self, path: str, quota_bytes: int = 5 * 1024 * 1024):
        self.path = path
        self.quota_bytes = quota_bytes

    def _read(self) -> dict[str, dict[str, Any]]:
        try:
            with open(self.path, "rb") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Discarding unreadable URL cache file", extra={"path": self.path, "error": str(e)})
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, payload: bytes) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".url_cache-", dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _remove(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

    async def load(self) -> dict[str, dict[str, Any]]:
        return await asyncio.to_thread(self._read)

    async def save(self, records: dict[str, dict[str, Any]]) -> None:
        payload = encode_records(records)
        if len(payload) > self.quota_bytes:
            raise CacheQuotaExceeded(len(payload), self.quota_bytes)
        try:
            await asyncio.to_thread(self._write, payload)
        except OSError as e:
            raise CacheError(f"Failed to write URL cache: {e}") from e

    async def clear(self) -> None:
        try:
            await asyncio.to_thread(self._remove)
        except OSError as e:
            raise CacheError(f"Failed to remove URL cache: {e}") from e


class RedisCacheStore:
    """Stores all records as one JSON value under a single Redis key."""

    def __init__(
        self,
        client: redis.Redis,
        key: str = "adaptive_media:url_cache",
        quota_bytes: int = 5 * 1024 * 1024,
    ):
        self.client = client
        self.key = key
        self.quota_bytes = quota_bytes

    async def load(self) -> dict[str, dict[str, Any]]:
        try:
            raw = await self.client.get(self.key)
        except RedisError as e:
            raise CacheError(f"Failed to read URL cache: {e}") from e
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable URL cache value", extra={"key": self.key})
            return {}
        return data if isinstance(data, dict) else {}

    async def save(self, records: dict[str, dict[str, Any]]) -> None:
        payload = encode_records(records)
        if len(payload) > self.quota_bytes:
            raise CacheQuotaExceeded(len(payload), self.quota_bytes)
        try:
            await self.client.set(self.key, payload.decode())
        except RedisError as e:
            raise CacheError(f"Failed to write URL cache: {e}") from e

    async def clear(self) -> None:
        try:
            await self.client.delete(self.key)
        except RedisError as e:
            raise CacheError(f"Failed to clear URL cache: {e}") from e


class UrlCache:
    """TTL-bounded, size-limited cache of signed URLs with debounced persistence."""

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        max_entries: int = 200,
        safety_margin: float = 600.0,
        write_debounce: float = 0.5,
        max_write_delay: Optional[float] = None,
        quota_threshold: float = 0.8,
        cleanup_interval: float = 30 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_entries = max_entries
        self.safety_margin = safety_margin
        self.write_debounce = write_debounce
        self.max_write_delay = max_write_delay if max_write_delay is not None else write_debounce * 4
        self.quota_threshold = quota_threshold
        self.cleanup_interval = cleanup_interval
        self.clock = clock

        self._entries: dict[str, UrlCacheEntry] = {}
        self._started = False
        self._dirty = False
        self._flush_timer: Optional[asyncio.TimerHandle] = None
        self._dirty_since: Optional[float] = None  # loop time of the oldest unflushed write
        self._flush_tasks: set[asyncio.Task] = set()
        self._cleanup_task: Optional[asyncio.Task] = None
        self.hits = 0
        self.misses = 0

    # ---------------------------------------------------------------- lifecycle

    async def start(self) -> None:
        """Load persisted entries, dropping expired ones, and start cleanup."""
        if self._started:
            return
        if self.store is not None:
            try:
                records = await self.store.load()
            except CacheError as e:
                logger.warning("URL cache load failed, starting empty", extra={"error": str(e)})
                records = {}
            now = self.clock()
            dropped = 0
            for key, record in records.items():
                try:
                    entry = UrlCacheEntry.from_record(record)
                except (KeyError, TypeError, ValueError):
                    dropped += 1
                    continue
                if entry.is_expired(now):
                    dropped += 1
                    continue
                self._entries[key] = entry
            if dropped:
                self._dirty = True
                URL_CACHE_EVICTIONS_TOTAL.labels(reason="expired_on_load").inc(dropped)
            self._enforce_size()

        self._started = True
        self._update_gauge()
        if self._dirty:
            self._schedule_flush()
        if self.cleanup_interval > 0:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("URL cache started", extra={"entries": len(self._entries)})

    async def close(self) -> None:
        """Stop background work and flush pending writes."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None
        self._dirty_since = None
        if self._flush_tasks:
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)
        if self._dirty:
            await self.flush()
        self._started = False

    # ---------------------------------------------------------------- access

    def get(self, key: str) -> Optional[UrlCacheEntry]:
        """Entry for ``key``, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._miss()
            return None
        now = self.clock()
        if entry.is_expired(now):
            del self._entries[key]
            URL_CACHE_EVICTIONS_TOTAL.labels(reason="expired").inc()
            self._update_gauge()
            self._schedule_flush()
            self._miss()
            return None
        entry.last_access = now
        self.hits += 1
        URL_CACHE_REQUESTS_TOTAL.labels(result="hit").inc()
        return entry

    def set(
        self,
        key: str,
        url: str,
        true_expires_at: float,
        access_class: str,
        handle: Optional[Any] = None,
    ) -> Optional[UrlCacheEntry]:
        """Store a URL valid until ``true_expires_at``.

        The entry expires ``safety_margin`` seconds earlier. URLs that would
        already be expired after the margin are not stored.
        """
        now = self.clock()
        expires_at = true_expires_at - self.safety_margin
        if expires_at <= now:
            return None
        entry = UrlCacheEntry(
            url=url,
            expires_at=expires_at,
            cached_at=now,
            access_class=access_class,
            last_access=now,
            handle=handle,
        )
        self._entries[key] = entry
        self._enforce_size()
        self._update_gauge()
        self._schedule_flush()
        return entry

    def invalidate(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self._update_gauge()
        self._schedule_flush()
        return True

    def clean_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            URL_CACHE_EVICTIONS_TOTAL.labels(reason="expired").inc(len(expired))
            self._update_gauge()
            self._schedule_flush()
        return len(expired)

    async def clear_cache(self) -> None:
        """Wipe memory and the backing store.

        Flushes already running are awaited before the store is cleared so a
        late write cannot restore the wiped entries.
        """
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None
        self._entries.clear()
        self._dirty = False
        self._dirty_since = None
        self._update_gauge()
        if self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)
        if self.store is not None:
            try:
                await self.store.clear()
            except CacheError as e:
                log_warning(logger, "Failed to clear persisted URL cache", error=str(e))

    def stats(self) -> dict[str, Any]:
        now = self.clock()
        valid = sum(1 for entry in self._entries.values() if not entry.is_expired(now))
        total = self.hits + self.misses
        return {
            "entries": len(self._entries),
            "valid_entries": valid,
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 4) if total else 0.0,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    # ---------------------------------------------------------------- persistence

    def persistable_records(self) -> dict[str, dict[str, Any]]:
        now = self.clock()
        return {
            key: entry.to_record()
            for key, entry in self._entries.items()
            if not entry.is_expired(now)
        }

    async def flush(self) -> None:
        """Write current entries to the store.

        Near the quota, least recently used entries are evicted first. A
        quota rejection evicts down to half and retries once; a second
        rejection wipes the persisted state. Store failures are logged and
        never raised.
        """
        self._dirty = False
        if self.store is None:
            return

        self._evict_for_quota()
        try:
            await self.store.save(self.persistable_records())
            return
        except CacheQuotaExceeded as e:
            log_warning(logger, "URL cache quota exceeded, evicting", error=str(e))
        except CacheError as e:
            log_warning(logger, "URL cache persistence failed", error=str(e))
            return

        self._evict_lru(len(self._entries) // 2, reason="quota_exceeded")
        try:
            await self.store.save(self.persistable_records())
        except CacheQuotaExceeded:
            log_warning(logger, "URL cache still over quota, clearing persisted state")
            try:
                await self.store.clear()
            except CacheError as e:
                log_warning(logger, "Failed to clear persisted URL cache", error=str(e))
        except CacheError as e:
            log_warning(logger, "URL cache persistence failed", error=str(e))

    def _evict_for_quota(self) -> None:
        quota = self.store.quota_bytes if self.store is not None else 0
        if quota <= 0:
            return
        limit = quota * self.quota_threshold
        usage = len(encode_records(self.persistable_records()))
        if usage < limit:
            return
        target = min(len(self._entries), self.max_entries // 2)
        self._evict_lru(target, reason="quota_threshold")
        while self._entries and len(encode_records(self.persistable_records())) >= limit:
            self._evict_lru(len(self._entries) - 1, reason="quota_threshold")

    def _evict_lru(self, target: int, reason: str) -> int:
        excess = len(self._entries) - max(0, target)
        if excess <= 0:
            return 0
        oldest = sorted(self._entries, key=lambda k: self._entries[k].last_access)[:excess]
        for key in oldest:
            del self._entries[key]
        URL_CACHE_EVICTIONS_TOTAL.labels(reason=reason).inc(len(oldest))
        self._update_gauge()
        return len(oldest)

    def _enforce_size(self) -> None:
        if len(self._entries) > self.max_entries:
            self._evict_lru(self.max_entries, reason="size")

    def _schedule_flush(self) -> None:
        self._dirty = True
        if not self._started or self.store is None:
            return
        if self._flush_timer is not None:
            self._flush_timer.cancel()
        loop = asyncio.get_running_loop()
        now = loop.time()
        if self._dirty_since is None:
            self._dirty_since = now
        # Bursts keep pushing the write back, but never past max_write_delay.
        deadline = self._dirty_since + self.max_write_delay
        delay = min(self.write_debounce, max(0.0, deadline - now))
        self._flush_timer = loop.call_later(delay, self._start_flush)

    def _start_flush(self) -> None:
        self._flush_timer = None
        self._dirty_since = None
        task = asyncio.ensure_future(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.clean_expired()
            if removed:
                logger.debug("Removed expired URL cache entries", extra={"removed": removed})

    # ---------------------------------------------------------------- helpers

    def _miss(self) -> None:
        self.misses += 1
        URL_CACHE_REQUESTS_TOTAL.labels(result="miss").inc()

    def _update_gauge(self) -> None:
        URL_CACHE_ENTRIES.set(len(self._entries))

"""
Read-through TTL cache for tenant configuration.

Avoids a config fetch on every content submission. Entries (including
"tenant not found" results) are kept for a fixed TTL and expire lazily at
read time; there is no background refresh. Expired entries stay available
as a stale fallback for one more TTL and are swept on later reads.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, NamedTuple, Optional

from modgate.datatypes.tenant_config import TenantConfig
from modgate.util.logger import get_logger

logger = get_logger("config_cache")

TenantConfigFetcher = Callable[[str], Awaitable[Optional[TenantConfig]]]


class _CacheEntry(NamedTuple):
    fetched_at: float
    config: TenantConfig | None


class TenantConfigCache:
    """
    TTL cache in front of a tenant config fetcher.

    Each entry is an immutable (timestamp, value) pair replaced in one
    assignment, so readers never observe a half-written entry. Concurrent
    misses for one tenant share a single fetch through a per-tenant lock.
    """

    def __init__(
        self,
        fetcher: TenantConfigFetcher,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            fetcher: Coroutine returning the tenant's config or None if unknown.
            ttl_seconds: Time-to-live for cached entries (default: 300)
            clock: Monotonic time source, injectable for tests.
        """
        self._fetcher = fetcher
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._last_sweep = clock()
        # Per-tenant state exists only while a fetch is running or queued
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._generations: Dict[str, int] = {}

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.fetched_at < self._ttl_seconds

    async def get(self, tenant_id: str) -> TenantConfig | None:
        """
        Return the tenant's config, fetching it on a miss or after expiry.

        If a refresh fails and an expired value exists, the expired value is
        served and the error is logged; without a previous value the error
        propagates.
        """
        entry = self._entries.get(tenant_id)
        if entry is not None and self._is_fresh(entry):
            logger.debug("[CONFIG CACHE] Hit for tenant %s", tenant_id)
            return entry.config

        self._maybe_sweep()
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        self._lock_users[tenant_id] = self._lock_users.get(tenant_id, 0) + 1
        try:
            async with lock:
                return await self._refresh(tenant_id)
        finally:
            self._release(tenant_id)

    async def _refresh(self, tenant_id: str) -> TenantConfig | None:
        # Another waiter may have refreshed the entry while we queued
        entry = self._entries.get(tenant_id)
        if entry is not None and self._is_fresh(entry):
            return entry.config

        generation = self._generations.get(tenant_id, 0)
        try:
            config = await self._fetcher(tenant_id)
        except Exception as exc:
            if entry is None:
                raise
            logger.warning(
                "[CONFIG CACHE] Refresh failed for tenant %s, serving stale entry: %s",
                tenant_id,
                exc,
            )
            return entry.config

        if self._generations.get(tenant_id, 0) == generation:
            self._entries[tenant_id] = _CacheEntry(self._clock(), config)
            logger.debug("[CONFIG CACHE] Stored tenant %s (found=%s)", tenant_id, config is not None)
        else:
            logger.debug("[CONFIG CACHE] Tenant %s invalidated during fetch, not storing", tenant_id)
        return config

    def _release(self, tenant_id: str) -> None:
        users = self._lock_users[tenant_id] - 1
        if users:
            self._lock_users[tenant_id] = users
            return
        del self._lock_users[tenant_id]
        del self._locks[tenant_id]
        self._generations.pop(tenant_id, None)

    def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep >= self._ttl_seconds:
            self.sweep()

    def sweep(self) -> int:
        """Evict entries that expired more than one TTL ago; returns the count."""
        now = self._clock()
        self._last_sweep = now
        stale = [tid for tid, entry in self._entries.items() if now - entry.fetched_at >= 2 * self._ttl_seconds]
        for tenant_id in stale:
            del self._entries[tenant_id]
        if stale:
            logger.debug("[CONFIG CACHE] Swept %d stale entries", len(stale))
        return len(stale)

    def invalidate(self, tenant_id: str) -> bool:
        """
        Drop the cached entry so the next `get` fetches again.

        Call from every write path (create/update/delete) of the tenant record.

        Returns:
            True if an entry was removed.
        """
        if tenant_id in self._locks:
            self._generations[tenant_id] = self._generations.get(tenant_id, 0) + 1
        removed = self._entries.pop(tenant_id, None) is not None
        logger.debug("[CONFIG CACHE] Invalidated tenant %s (had entry=%s)", tenant_id, removed)
        return removed

    def clear(self) -> int:
        count = len(self._entries)
        for tenant_id in set(self._entries) | set(self._locks):
            self.invalidate(tenant_id)
        return count

    def get_cache_stats(self) -> Dict[str, float]:
        return {
            "size": len(self._entries),
            "pending_fetches": len(self._locks),
            "ttl_seconds": self._ttl_seconds,
        }

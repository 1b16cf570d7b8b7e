"""Rate cache with adaptive TTL and single-flight refresh."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from fastapi_carrierhub.config import CarrierHubConfig
from fastapi_carrierhub.protocols import RateCacheStore
from fastapi_carrierhub.types import CacheEntry, ShippingRate

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
RateLoader = Callable[[], Awaitable[Sequence[ShippingRate]]]

# Upper bound on keys tracked for hotness before idle keys are swept.
_MAX_TRACKED_KEYS = 10_000


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class InMemoryRateCacheStore:
    """Process-local cache storage."""

    def __init__(self) -> None:
        self.entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self.entries.get(key)

    async def put(self, entry: CacheEntry) -> None:
        self.entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self.entries.pop(key, None)

    async def delete_for_provider(self, provider_id: str) -> int:
        keys = [
            key
            for key, entry in self.entries.items()
            if provider_id in entry.provider_ids
        ]
        for key in keys:
            del self.entries[key]
        return len(keys)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key for key in self.entries if key.startswith(prefix)]
        for key in keys:
            del self.entries[key]
        return len(keys)

    async def clear(self) -> int:
        count = len(self.entries)
        self.entries.clear()
        return count

    async def purge_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        expired = [
            key
            for key, entry in self.entries.items()
            if not entry.is_fresh(now)
        ]
        for key in expired:
            del self.entries[key]
        return len(expired)

    async def count(self) -> int:
        return len(self.entries)

    async def count_expired(self, now: datetime) -> int:
        return sum(
            1 for entry in self.entries.values() if not entry.is_fresh(now)
        )


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    stale_served: int = 0
    refreshes: int = 0
    refresh_failures: int = 0


@dataclass(frozen=True)
class CacheEntryCounts:
    """Entries held by the store, as seen at one instant."""

    total: int
    valid: int
    expired: int


def route_prefix(from_pincode: str, to_pincode: str) -> str:
    """Common prefix of every cache key for one origin/destination pair."""
    return f"{from_pincode}|{to_pincode}|"


@dataclass
class _Flight:
    task: asyncio.Task
    waiters: int = 0


class RateCache:
    """Aggregated rate sets keyed by normalized request.

    At most one refresh runs per key. Callers arriving while it runs either
    get the stale entry at once (when there is one) or wait for the same
    refresh. A failed refresh falls back to the stale entry if present.
    """

    def __init__(
        self,
        store: RateCacheStore | None = None,
        config: CarrierHubConfig | None = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store if store is not None else InMemoryRateCacheStore()
        self.config = config or CarrierHubConfig()
        self.stats = CacheStats()
        self._clock = clock
        self._inflight: dict[str, _Flight] = {}
        self._requests: dict[str, deque[float]] = {}
        self._generation = 0

    # --- TTL ---

    def _note_request(self, key: str) -> None:
        now = self._clock().timestamp()
        window = self.config.cache_hot_window_seconds
        seen = self._requests.setdefault(key, deque())
        seen.append(now)
        while seen and seen[0] <= now - window:
            seen.popleft()
        if len(self._requests) > _MAX_TRACKED_KEYS:
            self._sweep_requests(now - window)

    def _sweep_requests(self, cutoff: float) -> None:
        idle = [
            key
            for key, seen in self._requests.items()
            if not seen or seen[-1] <= cutoff
        ]
        for key in idle:
            del self._requests[key]

    def recent_requests(self, key: str) -> int:
        seen = self._requests.get(key)
        if not seen:
            return 0
        cutoff = self._clock().timestamp() - self.config.cache_hot_window_seconds
        return sum(1 for ts in seen if ts > cutoff)

    def ttl_for(self, key: str) -> timedelta:
        """Hot keys get the minimum TTL, cold keys the maximum."""
        low = self.config.cache_min_ttl_seconds
        high = self.config.cache_max_ttl_seconds
        threshold = self.config.cache_hot_threshold
        hits = self.recent_requests(key)

        if hits >= threshold:
            seconds = low
        elif hits <= 1 or threshold <= 1:
            seconds = high
        else:
            fraction = (hits - 1) / (threshold - 1)
            seconds = high - (high - low) * fraction
        return timedelta(seconds=min(max(seconds, low), high))

    # --- Plain access ---

    async def get(self, key: str) -> CacheEntry | None:
        entry = await self.store.get(key)
        if entry is not None and key in self._inflight:
            return entry.model_copy(update={"refreshing": True})
        return entry

    async def put(
        self,
        key: str,
        rates: Sequence[ShippingRate],
        ttl: timedelta | None = None,
    ) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            key=key,
            rates=tuple(rates),
            fetched_at=now,
            expires_at=now + (ttl if ttl is not None else self.ttl_for(key)),
        )
        await self.store.put(entry)
        return entry

    async def invalidate(
        self,
        key: str | None = None,
        provider_id: str | None = None,
        route: tuple[str, str] | None = None,
    ) -> int:
        """Drop one key, every entry of a route or provider, or everything.

        ``route`` is a ``(from_pincode, to_pincode)`` pair covering all
        weights, modes and payment types. Refreshes already running when a
        route, provider-wide or full invalidation happens still answer their
        waiters but do not write back.
        """
        if key is not None:
            await self.store.delete(key)
            return 1
        self._generation += 1
        if route is not None:
            removed = await self.store.delete_prefix(route_prefix(*route))
            logger.info(
                "Invalidated %d cached rate set(s) for route %s -> %s",
                removed,
                *route,
            )
            return removed
        if provider_id is not None:
            removed = await self.store.delete_for_provider(provider_id)
            logger.info(
                "Invalidated %d cached rate set(s) for provider %s",
                removed,
                provider_id,
            )
            return removed
        removed = await self.store.clear()
        logger.info("Cleared rate cache (%d entries)", removed)
        return removed

    async def purge_expired(self) -> int:
        """Delete entries past their expiry from the store."""
        removed = await self.store.purge_expired(self._clock())
        if removed:
            logger.info("Purged %d expired rate set(s)", removed)
        return removed

    async def entry_counts(self) -> CacheEntryCounts:
        now = self._clock()
        total = await self.store.count()
        expired = await self.store.count_expired(now)
        return CacheEntryCounts(
            total=total, valid=max(total - expired, 0), expired=expired
        )

    # --- Single flight ---

    async def get_or_refresh(
        self, key: str, loader: RateLoader
    ) -> tuple[CacheEntry, bool]:
        """Return ``(entry, served_from_cache)`` for ``key``.

        ``loader`` runs only when the entry is missing or stale and no other
        refresh of ``key`` is in progress.
        """
        self._note_request(key)
        entry = await self.store.get(key)
        if entry is not None and entry.is_fresh(self._clock()):
            self.stats.hits += 1
            return entry, True

        flight = self._inflight.get(key)
        if flight is not None and entry is not None:
            self.stats.stale_served += 1
            return entry.model_copy(update={"refreshing": True}), True

        if flight is None:
            self.stats.misses += 1
            flight = self._start_refresh(key, loader)
        return await self._wait(key, flight, stale=entry)

    def _start_refresh(self, key: str, loader: RateLoader) -> _Flight:
        generation = self._generation

        async def refresh() -> CacheEntry:
            try:
                rates = await loader()
            except Exception:
                self.stats.refresh_failures += 1
                raise
            if self._generation != generation:
                logger.debug("Skipping write-back for %s after invalidation", key)
                now = self._clock()
                return CacheEntry(
                    key=key, rates=tuple(rates), fetched_at=now, expires_at=now
                )
            return await self.put(key, rates)

        task = asyncio.get_running_loop().create_task(refresh())
        flight = _Flight(task=task)
        self._inflight[key] = flight
        self.stats.refreshes += 1

        def _done(_: asyncio.Task) -> None:
            if self._inflight.get(key) is flight:
                del self._inflight[key]

        task.add_done_callback(_done)
        return flight

    async def _wait(
        self, key: str, flight: _Flight, stale: CacheEntry | None
    ) -> tuple[CacheEntry, bool]:
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task), False
        except Exception as exc:
            if stale is None:
                raise
            logger.warning(
                "Refresh of %s failed (%s), serving stale rates from %s",
                key,
                exc,
                stale.fetched_at.isoformat(),
            )
            return stale, True
        finally:
            flight.waiters -= 1
            # Nobody is interested any more: abandon the provider calls.
            # The flight leaves ``_inflight`` first so that a caller arriving
            # before the task winds down starts its own refresh.
            if flight.waiters == 0 and not flight.task.done():
                if self._inflight.get(key) is flight:
                    del self._inflight[key]
                flight.task.cancel()

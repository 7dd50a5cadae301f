"""
Single-flight TTL cache for on-chain lookups.
"""

import asyncio
import functools
import hashlib
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass
class CacheEntry:
    value: Any
    computed_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.computed_at < self.ttl


class _Flight:
    """One in-progress computation and the number of callers awaiting it."""

    __slots__ = ("task", "waiters")

    def __init__(self, task: asyncio.Task):
        self.task = task
        self.waiters = 0


class ResultCache:
    """TTL cache where concurrent misses for a key share one computation.

    The first caller to miss starts the computation as its own task and
    records it in the in-flight table; later callers await the same task.
    Results are stored only on success. A caller that is cancelled stops
    waiting but does not cancel the shared task unless it was the last
    waiter.
    """

    def __init__(self,
                 default_ttl: float = 300.0,
                 clock: Optional[Callable[[], float]] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.default_ttl = default_ttl
        self.logger = get_logger("entitlements.cache")
        self.metrics = metrics
        self._clock = clock or time.monotonic
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, _Flight] = {}
        self._lock = asyncio.Lock()

        self._hits = 0
        self._misses = 0
        self._coalesced = 0

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Stable key from rule type, chain, contract, subject and any extra parts."""
        raw = "|".join(str(part).lower() for part in parts)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    async def get_or_compute(self,
                             key: str,
                             compute: Callable[[], Awaitable[Any]],
                             ttl: Optional[float] = None) -> Any:
        ttl = self.default_ttl if ttl is None else ttl

        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if entry.is_fresh(self._clock()):
                    self._hits += 1
                    self._event("hit")
                    return entry.value
                del self._entries[key]

            flight = self._inflight.get(key)
            if flight is None or flight.task.done():
                self._misses += 1
                self._event("miss")
                flight = _Flight(asyncio.create_task(self._run(key, compute, ttl)))
                flight.task.add_done_callback(functools.partial(self._land, key, flight))
                self._inflight[key] = flight
            else:
                self._coalesced += 1
                self._event("coalesced")
            flight.waiters += 1

        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                # Unpublish before cancelling so a later caller starts a new flight.
                if self._inflight.get(key) is flight:
                    del self._inflight[key]
                flight.task.cancel()

    async def _run(self, key: str, compute: Callable[[], Awaitable[Any]], ttl: float) -> Any:
        try:
            value = await compute()
        except Exception as e:
            self.logger.debug("Computation failed, result not cached", error=str(e))
            raise
        self._entries[key] = CacheEntry(value=value, computed_at=self._clock(), ttl=ttl)
        return value

    def _land(self, key: str, flight: _Flight, task: asyncio.Task):
        if self._inflight.get(key) is flight:
            del self._inflight[key]

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.is_fresh(self._clock()):
                return None
            return entry.value

    async def invalidate(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self):
        async with self._lock:
            self._entries.clear()

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            stale = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses + self._coalesced
        return {
            "hits": self._hits,
            "misses": self._misses,
            "coalesced": self._coalesced,
            "size": len(self._entries),
            "inflight": len(self._inflight),
            "hit_rate": (self._hits / lookups) if lookups else 0.0,
        }

    def _event(self, event: str):
        if self.metrics is not None:
            self.metrics.increment_counter("result_cache_events_total", event=event)

"""
Fixed-window rate limiters shared by the Gatekeeper services.

Buckets are named (``nonce``, ``verify``, ``api``) and each carries its own
per-window limit. Identifiers are ``ip:<address>`` for anonymous routes and
``user:<wallet>`` for authenticated ones. The in-memory limiter serves
single-instance deployments; the Redis limiter shares counters across
instances and fails open when Redis is unreachable.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import Depends, Request, Response

from shared.base_service import get_client_ip
from shared.config import BaseConfig
from shared.errors import RateLimited
from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate limit check."""
    allowed: bool
    limit: int
    current_count: int
    reset_in_seconds: int
    retry_after: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(time.time()) + self.reset_in_seconds),
        }


class RateLimiter(ABC):
    """Common bucket handling. Subclasses implement :meth:`check`."""

    def __init__(self, limits: Dict[str, int], window_seconds: int = 60):
        self.limits = dict(limits)
        self.window_seconds = window_seconds
        self.logger = get_logger("rate_limiter")

    def limit_for(self, bucket: str) -> int:
        try:
            return self.limits[bucket]
        except KeyError:
            raise ValueError(f"unknown rate limit bucket: {bucket}")

    @abstractmethod
    async def check(self, identifier: str, bucket: str) -> RateLimitResult:
        """Count one request for ``identifier`` in ``bucket``."""

    async def hit(self, identifier: str, bucket: str) -> RateLimitResult:
        """Count a request and raise :class:`RateLimited` if over the limit."""
        result = await self.check(identifier, bucket)
        if not result.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                identifier=identifier,
                bucket=bucket,
                current_count=result.current_count,
                limit=result.limit,
            )
            raise RateLimited(result.retry_after, details={"bucket": bucket, "limit": result.limit})
        return result

    async def start(self):
        pass

    async def close(self):
        pass


class InMemoryRateLimiter(RateLimiter):
    """Per-process fixed-window counters."""

    def __init__(self,
                 limits: Dict[str, int],
                 window_seconds: int = 60,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(limits, window_seconds)
        self.clock = clock
        self._windows: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    async def check(self, identifier: str, bucket: str) -> RateLimitResult:
        limit = self.limit_for(bucket)
        async with self._lock:
            now = self.clock()
            key = (bucket, identifier)
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0

            reset_in = max(1, math.ceil(self.window_seconds - (now - started)))
            if count >= limit:
                return RateLimitResult(allowed=False, limit=limit, current_count=count,
                                       reset_in_seconds=reset_in, retry_after=reset_in)

            self._windows[key] = (started, count + 1)
            return RateLimitResult(allowed=True, limit=limit, current_count=count + 1,
                                   reset_in_seconds=reset_in)

    async def cleanup(self) -> int:
        """Drop windows that have ended. Returns the number removed."""
        async with self._lock:
            now = self.clock()
            expired = [key for key, (started, _) in self._windows.items()
                       if now - started >= self.window_seconds]
            for key in expired:
                del self._windows[key]
        return len(expired)

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.window_seconds)
            removed = await self.cleanup()
            if removed:
                self.logger.debug("Rate limit windows cleaned", removed=removed)

    async def start(self):
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def close(self):
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
            self._cleanup_task = None

    @property
    def tracked(self) -> int:
        return len(self._windows)


class RedisRateLimiter(RateLimiter):
    """Fixed-window counters in Redis, shared by every service instance."""

    def __init__(self,
                 redis_url: str,
                 limits: Dict[str, int],
                 window_seconds: int = 60,
                 client: Optional[redis.Redis] = None):
        super().__init__(limits, window_seconds)
        self.redis_url = redis_url
        self._redis = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, identifier: str, bucket: str) -> str:
        return f"rate_limit:{bucket}:{identifier}"

    async def check(self, identifier: str, bucket: str) -> RateLimitResult:
        limit = self.limit_for(bucket)
        key = self._make_key(identifier, bucket)

        try:
            client = await self._get_redis()
            async with client.pipeline(transaction=True) as pipeline:
                pipeline.incr(key)
                pipeline.ttl(key)
                count, ttl = await pipeline.execute()
            if ttl is None or ttl < 0:
                await client.expire(key, self.window_seconds)
                ttl = self.window_seconds
        except (RedisError, OSError) as e:
            self.logger.error("Rate limit check error", error=str(e), bucket=bucket)
            return RateLimitResult(allowed=True, limit=limit, current_count=0,
                                   reset_in_seconds=self.window_seconds)

        count, reset_in = int(count), max(1, int(ttl))
        if count > limit:
            return RateLimitResult(allowed=False, limit=limit, current_count=count,
                                   reset_in_seconds=reset_in, retry_after=reset_in)
        return RateLimitResult(allowed=True, limit=limit, current_count=count, reset_in_seconds=reset_in)

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_rate_limiter(config: BaseConfig, buckets: Tuple[str, ...] = ("nonce", "verify", "api")) -> RateLimiter:
    """Build the limiter a service's config asks for, with per-minute bucket limits."""
    available = {
        "nonce": config.rate_limit_nonce_per_minute,
        "verify": config.rate_limit_verify_per_minute,
        "api": config.rate_limit_api_per_minute,
    }
    limits = {bucket: available[bucket] for bucket in buckets}
    if config.redis_url:
        get_logger("rate_limiter").info("Using Redis rate limiter", buckets=list(limits))
        return RedisRateLimiter(config.redis_url, limits)
    return InMemoryRateLimiter(limits)


async def _enforce(limiter: RateLimiter,
                   identifier: str,
                   bucket: str,
                   response: Response,
                   metrics: Optional[MetricsCollector]):
    try:
        result = await limiter.hit(identifier, bucket)
    except RateLimited:
        if metrics is not None:
            metrics.increment_counter("rate_limit_rejections_total", bucket=bucket)
        raise
    response.headers.update(result.headers())


def rate_limit_dependency(limiter: RateLimiter, bucket: str, metrics: Optional[MetricsCollector] = None):
    """FastAPI dependency enforcing ``bucket`` per client IP."""

    async def enforce(request: Request, response: Response):
        await _enforce(limiter, f"ip:{get_client_ip(request)}", bucket, response, metrics)

    return Depends(enforce)


def user_rate_limit_dependency(limiter: RateLimiter,
                               bucket: str,
                               authenticate: Callable[..., Any],
                               metrics: Optional[MetricsCollector] = None):
    """FastAPI dependency enforcing ``bucket`` per authenticated address.

    ``authenticate`` is the dependency that yields the caller's claims; the
    claims are passed through so routes can depend on this instead.
    """

    async def enforce(response: Response, claims=Depends(authenticate)):
        await _enforce(limiter, f"user:{claims.address}", bucket, response, metrics)
        return claims

    return Depends(enforce)

"""
In-memory nonce store for SIWE challenges.
"""

import asyncio
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from shared.errors import NonceInvalid
from shared.logging import get_logger


@dataclass
class Nonce:
    """A single-use login challenge."""
    value: str
    issued_at: float
    expires_at: float
    consumed: bool = False

    def is_usable(self, now: float) -> bool:
        return not self.consumed and now < self.expires_at


class NonceStore:
    """Issues nonces and guarantees each is consumed at most once.

    All table mutations happen under one ``asyncio.Lock``, so of several
    concurrent ``consume`` calls for the same value exactly one succeeds.
    A background task started with :meth:`start` sweeps entries that are
    past ``expires_at + sweep_grace``.
    """

    def __init__(self,
                 ttl_seconds: float = 300.0,
                 sweep_interval: float = 60.0,
                 sweep_grace: float = 60.0,
                 clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self.sweep_grace = sweep_grace
        self.logger = get_logger("auth.nonces")
        self._clock = clock or time.time
        self._nonces: Dict[str, Nonce] = {}
        self._lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def size(self) -> int:
        return len(self._nonces)

    async def issue(self) -> Nonce:
        """Generate and remember a fresh 128-bit nonce."""
        now = self._clock()
        async with self._lock:
            value = secrets.token_hex(16)
            while value in self._nonces:
                value = secrets.token_hex(16)
            nonce = Nonce(value=value, issued_at=now, expires_at=now + self.ttl_seconds)
            self._nonces[value] = nonce

        self.logger.debug("Nonce issued", expires_at=nonce.expires_at)
        return nonce

    async def peek(self, value: str) -> bool:
        """Report whether ``value`` could currently be consumed, without consuming it."""
        async with self._lock:
            nonce = self._nonces.get(value)
            return nonce is not None and nonce.is_usable(self._clock())

    async def consume(self, value: str) -> Nonce:
        """Atomically mark ``value`` consumed or raise :class:`NonceInvalid`."""
        async with self._lock:
            nonce = self._nonces.get(value)
            if nonce is None:
                raise NonceInvalid(details={"reason": "unknown"})
            if nonce.consumed:
                raise NonceInvalid(details={"reason": "consumed"})
            if self._clock() >= nonce.expires_at:
                raise NonceInvalid(details={"reason": "expired"})
            nonce.consumed = True
            return nonce

    async def sweep(self) -> int:
        """Drop nonces whose grace period has elapsed. Returns how many were removed."""
        cutoff = self._clock() - self.sweep_grace
        async with self._lock:
            stale = [value for value, nonce in self._nonces.items() if nonce.expires_at < cutoff]
            for value in stale:
                del self._nonces[value]

        if stale:
            self.logger.debug("Swept expired nonces", removed=len(stale), remaining=len(self._nonces))
        return len(stale)

    async def start(self):
        """Start the periodic sweep task."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())
            self.logger.info("Nonce sweeper started", interval_seconds=self.sweep_interval)

    async def stop(self):
        """Cancel the sweep task and wait for it to exit."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        self.logger.info("Nonce sweeper stopped")

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                self.logger.error("Nonce sweep failed", error=str(e))

"""
Unit tests for the nonce store.
"""

import asyncio

import pytest

from service_auth.app.nonces.store import NonceStore
from shared.errors import NonceInvalid
from shared.test_helpers import FakeClock


class TestNonceStore:
    """Test cases for NonceStore."""

    @pytest.fixture
    def clock(self):
        return FakeClock(start=1_700_000_000.0)

    @pytest.fixture
    def store(self, clock):
        return NonceStore(ttl_seconds=300, sweep_interval=60, sweep_grace=60, clock=clock)

    @pytest.mark.asyncio
    async def test_issue_returns_128_bit_hex(self, store, clock):
        nonce = await store.issue()

        assert len(nonce.value) == 32
        int(nonce.value, 16)
        assert nonce.issued_at == clock.now
        assert nonce.expires_at == clock.now + 300
        assert nonce.consumed is False

    @pytest.mark.asyncio
    async def test_issued_nonces_are_unique(self, store):
        values = {(await store.issue()).value for _ in range(50)}
        assert len(values) == 50

    @pytest.mark.asyncio
    async def test_consume_once(self, store):
        nonce = await store.issue()

        consumed = await store.consume(nonce.value)
        assert consumed.consumed is True

        with pytest.raises(NonceInvalid) as exc_info:
            await store.consume(nonce.value)
        assert exc_info.value.details["reason"] == "consumed"

    @pytest.mark.asyncio
    async def test_unknown_nonce_rejected(self, store):
        with pytest.raises(NonceInvalid):
            await store.consume("deadbeefdeadbeef")

    @pytest.mark.asyncio
    async def test_consume_just_before_expiry(self, store, clock):
        nonce = await store.issue()
        clock.advance(299.999)

        await store.consume(nonce.value)

    @pytest.mark.asyncio
    async def test_consume_after_expiry_rejected(self, store, clock):
        nonce = await store.issue()
        clock.advance(300.001)

        with pytest.raises(NonceInvalid) as exc_info:
            await store.consume(nonce.value)
        assert exc_info.value.details["reason"] == "expired"

    @pytest.mark.asyncio
    async def test_peek_does_not_consume(self, store):
        nonce = await store.issue()

        assert await store.peek(nonce.value) is True
        assert await store.peek(nonce.value) is True
        await store.consume(nonce.value)
        assert await store.peek(nonce.value) is False

    @pytest.mark.asyncio
    async def test_concurrent_consume_single_winner(self, store):
        nonce = await store.issue()

        results = await asyncio.gather(
            *(store.consume(nonce.value) for _ in range(20)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, NonceInvalid)]
        assert len(successes) == 1
        assert len(failures) == 19

    @pytest.mark.asyncio
    async def test_sweep_respects_grace_period(self, store, clock):
        old = await store.issue()
        clock.advance(200)
        fresh = await store.issue()

        clock.advance(150)  # old expired 50s ago, still inside grace
        assert await store.sweep() == 0

        clock.advance(20)  # old now 70s past expiry
        assert await store.sweep() == 1
        assert store.size == 1
        assert await store.peek(fresh.value) is True
        assert await store.peek(old.value) is False

    @pytest.mark.asyncio
    async def test_start_and_stop_sweeper(self, clock):
        store = NonceStore(ttl_seconds=1, sweep_interval=0.01, sweep_grace=0, clock=clock)
        await store.issue()
        clock.advance(5)

        await store.start()
        await asyncio.sleep(0.05)
        await store.stop()

        assert store.size == 0

"""
Unit tests for the blockchain JSON-RPC client.
"""

import httpx
import pytest

from service_entitlements.app.chain.abi import BALANCE_OF, OWNER_OF, decode_uint256, encode_call, selector
from service_entitlements.app.chain.client import BlockchainClient
from shared.circuit_breaker import CircuitBreakerManager
from shared.config import RpcEndpoints
from shared.errors import RPCError
from shared.test_helpers import TOKEN_ADDRESS, MockRpcNetwork, MockRpcNode, TestDataFactory, TestEnvironment

PRIMARY = TestEnvironment.PRIMARY_RPC
FALLBACK = TestEnvironment.FALLBACK_RPC


class TestAbi:
    """Test cases for call encoding."""

    def test_selectors(self):
        assert BALANCE_OF == "0x70a08231"
        assert OWNER_OF == "0x6352211e"
        assert selector("totalSupply()") == "0x18160ddd"

    def test_encode_balance_of(self):
        holder = "0x" + "12" * 20
        data = encode_call(BALANCE_OF, [("address", holder)])
        assert data == "0x70a08231" + "0" * 24 + "12" * 20

    def test_encode_rejects_bad_selector(self):
        with pytest.raises(ValueError):
            encode_call("0x1234", [])

    def test_decode_short_result(self):
        with pytest.raises(RPCError):
            decode_uint256(b"\x01")


class TestBlockchainClient:
    """Test cases for BlockchainClient."""

    @pytest.fixture
    def primary(self):
        return MockRpcNode()

    @pytest.fixture
    def fallback(self):
        return MockRpcNode()

    @pytest.fixture
    def wallet(self):
        return TestDataFactory.create_wallet(6)

    @pytest.fixture
    def make_client(self, primary, fallback):
        def factory(with_fallback=True, timeout=0.2, breakers=None):
            network = MockRpcNetwork({PRIMARY: primary, FALLBACK: fallback})
            endpoints = {1: RpcEndpoints(primary=PRIMARY, fallback=FALLBACK if with_fallback else None)}
            return BlockchainClient(
                endpoints,
                timeout=timeout,
                http_client=httpx.AsyncClient(transport=network.transport()),
                breakers=breakers,
            )
        return factory

    async def _balance(self, client, holder):
        data = await client.call(1, TOKEN_ADDRESS, BALANCE_OF, [("address", holder)])
        return decode_uint256(data)

    @pytest.mark.asyncio
    async def test_primary_success(self, make_client, primary, fallback, wallet):
        primary.set_balance(TOKEN_ADDRESS, wallet.address, 42)
        client = make_client()

        assert await self._balance(client, wallet.lower) == 42
        assert len(primary.calls) == 1
        assert fallback.calls == []
        request = primary.calls[0]
        assert request["method"] == "eth_call"
        assert request["params"][1] == "latest"
        await client.close()

    @pytest.mark.asyncio
    async def test_fallback_on_connection_error(self, make_client, primary, fallback, wallet):
        primary.down = True
        fallback.set_balance(TOKEN_ADDRESS, wallet.address, 7)
        client = make_client()

        assert await self._balance(client, wallet.lower) == 7
        assert len(primary.calls) == 1
        assert len(fallback.calls) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_fallback_on_timeout(self, make_client, primary, fallback, wallet):
        primary.delay = 1.0
        fallback.set_balance(TOKEN_ADDRESS, wallet.address, 9)
        client = make_client(timeout=0.05)

        assert await self._balance(client, wallet.lower) == 9
        await client.close()

    @pytest.mark.asyncio
    async def test_fallback_on_http_error(self, make_client, primary, fallback, wallet):
        primary.http_status = 502
        fallback.set_balance(TOKEN_ADDRESS, wallet.address, 3)
        client = make_client()

        assert await self._balance(client, wallet.lower) == 3
        await client.close()

    @pytest.mark.asyncio
    async def test_fallback_on_malformed_response(self, make_client, primary, fallback, wallet):
        primary.malformed = True
        fallback.set_balance(TOKEN_ADDRESS, wallet.address, 5)
        client = make_client()

        assert await self._balance(client, wallet.lower) == 5
        await client.close()

    @pytest.mark.asyncio
    async def test_rpc_error_does_not_fall_back(self, make_client, primary, fallback):
        client = make_client()

        with pytest.raises(RPCError) as exc_info:
            await client.call(1, TOKEN_ADDRESS, OWNER_OF, [("uint256", 99)])

        assert exc_info.value.details["reason"] == "rpc error"
        assert len(primary.calls) == 1
        assert fallback.calls == []
        await client.close()

    @pytest.mark.asyncio
    async def test_both_endpoints_fail(self, make_client, primary, fallback, wallet):
        primary.down = True
        fallback.http_status = 500
        client = make_client()

        with pytest.raises(RPCError) as exc_info:
            await self._balance(client, wallet.lower)

        assert exc_info.value.status_code == 503
        assert "primary" not in exc_info.value.message
        assert len(primary.calls) == 1
        assert len(fallback.calls) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_no_fallback_configured(self, make_client, primary, wallet):
        primary.down = True
        client = make_client(with_fallback=False)

        with pytest.raises(RPCError):
            await self._balance(client, wallet.lower)
        await client.close()

    @pytest.mark.asyncio
    async def test_unknown_chain(self, make_client, primary):
        client = make_client()

        with pytest.raises(RPCError):
            await client.call(999, TOKEN_ADDRESS, BALANCE_OF, [("address", TOKEN_ADDRESS)])
        assert primary.calls == []
        await client.close()

    @pytest.mark.asyncio
    async def test_open_circuit_skips_primary(self, make_client, primary, fallback, wallet):
        primary.down = True
        fallback.set_balance(TOKEN_ADDRESS, wallet.address, 1)
        client = make_client(breakers=CircuitBreakerManager(failure_threshold=2, recovery_timeout=60))

        for _ in range(2):
            await self._balance(client, wallet.lower)
        assert len(primary.calls) == 2

        await self._balance(client, wallet.lower)
        assert len(primary.calls) == 2
        assert len(fallback.calls) == 3
        await client.close()

    @pytest.mark.asyncio
    async def test_health_check(self, make_client):
        client = make_client()

        assert await client.health_check(1) == 16
        await client.close()

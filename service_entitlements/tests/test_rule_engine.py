"""
Unit tests for the policy engine and rule evaluators.
"""

import asyncio

import httpx
import pytest

from service_entitlements.app.allowlists.repository import InMemoryAllowlistRepository
from service_entitlements.app.cache.result_cache import ResultCache
from service_entitlements.app.chain.client import BlockchainClient
from service_entitlements.app.rules.engine import PolicyManager
from service_entitlements.app.rules.models import (
    AllowlistRule, Combination, ERC20MinBalanceRule, ERC721OwnerRule, HasScopeRule, Policy, RuleType,
)
from shared.addresses import ZERO_ADDRESS
from shared.config import RpcEndpoints
from shared.errors import AccessDenied, InvalidAddress, PolicyNotFound, RPCError
from shared.test_helpers import NFT_ADDRESS, TOKEN_ADDRESS, MockRpcNetwork, MockRpcNode, TestDataFactory, TestEnvironment

ONE_TOKEN = 10 ** 18


class TestPolicyManager:
    """Test cases for PolicyManager."""

    @pytest.fixture
    def primary(self):
        return MockRpcNode()

    @pytest.fixture
    def fallback(self):
        return MockRpcNode()

    @pytest.fixture
    def wallet(self):
        return TestDataFactory.create_wallet(3)

    @pytest.fixture
    def other(self):
        return TestDataFactory.create_wallet(4)

    @pytest.fixture
    def allowlists(self, wallet):
        return InMemoryAllowlistRepository({"vip": [wallet.address]})

    @pytest.fixture
    def policies(self):
        return [
            Policy("holders", (ERC20MinBalanceRule(TOKEN_ADDRESS, ONE_TOKEN),)),
            Policy("members", (ERC721OwnerRule(NFT_ADDRESS, token_id=7), AllowlistRule("vip")),
                   combination=Combination.ANY),
            Policy("collectors", (ERC721OwnerRule(NFT_ADDRESS),)),
            Policy("strict", (ERC20MinBalanceRule(TOKEN_ADDRESS, ONE_TOKEN), AllowlistRule("vip"))),
            Policy("premium", (HasScopeRule("premium"),)),
            Policy("ghosts", (AllowlistRule("missing"),)),
        ]

    @pytest.fixture
    def cache(self):
        return ResultCache(default_ttl=300)

    @pytest.fixture
    def manager(self, primary, fallback, allowlists, policies, cache):
        network = MockRpcNetwork({TestEnvironment.PRIMARY_RPC: primary, TestEnvironment.FALLBACK_RPC: fallback})
        client = BlockchainClient(
            {1: RpcEndpoints(primary=TestEnvironment.PRIMARY_RPC, fallback=TestEnvironment.FALLBACK_RPC)},
            timeout=10.0,
            http_client=httpx.AsyncClient(transport=network.transport()),
        )
        return PolicyManager(client, cache, allowlists, policies)

    @pytest.mark.asyncio
    async def test_erc20_balance_boundary(self, manager, primary, wallet):
        primary.set_balance(TOKEN_ADDRESS, wallet.address, ONE_TOKEN)
        assert await manager.evaluate("holders", wallet.lower, 1) is True

    @pytest.mark.asyncio
    async def test_erc20_balance_below_minimum(self, manager, primary, wallet):
        primary.set_balance(TOKEN_ADDRESS, wallet.address, ONE_TOKEN - 1)
        assert await manager.evaluate("holders", wallet.lower, 1) is False

    @pytest.mark.asyncio
    async def test_balance_is_cached(self, manager, primary, wallet):
        primary.set_balance(TOKEN_ADDRESS, wallet.address, ONE_TOKEN)

        assert await manager.evaluate("holders", wallet.lower, 1) is True
        primary.set_balance(TOKEN_ADDRESS, wallet.address, 0)
        assert await manager.evaluate("holders", wallet.address, 1) is True
        assert len(primary.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_evaluations_share_one_read(self, manager, primary, wallet):
        primary.set_balance(TOKEN_ADDRESS, wallet.address, ONE_TOKEN)
        primary.delay = 0.05

        results = await asyncio.gather(*[manager.evaluate("holders", wallet.lower, 1) for _ in range(10)])

        assert results == [True] * 10
        assert len(primary.calls) == 1

    @pytest.mark.asyncio
    async def test_erc721_owner(self, manager, primary, wallet, other):
        primary.set_owner(NFT_ADDRESS, 7, wallet.address)

        granted = await manager.evaluate_detailed("members", wallet.lower, 1)
        denied = await manager.evaluate_detailed("members", other.lower, 1)

        assert granted.granted is True
        assert denied.granted is False
        assert denied.outcomes[0].rule_type == RuleType.ERC721_OWNER

    @pytest.mark.asyncio
    async def test_erc721_burned_token(self, manager, primary, other):
        primary.set_owner(NFT_ADDRESS, 7, ZERO_ADDRESS)

        decision = await manager.evaluate_detailed("members", other.lower, 1)

        assert decision.granted is False
        assert "burned" in decision.outcomes[0].detail
        assert decision.errors == []

    @pytest.mark.asyncio
    async def test_erc721_any_token_of_collection(self, manager, primary, wallet, other):
        primary.set_balance(NFT_ADDRESS, wallet.address, 2)

        assert await manager.evaluate("collectors", wallet.lower, 1) is True
        assert await manager.evaluate("collectors", other.lower, 1) is False

    @pytest.mark.asyncio
    async def test_allowlist_membership_via_any(self, manager, primary, wallet):
        primary.set_owner(NFT_ADDRESS, 7, "0x" + "9" * 40)

        assert await manager.evaluate("members", wallet.address, 1) is True

    @pytest.mark.asyncio
    async def test_unknown_allowlist_denies(self, manager, wallet):
        decision = await manager.evaluate_detailed("ghosts", wallet.lower, 1)

        assert decision.granted is False
        assert decision.errors == []

    @pytest.mark.asyncio
    async def test_all_requires_every_rule(self, manager, primary, wallet, other):
        primary.set_balance(TOKEN_ADDRESS, wallet.address, ONE_TOKEN)
        primary.set_balance(TOKEN_ADDRESS, other.address, ONE_TOKEN)

        assert await manager.evaluate("strict", wallet.lower, 1) is True
        assert await manager.evaluate("strict", other.lower, 1) is False

    @pytest.mark.asyncio
    async def test_has_scope(self, manager, wallet):
        assert await manager.evaluate("premium", wallet.lower, 1, scopes=["auth", "premium"]) is True
        assert await manager.evaluate("premium", wallet.lower, 1, scopes=["auth"]) is False

    @pytest.mark.asyncio
    async def test_partial_rpc_failure_fails_closed(self, manager, primary, fallback, wallet):
        primary.down = True
        fallback.down = True

        decision = await manager.evaluate_detailed("strict", wallet.lower, 1)

        assert decision.granted is False
        assert len(decision.errors) == 1
        assert decision.outcomes[1].allowed is True

    @pytest.mark.asyncio
    async def test_partial_rpc_failure_under_any(self, manager, primary, fallback, wallet):
        primary.down = True
        fallback.down = True

        decision = await manager.evaluate_detailed("members", wallet.lower, 1)

        assert decision.granted is True

    @pytest.mark.asyncio
    async def test_all_rules_failing_is_unavailable(self, manager, primary, fallback, wallet):
        primary.down = True
        fallback.http_status = 500

        with pytest.raises(RPCError):
            await manager.evaluate("holders", wallet.lower, 1)

    @pytest.mark.asyncio
    async def test_failed_read_is_not_cached(self, manager, primary, fallback, wallet):
        primary.down = True
        fallback.down = True
        with pytest.raises(RPCError):
            await manager.evaluate("holders", wallet.lower, 1)

        primary.down = False
        primary.set_balance(TOKEN_ADDRESS, wallet.address, ONE_TOKEN)
        assert await manager.evaluate("holders", wallet.lower, 1) is True

    @pytest.mark.asyncio
    async def test_short_circuit_cancels_slow_rule(self, manager, primary, wallet):
        primary.delay = 5.0

        decision = await asyncio.wait_for(manager.evaluate_detailed("members", wallet.lower, 1), timeout=1)

        assert decision.granted is True
        assert len(decision.outcomes) == 1
        assert decision.outcomes[0].rule_type == RuleType.ALLOWLIST

    @pytest.mark.asyncio
    async def test_rule_chain_overrides_request_chain(self, manager, primary, wallet):
        primary.set_balance(TOKEN_ADDRESS, wallet.address, ONE_TOKEN)
        manager.load([Policy("pinned", (ERC20MinBalanceRule(TOKEN_ADDRESS, 1, chain_id=1),))])

        assert await manager.evaluate("pinned", wallet.lower, 137) is True

    @pytest.mark.asyncio
    async def test_unknown_policy(self, manager, wallet):
        with pytest.raises(PolicyNotFound):
            await manager.evaluate("nope", wallet.lower, 1)

    @pytest.mark.asyncio
    async def test_invalid_subject(self, manager):
        with pytest.raises(InvalidAddress):
            await manager.evaluate("holders", "0x1234", 1)

    @pytest.mark.asyncio
    async def test_require_raises_access_denied(self, manager, wallet):
        with pytest.raises(AccessDenied):
            await manager.require("holders", wallet.lower, 1)

    def test_reload_replaces_table(self, manager):
        assert "holders" in manager.policy_names()

        count = manager.reload([Policy("only", (HasScopeRule("auth"),))])

        assert count == 1
        assert manager.policy_names() == ["only"]
        with pytest.raises(PolicyNotFound):
            manager.get_policy("holders")

    def test_duplicate_names_rejected(self, manager):
        rule = HasScopeRule("auth")
        with pytest.raises(ValueError):
            manager.load([Policy("a", (rule,)), Policy("a", (rule,))])
        assert "holders" in manager.policy_names()

    @pytest.mark.asyncio
    async def test_stats(self, manager, primary, wallet):
        primary.set_balance(TOKEN_ADDRESS, wallet.address, ONE_TOKEN)
        await manager.evaluate("holders", wallet.lower, 1)
        await manager.evaluate("premium", wallet.lower, 1)

        stats = manager.stats()
        assert stats["evaluations"] == 2
        assert stats["grants"] == 1


class TestPolicyModels:
    """Test cases for rule and policy models."""

    def test_rule_normalizes_token_address(self):
        rule = ERC20MinBalanceRule("0x" + "A" * 40, 1)
        assert rule.token_address == "0x" + "a" * 40

    def test_negative_balance_rejected(self):
        with pytest.raises(ValueError):
            ERC20MinBalanceRule(TOKEN_ADDRESS, -1)

    def test_policy_requires_rules(self):
        with pytest.raises(ValueError):
            Policy("empty", ())

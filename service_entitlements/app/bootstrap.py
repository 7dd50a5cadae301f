"""
Wiring of the policy evaluation components from service configuration.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from shared.circuit_breaker import CircuitBreakerManager
from shared.config import BaseConfig
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .allowlists.repository import InMemoryAllowlistRepository, read_allowlist_file
from .cache.result_cache import ResultCache
from .chain.client import BlockchainClient
from .rules.engine import PolicyManager
from .rules.loader import load_policies_file

logger = get_logger("entitlements.bootstrap")


@dataclass
class PolicyStack:
    """Components needed to evaluate policies."""
    chain_client: BlockchainClient
    cache: ResultCache
    allowlists: InMemoryAllowlistRepository
    policies: PolicyManager

    async def close(self):
        await self.chain_client.close()


def build_policy_stack(config: BaseConfig,
                       metrics: Optional[MetricsCollector] = None,
                       http_client: Optional[httpx.AsyncClient] = None) -> PolicyStack:
    """Build the chain client, cache, allowlists and policy manager."""
    chain_client = BlockchainClient(
        config.resolve_rpc_endpoints(),
        timeout=config.rpc_timeout_seconds,
        http_client=http_client,
        breakers=CircuitBreakerManager(
            failure_threshold=config.circuit_failure_threshold,
            recovery_timeout=config.circuit_recovery_seconds,
        ),
        metrics=metrics,
    )
    cache = ResultCache(default_ttl=config.cache_ttl_seconds, metrics=metrics)

    if config.allowlists_file:
        allowlists = InMemoryAllowlistRepository.from_file(config.allowlists_file)
    else:
        allowlists = InMemoryAllowlistRepository()

    policies = load_policies_file(config.policies_file) if config.policies_file else []
    if not policies:
        logger.warning("No policies configured")

    manager = PolicyManager(chain_client, cache, allowlists, policies, metrics=metrics)
    return PolicyStack(chain_client=chain_client, cache=cache, allowlists=allowlists, policies=manager)


def reload_from_files(stack: PolicyStack, config: BaseConfig) -> int:
    """Re-read the policy and allowlist files. The previous tables stay live if parsing fails."""
    policies = load_policies_file(config.policies_file) if config.policies_file else []
    if config.allowlists_file:
        stack.allowlists.replace(read_allowlist_file(config.allowlists_file))
    return stack.policies.reload(policies)

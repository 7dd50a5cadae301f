"""
Entitlements service for Gatekeeper.

Exposes policy evaluation over HTTP for deployments that run token gating
separately from the gateway.
"""

from typing import Optional

import httpx

from shared.addresses import InvalidAddressError, normalize_address
from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import InvalidAddress
from .bootstrap import build_policy_stack, reload_from_files
from .rules.models import EvaluateRequest, EvaluateResponse


class EntitlementsService(BaseService):
    """Entitlements service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__("entitlements", 8011, config)
        self.stack = build_policy_stack(self.config, metrics=self.metrics, http_client=http_client)
        self._setup_entitlements_routes()

    def _setup_entitlements_routes(self):
        """Set up entitlements-specific routes."""

        @self.app.on_event("shutdown")
        async def shutdown():
            await self.stack.close()

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "entitlements",
                "message": "Gatekeeper - Entitlements Service",
                "version": "1.0.0",
                "capabilities": ["erc20_min_balance", "erc721_owner", "allowlist", "has_scope"]
            }

        @self.app.post("/entitlements/evaluate", response_model=EvaluateResponse)
        async def evaluate(request: EvaluateRequest):
            """Evaluate a policy for an address."""
            try:
                address = normalize_address(request.address)
            except InvalidAddressError:
                raise InvalidAddress()

            decision = await self.stack.policies.evaluate_detailed(
                request.policy, address, request.chain_id, request.scopes
            )
            return EvaluateResponse(
                policy=decision.policy,
                address=decision.subject,
                granted=decision.granted,
                outcomes=[outcome.to_dict() for outcome in decision.outcomes],
                evaluation_time_ms=decision.evaluation_time_ms,
            )

        @self.app.get("/entitlements/policies")
        async def list_policies():
            """List configured policy names."""
            return {"policies": self.stack.policies.policy_names()}

        @self.app.post("/entitlements/policies/reload")
        async def reload_policies():
            """Reload policy and allowlist files."""
            count = reload_from_files(self.stack, self.config)
            return {"reloaded": count}

        @self.app.get("/entitlements/stats")
        async def stats():
            """Engine and cache statistics."""
            return {
                "engine": self.stack.policies.stats(),
                "cache": self.stack.cache.stats(),
                "circuit_breakers": self.stack.chain_client.breakers.get_all_states(),
            }

    async def _check_dependencies(self):
        chains = sorted(self.stack.chain_client.endpoints)
        return {
            "chains": ",".join(str(chain) for chain in chains) or "none",
            "policies": str(len(self.stack.policies.policy_names())),
        }


def create_app(config: Optional[ServiceConfig] = None, http_client: Optional[httpx.AsyncClient] = None):
    """Create FastAPI application."""
    service = EntitlementsService(config, http_client)
    return service.app


def main():
    service = EntitlementsService()
    service.run()


if __name__ == "__main__":
    main()

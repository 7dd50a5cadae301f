"""
API Gateway service for Gatekeeper.

Runs SIWE login, credential checks and token gating in one process.
"""

from typing import Optional

import httpx

from service_auth.app.nonces.store import NonceStore
from service_auth.app.routes import create_siwe_router
from service_auth.app.siwe.verifier import SiweVerifier
from service_auth.app.tokens.credentials import CredentialClaims, CredentialIssuer, CredentialValidator
from service_entitlements.app.bootstrap import build_policy_stack
from service_entitlements.app.rules.models import PolicyDecision
from shared.audit import AuditLogger
from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.rate_limit import create_rate_limiter, rate_limit_dependency, user_rate_limit_dependency
from .domain.auth_middleware import AuthMiddleware
from .domain.policy_guard import PolicyGuard, require_policy


def _iso(value) -> str:
    return value.isoformat().replace("+00:00", "Z")


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__("gateway", 8000, config)

        self.audit = AuditLogger(
            failure_threshold=self.config.audit_failure_threshold,
            window_seconds=self.config.audit_failure_window_seconds,
        )
        self.nonce_store = NonceStore(
            ttl_seconds=self.config.nonce_ttl_seconds,
            sweep_interval=self.config.nonce_sweep_interval_seconds,
            sweep_grace=self.config.nonce_sweep_grace_seconds,
        )
        self.verifier = SiweVerifier(self.config.siwe_domain, self.nonce_store)
        self.issuer = CredentialIssuer(
            self.config.jwt_secret,
            ttl_seconds=self.config.token_ttl_seconds,
            algorithm=self.config.jwt_algorithm,
            issuer=self.config.jwt_issuer,
        )
        self.validator = CredentialValidator(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            issuer=self.config.jwt_issuer,
        )
        self.auth_middleware = AuthMiddleware(self.validator, audit=self.audit, metrics=self.metrics)

        self.rate_limiter = create_rate_limiter(self.config)
        self.stack = build_policy_stack(self.config, metrics=self.metrics, http_client=http_client)
        self.policy_guard = PolicyGuard(
            self.stack.policies,
            default_chain_id=self.config.default_chain_id,
            deadline_seconds=self.config.request_deadline_seconds,
            audit=self.audit,
        )

        self._setup_gateway_routes()

    def _setup_gateway_routes(self):
        """Set up gateway routes."""

        @self.app.on_event("startup")
        async def _startup():
            await self.nonce_store.start()
            await self.rate_limiter.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.nonce_store.stop()
            await self.rate_limiter.close()
            await self.stack.close()

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "gateway",
                "message": "Gatekeeper - API Gateway",
                "version": "1.0.0",
                "endpoints": [
                    "/auth/siwe/nonce",
                    "/auth/siwe/verify",
                    "/auth/me",
                    "/api/access/{policy_name}",
                ],
            }

        self.app.include_router(create_siwe_router(
            self.nonce_store,
            self.verifier,
            self.issuer,
            default_scopes=self.config.default_scopes,
            audit=self.audit,
            metrics=self.metrics,
            nonce_dependencies=[rate_limit_dependency(self.rate_limiter, "nonce", self.metrics)],
            verify_dependencies=[rate_limit_dependency(self.rate_limiter, "verify", self.metrics)],
        ))

        api_limit = user_rate_limit_dependency(
            self.rate_limiter, "api", self.auth_middleware.authenticate_request, self.metrics
        )

        @self.app.get("/auth/me")
        async def whoami(claims: CredentialClaims = api_limit):
            """Return the authenticated caller."""
            return {
                "address": claims.address,
                "scopes": list(claims.scopes),
                "expiresAt": _iso(claims.expires_at_datetime),
            }

        @self.app.get("/api/access/{policy_name}", dependencies=[api_limit])
        async def access(policy_name: str,
                         decision: PolicyDecision = require_policy(self.policy_guard, self.auth_middleware)):
            """Token-gated resource: succeeds only when the policy grants access."""
            return {
                "policy": decision.policy,
                "address": decision.subject,
                "granted": decision.granted,
            }

    async def _check_dependencies(self):
        return {
            "nonce_store": "ok",
            "active_nonces": str(self.nonce_store.size),
            "chains": ",".join(str(chain) for chain in sorted(self.stack.chain_client.endpoints)) or "none",
            "policies": str(len(self.stack.policies.policy_names())),
        }


def create_app(config: Optional[ServiceConfig] = None, http_client: Optional[httpx.AsyncClient] = None):
    """Create FastAPI application."""
    service = GatewayService(config, http_client)
    return service.app


def main():
    service = GatewayService()
    service.run()


if __name__ == "__main__":
    main()

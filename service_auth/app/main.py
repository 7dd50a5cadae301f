"""
Auth service for Gatekeeper.

Standalone SIWE login plus credential introspection for deployments that
run authentication separately from the gateway.
"""

from typing import Optional

from pydantic import BaseModel

from shared.audit import AuditLogger
from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import GatekeeperError
from shared.rate_limit import create_rate_limiter, rate_limit_dependency
from .nonces.store import NonceStore
from .routes import create_siwe_router
from .siwe.verifier import SiweVerifier
from .tokens.credentials import CredentialIssuer, CredentialValidator


class TokenValidationRequest(BaseModel):
    """Request model for token introspection."""
    token: str


class AuthService(BaseService):
    """Auth service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__("auth", 8010, config)
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
        self.audit = AuditLogger(
            failure_threshold=self.config.audit_failure_threshold,
            window_seconds=self.config.audit_failure_window_seconds,
        )
        self.rate_limiter = create_rate_limiter(self.config, buckets=("nonce", "verify"))

        self._setup_auth_routes()

    def _setup_auth_routes(self):
        """Set up auth-specific routes."""

        @self.app.on_event("startup")
        async def startup():
            await self.nonce_store.start()
            await self.rate_limiter.start()

        @self.app.on_event("shutdown")
        async def shutdown():
            await self.nonce_store.stop()
            await self.rate_limiter.close()

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "auth",
                "message": "Gatekeeper - Auth Service",
                "version": "1.0.0"
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

        @self.app.post("/auth/token/validate")
        async def validate_token(request: TokenValidationRequest):
            """Token introspection endpoint."""
            try:
                claims = self.validator.validate(request.token)
            except GatekeeperError as e:
                self.metrics.increment_counter("token_validations_total", status=e.code.lower())
                return {"valid": False, "code": e.code}

            self.metrics.increment_counter("token_validations_total", status="valid")
            return {
                "valid": True,
                "address": claims.address,
                "scopes": list(claims.scopes),
                "expiresAt": claims.expires_at_datetime.isoformat().replace("+00:00", "Z"),
            }

    async def _check_dependencies(self):
        return {"nonce_store": "ok", "active_nonces": str(self.nonce_store.size)}


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = AuthService(config)
    return service.app


def main():
    service = AuthService()
    service.run()


if __name__ == "__main__":
    main()

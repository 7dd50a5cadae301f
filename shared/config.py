"""
Shared configuration management for the Gatekeeper services.

Settings are read from ``GATEKEEPER_*`` environment variables or a ``.env``
file. Complex values such as ``GATEKEEPER_RPC_ENDPOINTS`` are JSON, e.g.
``{"1": {"primary": "https://rpc.example", "fallback": "https://backup.example"}}``.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_JWT_SECRET = "gatekeeper-local-development-secret"


class RpcEndpoints(BaseModel):
    """Primary and optional fallback JSON-RPC URLs for one chain."""

    primary: str
    fallback: Optional[str] = None


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="GATEKEEPER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # SIWE
    siwe_domain: str = "localhost"
    nonce_ttl_seconds: int = Field(default=300, gt=0)
    nonce_sweep_interval_seconds: float = Field(default=60.0, gt=0)
    nonce_sweep_grace_seconds: float = Field(default=60.0, ge=0)

    # Credentials
    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "gatekeeper"
    token_ttl_seconds: int = Field(default=86400, gt=0)
    default_scopes: List[str] = Field(default_factory=lambda: ["auth"])

    # Blockchain
    default_chain_id: int = 1
    rpc_endpoints: Dict[int, RpcEndpoints] = Field(default_factory=dict)
    ethereum_rpc: Optional[str] = None
    ethereum_rpc_fallback: Optional[str] = None
    rpc_timeout_seconds: float = Field(default=5.0, gt=0)
    circuit_failure_threshold: int = Field(default=5, gt=0)
    circuit_recovery_seconds: float = Field(default=30.0, gt=0)

    # Policy evaluation
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    policies_file: Optional[str] = None
    allowlists_file: Optional[str] = None
    request_deadline_seconds: float = Field(default=10.0, gt=0)

    # Rate limiting
    redis_url: Optional[str] = None
    rate_limit_nonce_per_minute: int = Field(default=60, gt=0)
    rate_limit_verify_per_minute: int = Field(default=20, gt=0)
    rate_limit_api_per_minute: int = Field(default=1000, gt=0)

    # Audit
    audit_failure_threshold: int = Field(default=5, gt=0)
    audit_failure_window_seconds: float = Field(default=300.0, gt=0)

    @model_validator(mode="after")
    def _check_secret(self):
        if self.env != "local" and self.jwt_secret == DEV_JWT_SECRET:
            raise ValueError("GATEKEEPER_JWT_SECRET must be set outside the local environment")
        if len(self.jwt_secret) < 16:
            raise ValueError("GATEKEEPER_JWT_SECRET must be at least 16 characters")
        return self

    def resolve_rpc_endpoints(self) -> Dict[int, RpcEndpoints]:
        """Return the per-chain endpoint table, folding in the default-chain shorthand."""
        endpoints = dict(self.rpc_endpoints)
        if self.ethereum_rpc and self.default_chain_id not in endpoints:
            endpoints[self.default_chain_id] = RpcEndpoints(
                primary=self.ethereum_rpc,
                fallback=self.ethereum_rpc_fallback,
            )
        return endpoints


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)

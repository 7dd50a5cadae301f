"""
Shared utilities for the Gatekeeper services.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- audit: Authentication audit trail
- addresses: Ethereum address validation and normalization
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service skeleton

Do not import from service_* packages into shared/.
"""

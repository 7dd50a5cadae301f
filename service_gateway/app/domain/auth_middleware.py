"""
Authentication middleware for Gateway.
"""

from typing import Optional

from fastapi import Depends, Request

from service_auth.app.tokens.credentials import CredentialClaims, CredentialValidator
from shared.audit import AuditLogger
from shared.base_service import get_client_ip
from shared.errors import AuthenticationError
from shared.logging import get_logger, set_request_context
from shared.metrics import MetricsCollector


class AuthMiddleware:
    """Validates bearer credentials on protected routes.

    Use :meth:`dependency` as a FastAPI dependency. On success the claims are
    stored on ``request.state.credentials`` and the address is bound to the
    log context; on failure the :class:`AuthenticationError` propagates to the
    service's error handler, which answers 401 with the error code.
    """

    def __init__(self,
                 validator: CredentialValidator,
                 audit: Optional[AuditLogger] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.validator = validator
        self.audit = audit
        self.metrics = metrics
        self.logger = get_logger("gateway.auth_middleware")

    async def authenticate_request(self, request: Request) -> CredentialClaims:
        """Authenticate incoming request with its bearer credential."""
        try:
            claims = self.validator.validate_header(request.headers.get("Authorization"))
        except AuthenticationError as e:
            self._count(e.code.lower())
            self.logger.warning("Credential rejected", code=e.code, path=request.url.path)
            if self.audit is not None:
                self.audit.failure("credential_check", reason=e.code, ip=get_client_ip(request),
                                   path=request.url.path)
            raise

        self._count("valid")
        request.state.credentials = claims
        set_request_context(address=claims.address)
        return claims

    def _count(self, status: str):
        if self.metrics is not None:
            self.metrics.increment_counter("token_validations_total", status=status)

    def dependency(self):
        return Depends(self.authenticate_request)

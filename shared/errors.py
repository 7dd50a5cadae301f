"""
Shared error handling for the Gatekeeper services.

Every error carries a stable machine-readable ``code`` and the HTTP status
it maps to. Only ``error`` and ``code`` are ever returned to clients;
``details`` are for logs.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: str


class GatekeeperError(Exception):
    """Base exception for Gatekeeper services."""

    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.message, code=self.code)


class AuthenticationError(GatekeeperError):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, code: str = "AUTHENTICATION_ERROR", message: str = "Authentication failed",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class NonceInvalid(AuthenticationError):
    """Nonce is unknown, already consumed, or expired."""

    def __init__(self, message: str = "Nonce is invalid or expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("NONCE_INVALID", message, details)


class MessageExpired(AuthenticationError):
    """SIWE message expiration time has passed."""

    def __init__(self, message: str = "Message has expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("MESSAGE_EXPIRED", message, details)


class MessageNotYetValid(AuthenticationError):
    """SIWE message not-before time is still in the future."""

    def __init__(self, message: str = "Message is not yet valid", details: Optional[Dict[str, Any]] = None):
        super().__init__("MESSAGE_NOT_YET_VALID", message, details)


class DomainMismatch(AuthenticationError):
    """SIWE message was issued for another domain."""

    def __init__(self, message: str = "Domain mismatch", details: Optional[Dict[str, Any]] = None):
        super().__init__("DOMAIN_MISMATCH", message, details)


class InvalidSignature(AuthenticationError):
    """Signature does not recover to the claimed address."""

    def __init__(self, message: str = "Invalid signature", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_SIGNATURE", message, details)


class MalformedMessage(GatekeeperError):
    """SIWE message could not be parsed."""

    status_code = 400

    def __init__(self, message: str = "Malformed SIWE message", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_MESSAGE", message, details)


class TokenExpired(AuthenticationError):
    """Credential is correctly signed but past its expiry."""

    def __init__(self, message: str = "Token has expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_EXPIRED", message, details)


class InvalidToken(AuthenticationError):
    """Credential failed decoding, signature or claim checks."""

    def __init__(self, message: str = "Invalid token", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_TOKEN", message, details)


class MalformedAuthHeader(AuthenticationError):
    """Authorization header is present but not ``Bearer <token>``."""

    def __init__(self, message: str = "Invalid authorization header format",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_AUTH_FORMAT", message, details)


class AuthRequired(AuthenticationError):
    """No Authorization header was supplied."""

    def __init__(self, message: str = "Authorization required", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_REQUIRED", message, details)


class RateLimited(GatekeeperError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, retry_after: int, message: str = "Rate limit exceeded",
                 details: Optional[Dict[str, Any]] = None):
        self.retry_after = max(1, int(retry_after))
        super().__init__("RATE_LIMITED", message, details)


class RPCError(GatekeeperError):
    """Blockchain RPC failure. The public message never names the endpoint."""

    status_code = 503

    def __init__(self, message: str = "Policy evaluation unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("POLICY_UNAVAILABLE", message, details)


class PolicyNotFound(GatekeeperError):
    """Requested policy name is not configured."""

    status_code = 404

    def __init__(self, policy_name: str, details: Optional[Dict[str, Any]] = None):
        self.policy_name = policy_name
        super().__init__("POLICY_NOT_FOUND", f"Policy not found: {policy_name}", details)


class AccessDenied(GatekeeperError):
    """Policy evaluated to deny."""

    status_code = 403

    def __init__(self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__("ACCESS_DENIED", message, details)


class PolicyConfigError(GatekeeperError):
    """Policy document failed validation."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("POLICY_CONFIG_ERROR", message, details)


class ConfigurationError(GatekeeperError):
    """Service configuration is invalid."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class InvalidAddress(GatekeeperError):
    """Address in a request is not a valid Ethereum address."""

    status_code = 400

    def __init__(self, message: str = "Invalid address", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_ADDRESS", message, details)

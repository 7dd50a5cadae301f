"""
SIWE login routes shared by the auth service and the gateway.
"""

import re
from typing import Any, Optional, Sequence

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from shared.audit import AuditLogger
from shared.base_service import get_client_ip
from shared.errors import GatekeeperError
from shared.logging import get_logger, set_request_context
from shared.metrics import MetricsCollector
from .nonces.store import NonceStore
from .siwe.verifier import SiweVerifier
from .tokens.credentials import CredentialIssuer

_ADDRESS_LINE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class VerifyRequest(BaseModel):
    """Request model for SIWE verification."""
    message: str = Field(..., min_length=1, description="EIP-4361 message exactly as signed")
    signature: str = Field(..., min_length=1, description="0x-prefixed 65-byte personal_sign signature")


def claimed_address(message: str) -> Optional[str]:
    """Best-effort address from an unverified message, for audit records only."""
    lines = message.split("\n", 2)
    if len(lines) > 1 and _ADDRESS_LINE.match(lines[1]):
        return lines[1].lower()
    return None


def create_siwe_router(nonce_store: NonceStore,
                       verifier: SiweVerifier,
                       issuer: CredentialIssuer,
                       default_scopes: Sequence[str],
                       audit: AuditLogger,
                       metrics: MetricsCollector,
                       nonce_dependencies: Sequence[Any] = (),
                       verify_dependencies: Sequence[Any] = ()) -> APIRouter:
    """Build the ``/auth/siwe`` router."""
    router = APIRouter(prefix="/auth/siwe", tags=["auth"])
    logger = get_logger("auth.routes")

    @router.get("/nonce", dependencies=list(nonce_dependencies))
    async def get_nonce():
        """Issue a single-use nonce for a SIWE message."""
        nonce = await nonce_store.issue()
        metrics.set_gauge("active_nonces", nonce_store.size)
        return {"nonce": nonce.value, "expiresIn": int(nonce_store.ttl_seconds)}

    @router.post("/verify", dependencies=list(verify_dependencies))
    async def verify(body: VerifyRequest, request: Request):
        """Verify a signed SIWE message and return a bearer credential."""
        ip = get_client_ip(request)
        try:
            identity = await verifier.verify(body.message, body.signature)
        except GatekeeperError as e:
            metrics.increment_counter("auth_attempts_total", outcome=e.code.lower())
            audit.failure("siwe_verify", reason=e.code, address=claimed_address(body.message), ip=ip)
            raise

        credential = issuer.issue(identity.address, default_scopes)
        set_request_context(address=identity.address)
        metrics.increment_counter("auth_attempts_total", outcome="success")
        audit.success("siwe_verify", address=identity.address, ip=ip, chain_id=identity.chain_id)
        logger.info("Login succeeded", address=identity.address, chain_id=identity.chain_id)

        return {
            "token": credential.token,
            "address": identity.address,
            "expiresAt": credential.expires_at.isoformat().replace("+00:00", "Z"),
        }

    return router

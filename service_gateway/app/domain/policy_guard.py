"""
Token gating for Gateway routes.
"""

import asyncio
from typing import Optional

from fastapi import Depends, Query, Request

from service_auth.app.tokens.credentials import CredentialClaims
from service_entitlements.app.rules.engine import PolicyManager
from service_entitlements.app.rules.models import PolicyDecision
from shared.audit import AuditLogger
from shared.base_service import get_client_ip
from shared.errors import AccessDenied, RPCError
from shared.logging import get_logger
from .auth_middleware import AuthMiddleware


class PolicyGuard:
    """Evaluates a policy for an authenticated caller under a deadline.

    A deadline overrun is reported as :class:`RPCError` so that a slow chain
    never lets a request through.
    """

    def __init__(self,
                 policies: PolicyManager,
                 default_chain_id: int = 1,
                 deadline_seconds: float = 10.0,
                 audit: Optional[AuditLogger] = None):
        self.policies = policies
        self.default_chain_id = default_chain_id
        self.deadline_seconds = deadline_seconds
        self.audit = audit
        self.logger = get_logger("gateway.policy_guard")

    async def check(self,
                    policy_name: str,
                    claims: CredentialClaims,
                    chain_id: Optional[int] = None,
                    ip: Optional[str] = None) -> PolicyDecision:
        chain_id = self.default_chain_id if chain_id is None else chain_id
        try:
            decision = await asyncio.wait_for(
                self.policies.evaluate_detailed(policy_name, claims.address, chain_id, claims.scopes),
                timeout=self.deadline_seconds,
            )
        except asyncio.TimeoutError:
            self.logger.error("Policy evaluation deadline exceeded", policy=policy_name,
                              address=claims.address, deadline_seconds=self.deadline_seconds)
            raise RPCError(details={"policy": policy_name, "reason": "deadline exceeded"})

        if not decision.granted:
            if self.audit is not None:
                self.audit.failure("policy_access", reason="ACCESS_DENIED", address=claims.address, ip=ip,
                                   policy=policy_name, errors=decision.errors)
            raise AccessDenied(details={"policy": policy_name, "subject": claims.address})

        if self.audit is not None:
            self.audit.success("policy_access", address=claims.address, ip=ip, policy=policy_name)
        return decision


def require_policy(guard: PolicyGuard, auth: AuthMiddleware, policy_name: Optional[str] = None):
    """Dependency that authenticates the caller and enforces a policy.

    Without ``policy_name`` the policy is taken from the ``policy_name`` path
    parameter. The chain comes from the optional ``chainId`` query parameter.
    """

    async def enforce(request: Request,
                      claims: CredentialClaims = auth.dependency(),
                      chain_id: Optional[int] = Query(None, alias="chainId", ge=1)) -> PolicyDecision:
        name = policy_name or request.path_params["policy_name"]
        decision = await guard.check(name, claims, chain_id, ip=get_client_ip(request))
        request.state.policy_decision = decision
        return decision

    return Depends(enforce)

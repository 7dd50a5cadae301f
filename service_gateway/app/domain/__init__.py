"""
Domain utilities for the Gateway Service.

Request guards for protected routes: credential checks and token gating.
"""

from .auth_middleware import AuthMiddleware
from .policy_guard import PolicyGuard, require_policy

__all__ = [
    "AuthMiddleware",
    "PolicyGuard",
    "require_policy",
]

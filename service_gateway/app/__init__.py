"""
API Gateway Service package for Gatekeeper.

The gateway fronts client requests, enforcing:
- Authentication: SIWE login and bearer credential checks
- Token gating: policy evaluation against on-chain state and allowlists
- Rate limiting: per-IP windows on login, per-wallet windows on API routes

Structure:
- app.main: FastAPI app, routes, and wiring.
- app.domain: Auth middleware and the policy guard.
"""

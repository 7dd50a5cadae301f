"""
Entitlements Service package for Gatekeeper.

Evaluates named token-gating policies for a wallet address:

- app.main: API surface for policy evaluation and health.
- app.rules: Rule model, evaluators, engine, and policy loader.
- app.chain: JSON-RPC client for read-only contract calls.
- app.cache: Single-flight result cache for on-chain lookups.
- app.allowlists: Allowlist repository.

Guidelines:
- Evaluation is fail-closed: an unreadable chain never grants access.
- Cache on-chain reads; never cache failures.
"""

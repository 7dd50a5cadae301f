"""
Auth Service package for Gatekeeper.

Sign-In-With-Ethereum login and bearer credential handling:

- app.nonces: Single-use challenge nonces with a background sweeper.
- app.siwe: EIP-4361 parsing and signature verification.
- app.tokens: Credential issuance and validation (HS256 JWT).
- app.routes: ``/auth/siwe`` router shared with the gateway.
- app.main: Standalone service entrypoint.

Design notes:
- Module import must not perform IO; the nonce sweeper starts from an
  explicit startup hook.
- Credentials are stateless; nothing here persists sessions.
"""

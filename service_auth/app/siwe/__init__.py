"""
Sign-In-With-Ethereum (EIP-4361) message handling and verification.

- message: parse the EIP-4361 plain-text format with the siwe package.
- verifier: domain, time, nonce and signature checks for a login attempt.
"""

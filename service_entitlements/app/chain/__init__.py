"""
Read-only blockchain access.

- abi: Call data encoding and result decoding for the ERC20/ERC721 views.
- client: JSON-RPC ``eth_call`` with per-chain primary/fallback endpoints.
"""

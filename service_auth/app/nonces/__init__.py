"""
Single-use SIWE challenge nonces.
"""

from .store import Nonce, NonceStore

__all__ = ["Nonce", "NonceStore"]

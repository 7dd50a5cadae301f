"""
SIWE login verification.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct

from shared.addresses import InvalidAddressError, normalize_address
from shared.errors import DomainMismatch, InvalidSignature, MessageExpired, MessageNotYetValid, NonceInvalid
from shared.logging import get_logger
from ..nonces.store import NonceStore
from .message import ParsedMessage, parse_message

SIGNATURE_LENGTH = 65


@dataclass(frozen=True)
class VerifiedIdentity:
    """Outcome of a successful SIWE verification."""
    address: str
    chain_id: int
    message: ParsedMessage


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decode_signature(signature: Union[str, bytes]) -> bytes:
    """Return the raw 65-byte ``r || s || v`` signature or raise :class:`InvalidSignature`."""
    if isinstance(signature, str):
        text = signature[2:] if signature.startswith(("0x", "0X")) else signature
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise InvalidSignature(details={"reason": "signature is not hex"})
    elif isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    else:
        raise InvalidSignature(details={"reason": "unsupported signature type"})

    if len(raw) != SIGNATURE_LENGTH:
        raise InvalidSignature(details={"reason": f"signature must be {SIGNATURE_LENGTH} bytes"})
    return raw


def recover_signer(message: str, signature: Union[str, bytes]) -> str:
    """Recover the lowercase address that personal-signed ``message``."""
    raw = decode_signature(signature)
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=raw)
    except Exception as e:
        raise InvalidSignature(details={"reason": "recovery failed", "error": str(e)})
    return recovered.lower()


class SiweVerifier:
    """Validates a signed EIP-4361 message and consumes its nonce.

    Checks run in a fixed order and stop at the first failure: parse,
    domain, expiration and not-before, nonce (without consuming),
    signature, then the atomic nonce consume. A rejected attempt therefore
    never burns the nonce.
    """

    def __init__(self,
                 domain: str,
                 nonce_store: NonceStore,
                 clock: Optional[Callable[[], datetime]] = None):
        self.domain = domain
        self.nonce_store = nonce_store
        self.logger = get_logger("auth.siwe")
        self._clock = clock or _utcnow

    async def verify(self, message: str, signature: Union[str, bytes]) -> VerifiedIdentity:
        siwe = parse_message(message)

        if siwe.domain != self.domain:
            raise DomainMismatch(details={"expected": self.domain, "received": siwe.domain})

        now = self._clock()
        if siwe.expiration_time is not None and siwe.expiration_time <= now:
            raise MessageExpired(details={"expiration_time": siwe.expiration_time.isoformat()})
        if siwe.not_before is not None and siwe.not_before > now:
            raise MessageNotYetValid(details={"not_before": siwe.not_before.isoformat()})

        if not await self.nonce_store.peek(siwe.nonce):
            raise NonceInvalid()

        try:
            claimed = normalize_address(siwe.address)
        except InvalidAddressError as e:
            raise InvalidSignature(details={"reason": str(e)})

        recovered = recover_signer(message, signature)
        if recovered != claimed:
            raise InvalidSignature(details={"reason": "signer mismatch", "recovered": recovered})

        await self.nonce_store.consume(siwe.nonce)

        self.logger.info("SIWE message verified", address=claimed, chain_id=siwe.chain_id)
        return VerifiedIdentity(address=claimed, chain_id=siwe.chain_id, message=siwe)

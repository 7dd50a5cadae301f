"""
Credential issuance and validation.

Credentials are HS256 JWTs carrying the wallet address as ``sub`` plus a
list of scopes. They are stateless: there is no revocation list, so a
credential stays usable until ``exp``.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from jose import JWTError, jwt

from shared.addresses import InvalidAddressError, normalize_address
from shared.errors import AuthRequired, InvalidToken, MalformedAuthHeader, TokenExpired
from shared.logging import get_logger

DEFAULT_ISSUER = "gatekeeper"
DEFAULT_TTL_SECONDS = 24 * 60 * 60

_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
}


@dataclass(frozen=True)
class CredentialClaims:
    """Validated contents of a credential."""
    address: str
    scopes: Tuple[str, ...]
    issued_at: int
    not_before: int
    expires_at: int
    issuer: str

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sub": self.address,
            "scopes": list(self.scopes),
            "iat": self.issued_at,
            "nbf": self.not_before,
            "exp": self.expires_at,
            "iss": self.issuer,
        }


@dataclass(frozen=True)
class IssuedCredential:
    token: str
    expires_at: datetime
    claims: CredentialClaims


def normalize_scopes(scopes: Iterable[str]) -> Tuple[str, ...]:
    """De-duplicate scopes, keeping first occurrence order."""
    return tuple(dict.fromkeys(scope for scope in scopes if scope))


class CredentialIssuer:
    """Mints signed credentials for verified wallet addresses."""

    def __init__(self,
                 secret: str,
                 ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 algorithm: str = "HS256",
                 issuer: str = DEFAULT_ISSUER,
                 clock: Optional[Callable[[], float]] = None):
        self.secret = secret
        self.ttl_seconds = ttl_seconds
        self.algorithm = algorithm
        self.issuer = issuer
        self.logger = get_logger("auth.credentials")
        self._clock = clock or time.time

    def issue(self, address: str, scopes: Iterable[str] = ()) -> IssuedCredential:
        now = int(self._clock())
        claims = CredentialClaims(
            address=normalize_address(address),
            scopes=normalize_scopes(scopes),
            issued_at=now,
            not_before=now,
            expires_at=now + self.ttl_seconds,
            issuer=self.issuer,
        )
        token = jwt.encode(claims.to_dict(), self.secret, algorithm=self.algorithm)

        self.logger.info("Credential issued", address=claims.address, scopes=list(claims.scopes),
                         expires_at=claims.expires_at)
        return IssuedCredential(token=token, expires_at=claims.expires_at_datetime, claims=claims)


class CredentialValidator:
    """Validates credentials minted by :class:`CredentialIssuer`.

    Checks are ordered: signature and structure first (``InvalidToken``),
    then ``nbf`` (``InvalidToken``), then ``exp`` (``TokenExpired``). A
    correctly signed credential past its expiry is always reported as
    expired rather than invalid.
    """

    def __init__(self,
                 secret: str,
                 algorithm: str = "HS256",
                 issuer: str = DEFAULT_ISSUER,
                 clock: Optional[Callable[[], float]] = None):
        self.secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.logger = get_logger("auth.credentials")
        self._clock = clock or time.time

    def validate(self, token: str) -> CredentialClaims:
        if not token:
            raise InvalidToken(details={"reason": "empty token"})
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options=_DECODE_OPTIONS,
            )
        except JWTError as e:
            raise InvalidToken(details={"reason": str(e)})

        claims = self._parse_claims(payload)

        now = self._clock()
        if now < claims.not_before:
            raise InvalidToken(details={"reason": "token not yet valid"})
        if now >= claims.expires_at:
            raise TokenExpired(details={"address": claims.address, "expired_at": claims.expires_at})
        return claims

    def validate_header(self, header: Optional[str]) -> CredentialClaims:
        """Validate an ``Authorization`` header value."""
        if header is None or not header.strip():
            raise AuthRequired()
        parts = header.split(" ")
        if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
            raise MalformedAuthHeader()
        return self.validate(parts[1])

    def _parse_claims(self, payload: Dict[str, Any]) -> CredentialClaims:
        try:
            address = normalize_address(payload["sub"])
            scopes = payload.get("scopes", [])
            if not isinstance(scopes, list) or not all(isinstance(s, str) for s in scopes):
                raise InvalidToken(details={"reason": "scopes must be a list of strings"})
            issued_at = int(payload["iat"])
            not_before = int(payload.get("nbf", issued_at))
            expires_at = int(payload["exp"])
        except (KeyError, TypeError, ValueError, InvalidAddressError) as e:
            raise InvalidToken(details={"reason": f"malformed claims: {e}"})

        return CredentialClaims(
            address=address,
            scopes=tuple(scopes),
            issued_at=issued_at,
            not_before=not_before,
            expires_at=expires_at,
            issuer=payload.get("iss", self.issuer),
        )

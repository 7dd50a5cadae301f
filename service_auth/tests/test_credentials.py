"""
Unit tests for credential issuance and validation.
"""

import pytest
from jose import jwt

from service_auth.app.tokens.credentials import CredentialIssuer, CredentialValidator
from shared.errors import AuthRequired, InvalidToken, MalformedAuthHeader, TokenExpired
from shared.test_helpers import TEST_JWT_SECRET, FakeClock, MockTokenGenerator, TestDataFactory


class TestCredentials:
    """Test cases for CredentialIssuer and CredentialValidator."""

    @pytest.fixture
    def clock(self):
        return FakeClock(start=1_700_000_000.0)

    @pytest.fixture
    def issuer(self, clock):
        return CredentialIssuer(TEST_JWT_SECRET, ttl_seconds=86400, clock=clock)

    @pytest.fixture
    def validator(self, clock):
        return CredentialValidator(TEST_JWT_SECRET, clock=clock)

    @pytest.fixture
    def wallet(self):
        return TestDataFactory.create_wallet(3)

    def test_issue_claims(self, issuer, wallet, clock):
        credential = issuer.issue(wallet.address, ["auth", "read", "auth"])

        payload = jwt.get_unverified_claims(credential.token)
        assert payload["sub"] == wallet.lower
        assert payload["scopes"] == ["auth", "read"]
        assert payload["iat"] == int(clock.now)
        assert payload["nbf"] == int(clock.now)
        assert payload["exp"] == int(clock.now) + 86400
        assert payload["iss"] == "gatekeeper"
        assert jwt.get_unverified_header(credential.token)["alg"] == "HS256"
        assert credential.expires_at.timestamp() == payload["exp"]

    def test_round_trip(self, issuer, validator, wallet):
        credential = issuer.issue(wallet.address, ["auth", "admin"])

        claims = validator.validate(credential.token)

        assert claims.address == wallet.lower
        assert claims.scopes == ("auth", "admin")
        assert claims.has_scope("admin")

    def test_expired_token(self, issuer, validator, wallet, clock):
        credential = issuer.issue(wallet.address, ["auth"])
        clock.advance(86400)

        with pytest.raises(TokenExpired):
            validator.validate(credential.token)

    def test_valid_one_second_before_expiry(self, issuer, validator, wallet, clock):
        credential = issuer.issue(wallet.address, ["auth"])
        clock.advance(86399)

        assert validator.validate(credential.token).address == wallet.lower

    def test_wrong_secret(self, validator, wallet):
        token = MockTokenGenerator(secret="another-secret-of-enough-length").generate(wallet.address)

        with pytest.raises(InvalidToken):
            validator.validate(token)

    def test_expired_and_wrong_secret_is_invalid(self, validator, wallet, clock):
        token = MockTokenGenerator(secret="another-secret-of-enough-length").generate(
            wallet.address, issued_at=int(clock.now) - 90000, expires_in=3600
        )

        with pytest.raises(InvalidToken):
            validator.validate(token)

    def test_not_before_in_future(self, validator, wallet, clock):
        token = MockTokenGenerator().generate(wallet.address, issued_at=int(clock.now), nbf=int(clock.now) + 600)

        with pytest.raises(InvalidToken):
            validator.validate(token)

    def test_wrong_issuer(self, validator, wallet, clock):
        token = MockTokenGenerator(issuer="someone-else").generate(wallet.address, issued_at=int(clock.now))

        with pytest.raises(InvalidToken):
            validator.validate(token)

    def test_bad_subject(self, validator, clock):
        token = MockTokenGenerator().generate("0x1234", issued_at=int(clock.now))

        with pytest.raises(InvalidToken):
            validator.validate(token)

    def test_garbage_token(self, validator):
        with pytest.raises(InvalidToken):
            validator.validate("not.a.jwt")

    def test_header_missing(self, validator):
        with pytest.raises(AuthRequired):
            validator.validate_header(None)
        with pytest.raises(AuthRequired):
            validator.validate_header("")

    @pytest.mark.parametrize("header", ["Token abc", "Bearer", "Bearer ", "bearer abc", "Bearer a b"])
    def test_header_malformed(self, validator, header):
        with pytest.raises(MalformedAuthHeader):
            validator.validate_header(header)

    def test_header_valid(self, issuer, validator, wallet):
        credential = issuer.issue(wallet.address, ["auth"])

        claims = validator.validate_header(f"Bearer {credential.token}")

        assert claims.address == wallet.lower

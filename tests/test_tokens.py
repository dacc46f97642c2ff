"""
tests/test_tokens.py -- Unit tests for TokenService (JWT HS256 via python-jose).

Coverage:
  - Issue -> verify returns the same claims; default ttl is one day
  - Expiry: "token expired" both when jose catches it and at sub-second precision
  - Tampering with any byte of the signed region -> "invalid token"
  - Wrong secret, garbage input, missing claims -> "invalid token"
  - Missing / short secret -> ConfigurationError at construction
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import Role
from auth.tokens import INVALID_TOKEN, TOKEN_EXPIRED, TokenService
from core.config import Settings
from core.errors import ErrorKind, ServiceError

from conftest import TEST_SECRET


def _auth_failure(tokens: TokenService, token: str) -> ServiceError:
    with pytest.raises(ServiceError) as excinfo:
        tokens.verify(token)
    assert excinfo.value.kind is ErrorKind.authentication
    return excinfo.value


class TestIssueAndVerify:
    def test_round_trip_returns_same_claims(self, tokens: TokenService) -> None:
        token = tokens.issue("acct-1", Role.user, "alice", ttl=600)
        claims = tokens.verify(token)
        assert claims.account_id == "acct-1"
        assert claims.role is Role.user
        assert claims.username == "alice"
        assert abs((claims.expires_at - claims.issued_at) - timedelta(seconds=600)) < timedelta(seconds=1)

    @pytest.mark.parametrize("ttl", [1, 60, 3600, 7 * 86400])
    def test_round_trip_for_any_positive_ttl(self, tokens: TokenService, ttl: int) -> None:
        claims = tokens.verify(tokens.issue("acct-2", Role.admin, "root", ttl=ttl))
        assert claims.role is Role.admin

    def test_default_ttl_is_one_day(self, tokens: TokenService) -> None:
        claims = tokens.verify(tokens.issue("acct-3", Role.user, "bob"))
        assert tokens.default_ttl == 86400
        assert abs((claims.expires_at - claims.issued_at) - timedelta(days=1)) < timedelta(seconds=1)

    def test_accepts_role_as_string(self, tokens: TokenService) -> None:
        claims = tokens.verify(tokens.issue("acct-4", "Admin", "root"))  # type: ignore[arg-type]
        assert claims.role is Role.admin

    def test_issued_at_has_sub_second_precision(self, settings: Settings) -> None:
        fixed = datetime(2026, 1, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)
        issuer = TokenService(settings, clock=lambda: fixed)
        verifier = TokenService(settings, clock=lambda: fixed + timedelta(seconds=1))
        # jose checks exp against the real clock, so keep the token alive for it too.
        ttl = int((datetime.now(timezone.utc) - fixed).total_seconds()) + 3600
        claims = verifier.verify(issuer.issue("acct-5", Role.user, "carol", ttl=ttl))
        assert abs(claims.issued_at - fixed) < timedelta(milliseconds=1)

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_non_positive_ttl_rejected(self, tokens: TokenService, ttl: int) -> None:
        with pytest.raises(ServiceError) as excinfo:
            tokens.issue("acct", Role.user, "alice", ttl=ttl)
        assert excinfo.value.kind is ErrorKind.validation

    def test_token_is_three_url_safe_segments(self, tokens: TokenService) -> None:
        """Wire format must survive an Authorization header untouched."""
        token = tokens.issue("acct", Role.user, "alice")
        assert token.count(".") == 2
        assert all(c.isalnum() or c in "-_." for c in token)


class TestExpiry:
    def test_expired_token_rejected(self, settings: Settings) -> None:
        """A token whose exp is in the past fails with the expiry message."""
        two_days_ago = datetime.now(timezone.utc) - timedelta(days=2)
        issuer = TokenService(settings, clock=lambda: two_days_ago)
        token = issuer.issue("acct", Role.user, "alice")
        assert _auth_failure(TokenService(settings), token).message == TOKEN_EXPIRED

    def test_expiry_enforced_at_sub_second_precision(self, settings: Settings, tokens: TokenService) -> None:
        """exp must be strictly in the future, not just within the same second."""
        token = tokens.issue("acct", Role.user, "alice", ttl=5)
        later = TokenService(settings, clock=lambda: datetime.now(timezone.utc) + timedelta(seconds=5, milliseconds=1))
        assert _auth_failure(later, token).message == TOKEN_EXPIRED


class TestTampering:
    def test_any_byte_of_signed_region_tampered(self, tokens: TokenService) -> None:
        """Changing any character of header.payload breaks the signature."""
        token = tokens.issue("acct-1", Role.user, "alice")
        signing_input = token.rsplit(".", 1)[0]
        for i, ch in enumerate(signing_input):
            if ch == ".":
                continue
            replacement = "A" if ch != "A" else "B"
            tampered = token[:i] + replacement + token[i + 1 :]
            assert _auth_failure(tokens, tampered).message == INVALID_TOKEN, f"position {i}"

    def test_signature_tampered(self, tokens: TokenService) -> None:
        token = tokens.issue("acct-1", Role.user, "alice")
        header_payload, signature = token.rsplit(".", 1)
        mid = len(signature) // 2
        flipped = signature[:mid] + ("A" if signature[mid] != "A" else "B") + signature[mid + 1 :]
        assert _auth_failure(tokens, f"{header_payload}.{flipped}").message == INVALID_TOKEN

    def test_role_escalation_by_re_encoding_payload(self, tokens: TokenService) -> None:
        """Forging role=Admin with a different key does not verify."""
        forged = jwt.encode(
            {"sub": "acct-1", "username": "alice", "role": "Admin", "iat": 0, "exp": 4102444800},
            "attacker-secret-attacker-secret-123",
            algorithm="HS256",
        )
        assert _auth_failure(tokens, forged).message == INVALID_TOKEN

    @pytest.mark.parametrize("garbage", ["", "abc", "a.b.c", "Bearer x.y.z", "...."])
    def test_malformed_structure(self, tokens: TokenService, garbage: str) -> None:
        assert _auth_failure(tokens, garbage).message == INVALID_TOKEN

    def test_missing_claims_rejected(self, tokens: TokenService) -> None:
        """Correctly signed but without role/username -> invalid, not a KeyError."""
        token = jwt.encode({"sub": "acct-1", "exp": 4102444800}, TEST_SECRET, algorithm="HS256")
        assert _auth_failure(tokens, token).message == INVALID_TOKEN

    def test_unknown_role_rejected(self, tokens: TokenService) -> None:
        token = jwt.encode(
            {"sub": "acct-1", "username": "alice", "role": "Superuser", "iat": 0, "exp": 4102444800},
            TEST_SECRET,
            algorithm="HS256",
        )
        assert _auth_failure(tokens, token).message == INVALID_TOKEN


class TestConfiguration:
    def test_missing_secret_is_configuration_error(self) -> None:
        with pytest.raises(ServiceError) as excinfo:
            TokenService(Settings(secret_key="", debug=False))
        assert excinfo.value.kind is ErrorKind.configuration

    def test_short_secret_is_configuration_error(self) -> None:
        with pytest.raises(ServiceError) as excinfo:
            TokenService(Settings(secret_key="too-short", debug=False))
        assert excinfo.value.kind is ErrorKind.configuration

    def test_debug_mode_generates_secret(self) -> None:
        settings = Settings(secret_key="", debug=True)
        assert len(settings.secret_key) >= 32
        TokenService(settings)

    def test_tokens_shared_between_processes_with_same_secret(self, settings: Settings) -> None:
        """Any process holding the same secret can verify the token."""
        token = TokenService(settings).issue("acct", Role.user, "alice")
        other = TokenService(Settings(secret_key=TEST_SECRET, debug=False))
        assert other.verify(token).account_id == "acct"

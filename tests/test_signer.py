from datetime import timedelta

import pytest
from jose import jwt

from authcore.core.exceptions import TokenInvalidError, TokenMalformedError
from authcore.core.signer import TokenKind, TokenSigner, TokenSubject

SUBJECT = TokenSubject(principal_id=7, username="alice")


def test_access_token_round_trip(signer, clock):
    token = signer.issue(TokenKind.ACCESS, SUBJECT, {"email": "alice@example.com", "fam": "fam-1"},
                         ttl=timedelta(minutes=15))
    claims = signer.verify(token)

    assert claims.principal_id == 7
    assert claims.username == "alice"
    assert claims.kind is TokenKind.ACCESS
    assert claims.email == "alice@example.com"
    assert claims.family_id == "fam-1"
    assert claims.issued_at == clock.now
    assert claims.expires_at == clock.now + timedelta(minutes=15)


def test_refresh_token_has_no_email(signer):
    token = signer.issue(TokenKind.REFRESH, SUBJECT, {"fam": "fam-xyz"}, ttl=timedelta(days=7))
    claims = signer.verify(token, TokenKind.REFRESH)
    assert claims.kind is TokenKind.REFRESH
    assert claims.email is None
    assert claims.family_id == "fam-xyz"


def test_kinds_are_never_cross_accepted(signer):
    access = signer.issue(TokenKind.ACCESS, SUBJECT, ttl=timedelta(minutes=15))
    refresh = signer.issue(TokenKind.REFRESH, SUBJECT, ttl=timedelta(days=7))

    with pytest.raises(TokenMalformedError):
        signer.verify(access, TokenKind.REFRESH)
    with pytest.raises(TokenMalformedError):
        signer.verify(refresh, TokenKind.ACCESS)


def test_every_token_is_unique(signer):
    first = signer.issue(TokenKind.REFRESH, SUBJECT, ttl=timedelta(days=7))
    second = signer.issue(TokenKind.REFRESH, SUBJECT, ttl=timedelta(days=7))
    assert first != second


def test_extra_claims_cannot_override_reserved_claims(signer):
    token = signer.issue(TokenKind.ACCESS, SUBJECT, {"sub": "999", "typ": "refresh"}, ttl=timedelta(minutes=5))
    claims = signer.verify(token)
    assert claims.principal_id == 7
    assert claims.kind is TokenKind.ACCESS


def test_token_signed_by_another_key_is_invalid(signer, other_rsa_keys):
    private_pem, public_pem = other_rsa_keys
    forger = TokenSigner(private_pem, public_pem)
    forged = forger.issue(TokenKind.ACCESS, SUBJECT, ttl=timedelta(minutes=15))

    with pytest.raises(TokenInvalidError) as excinfo:
        signer.verify(forged)
    assert not isinstance(excinfo.value, TokenMalformedError)


def test_tampered_payload_is_invalid(signer):
    token = signer.issue(TokenKind.ACCESS, SUBJECT, ttl=timedelta(minutes=15))
    header, payload, signature = token.split(".")
    other = signer.issue(TokenKind.ACCESS, TokenSubject(1, "root"), ttl=timedelta(minutes=15))
    spliced = ".".join([header, other.split(".")[1], signature])

    with pytest.raises(TokenInvalidError):
        signer.verify(spliced)


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", "...."])
def test_garbage_is_malformed(signer, garbage):
    with pytest.raises(TokenMalformedError):
        signer.verify(garbage)


def test_missing_claims_are_malformed(signer, rsa_keys):
    private_pem, _ = rsa_keys
    token = jwt.encode({"sub": "7", "typ": "access"}, private_pem, algorithm="RS256")
    with pytest.raises(TokenMalformedError):
        signer.verify(token)


def test_verify_ignores_expiry_and_is_expired_reports_it(signer, clock):
    token = signer.issue(TokenKind.ACCESS, SUBJECT, ttl=timedelta(minutes=15))
    assert signer.is_expired(token) is False

    clock.advance(minutes=15)
    assert signer.is_expired(token) is True
    # structure and signature are still fine
    assert signer.verify(token).principal_id == 7


def test_malformed_token_counts_as_expired(signer):
    assert signer.is_expired("garbage") is True

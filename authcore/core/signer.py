"""Asymmetric bearer token signing and verification."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from jose import JWTError, jwt

from authcore.config import Settings
from authcore.core.exceptions import TokenInvalidError, TokenMalformedError
from authcore.core.security import generate_token_id, utc_now


class TokenKind(str, Enum):
    """Bearer token kinds; the value is carried in the ``typ`` claim."""
    ACCESS = "access"
    REFRESH = "refresh"


_RESERVED_CLAIMS = {"sub", "username", "typ", "iat", "exp", "jti"}


@dataclass(frozen=True)
class TokenSubject:
    principal_id: int
    username: str


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a bearer token."""

    principal_id: int
    username: str
    kind: TokenKind
    issued_at: datetime
    expires_at: datetime
    token_id: str
    family_id: Optional[str] = None
    email: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def _to_timestamp(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def _from_timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


class TokenSigner:
    """
    Sign and verify JWTs with an asymmetric key pair.

    The signer holds no mutable state: keys are read once at construction and
    verification never consults anything but the token and the public key.
    """

    def __init__(
        self,
        private_key: str,
        public_key: str,
        *,
        algorithm: str = "RS256",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._private_key = private_key
        self._public_key = public_key
        self.algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenSigner":
        """Load PEM key material from the paths named in settings."""
        private_key = Path(settings.get_private_key_path()).read_text(encoding="utf-8")
        public_key = Path(settings.get_public_key_path()).read_text(encoding="utf-8")
        return cls(private_key, public_key, algorithm=settings.JWT_ALGORITHM)

    def issue(
        self,
        kind: TokenKind,
        subject: TokenSubject,
        extra_claims: Optional[Dict[str, Any]] = None,
        *,
        ttl: timedelta,
    ) -> str:
        """
        Build and sign a token.

        Args:
            kind: Access or refresh
            subject: Principal the token speaks for
            extra_claims: Kind-specific claims (email, family id)
            ttl: Lifetime from now

        Returns:
            str: Compact JWT
        """
        now = self._clock()
        claims: Dict[str, Any] = {
            key: value
            for key, value in (extra_claims or {}).items()
            if key not in _RESERVED_CLAIMS
        }
        claims.update({
            "sub": str(subject.principal_id),
            "username": subject.username,
            "typ": kind.value,
            "iat": _to_timestamp(now),
            "exp": _to_timestamp(now + ttl),
            "jti": generate_token_id(),
        })
        return jwt.encode(claims, self._private_key, algorithm=self.algorithm)

    def verify(self, token: str, kind: Optional[TokenKind] = None) -> TokenClaims:
        """
        Check signature and structure. Expiry is NOT checked here.

        Raises:
            TokenMalformedError: Undecodable token, missing claims, or wrong kind
            TokenInvalidError: Signature does not verify
        """
        if not token:
            raise TokenMalformedError()
        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            raise TokenMalformedError()

        try:
            payload = jwt.decode(
                token,
                self._public_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError:
            raise TokenInvalidError()

        claims = self._parse_claims(payload)
        if kind is not None and claims.kind is not kind:
            raise TokenMalformedError(f"Expected a {kind.value} token")
        return claims

    def is_expired(self, token: str) -> bool:
        """True once ``exp`` has passed; unverifiable tokens count as expired."""
        try:
            claims = self.verify(token)
        except TokenInvalidError:
            return True
        return claims.expires_at <= self._clock()

    @staticmethod
    def _parse_claims(payload: Dict[str, Any]) -> TokenClaims:
        try:
            kind = TokenKind(payload["typ"])
            principal_id = int(payload["sub"])
            username = payload["username"]
            token_id = payload["jti"]
            issued_at = _from_timestamp(int(payload["iat"]))
            expires_at = _from_timestamp(int(payload["exp"]))
        except (KeyError, TypeError, ValueError):
            raise TokenMalformedError()

        if not isinstance(username, str) or not isinstance(token_id, str):
            raise TokenMalformedError()

        extra = {key: value for key, value in payload.items() if key not in _RESERVED_CLAIMS}
        return TokenClaims(
            principal_id=principal_id,
            username=username,
            kind=kind,
            issued_at=issued_at,
            expires_at=expires_at,
            token_id=token_id,
            family_id=extra.get("fam"),
            email=extra.get("email"),
            extra=extra,
        )

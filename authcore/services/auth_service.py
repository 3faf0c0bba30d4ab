"""Authentication coordinator - login, refresh, logout and request authentication"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authcore.config import Settings
from authcore.core.exceptions import (
    AccountLockedError,
    BaseAPIException,
    InvalidCredentialsError,
    StoreUnavailableError,
    TokenExpiredError,
    TokenInvalidError,
    TokenRevokedError,
)
from authcore.core.security import generate_token_id, utc_now
from authcore.core.signer import TokenClaims, TokenKind, TokenSigner, TokenSubject
from authcore.models.principal import Principal
from authcore.services.audit_service import AuditService, AuthAction, AuthEvent, AuthResult
from authcore.services.credential_store import CredentialStore
from authcore.services.lockout_policy import LockoutPolicy, LockState
from authcore.services.refresh_ledger import RefreshTokenLedger
from authcore.services.revocation_cache import RevocationCache

logger = logging.getLogger(__name__)

INVALID_REFRESH_MESSAGE = "Invalid or expired refresh token"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    principal_id: int
    username: str
    email: Optional[str]
    family_id: Optional[str]
    expires_at: datetime


class AuthenticationCoordinator:
    """
    Enforces the rules that span the signer, credential store, lockout
    policy, refresh ledger and revocation cache.

    Each method takes the request's database session explicitly; the
    coordinator itself holds no per-request state.
    """

    def __init__(
        self,
        *,
        signer: TokenSigner,
        credential_store: CredentialStore,
        lockout_policy: LockoutPolicy,
        ledger: RefreshTokenLedger,
        revocation_cache: RevocationCache,
        audit: AuditService,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.signer = signer
        self.credential_store = credential_store
        self.lockout_policy = lockout_policy
        self.ledger = ledger
        self.revocation_cache = revocation_cache
        self.audit = audit
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def authenticate(
        self,
        db: Session,
        identifier: str,
        password: str,
        *,
        client_ip: Optional[str] = None,
    ) -> TokenPair:
        """
        Exchange an identifier and password for an access/refresh pair

        Raises:
            InvalidCredentialsError: Unknown identifier, inactive account or wrong password
            AccountLockedError: Too many recent failures
            StoreUnavailableError: Database unreachable
        """
        try:
            return self._authenticate(db, identifier, password, client_ip)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Credential store failure during login: %s", exc)
            raise StoreUnavailableError()

    def _authenticate(self, db: Session, identifier: str, password: str, client_ip: Optional[str]) -> TokenPair:
        now = self._clock()

        principal = self.credential_store.find_by_identifier(db, identifier)
        if principal is None:
            self._emit(AuthAction.LOGIN_FAILURE, AuthResult.FAILURE, identifier=identifier,
                       reason="unknown identifier", ip=client_ip)
            raise InvalidCredentialsError()

        lock = self.lockout_policy.check(principal.failed_attempt_count or 0, principal.locked_until, now)
        if lock.blocks:
            self._emit(AuthAction.LOGIN_FAILURE, AuthResult.FAILURE, principal_id=principal.id,
                       identifier=identifier, reason="account locked", ip=client_ip)
            raise AccountLockedError(lock.locked_until)

        if not principal.is_active:
            self._emit(AuthAction.LOGIN_FAILURE, AuthResult.FAILURE, principal_id=principal.id,
                       identifier=identifier, reason="account not active", ip=client_ip)
            raise InvalidCredentialsError()

        if not self.credential_store.verify_password(password, principal.password_hash):
            decision = self.lockout_policy.register_failure(
                principal.failed_attempt_count or 0, principal.locked_until, now
            )
            self.credential_store.record_failed_attempt(db, principal, decision)
            self._emit(AuthAction.LOGIN_FAILURE, AuthResult.FAILURE, principal_id=principal.id,
                       identifier=identifier, reason="bad password", ip=client_ip)
            if decision.state is LockState.WOULD_LOCK:
                self._emit(AuthAction.ACCOUNT_LOCKED, AuthResult.SUCCESS, principal_id=principal.id,
                           identifier=identifier,
                           reason=f"{decision.failed_attempts} consecutive failures", ip=client_ip)
            raise InvalidCredentialsError()

        self.credential_store.reset_attempts(db, principal)
        self.credential_store.record_login(db, principal, now)

        pair = self._issue_pair(db, principal, family_id=generate_token_id())
        self._emit(AuthAction.LOGIN_SUCCESS, AuthResult.SUCCESS, principal_id=principal.id,
                   identifier=identifier, ip=client_ip)
        logger.info("Principal authenticated: %s", principal.id)
        return pair

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, db: Session, refresh_token: str, *, client_ip: Optional[str] = None) -> TokenPair:
        """
        Rotate a refresh token into a new access/refresh pair

        Every rejection looks the same to the caller.

        Raises:
            InvalidCredentialsError: Token unknown, revoked, expired, forged or already rotated
            StoreUnavailableError: Database or cache unreachable
        """
        try:
            return self._refresh(db, refresh_token, client_ip)
        except InvalidCredentialsError as exc:
            self._emit(AuthAction.REFRESH_TOKEN_FAILURE, AuthResult.FAILURE, reason=exc.message, ip=client_ip)
            raise InvalidCredentialsError(INVALID_REFRESH_MESSAGE)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Ledger failure during refresh: %s", exc)
            raise StoreUnavailableError()

    def _refresh(self, db: Session, refresh_token: str, client_ip: Optional[str]) -> TokenPair:
        record = self.ledger.validate(db, refresh_token)
        if record is None:
            raise InvalidCredentialsError("refresh token not usable in ledger")

        try:
            claims = self.signer.verify(refresh_token, TokenKind.REFRESH)
        except TokenInvalidError:
            raise InvalidCredentialsError("refresh token failed verification")
        if claims.expires_at <= self._clock():
            raise InvalidCredentialsError("refresh token expired")
        if claims.principal_id != record.principal_id:
            raise InvalidCredentialsError("refresh token owner mismatch")

        principal = self.credential_store.get_by_id(db, claims.principal_id)
        if principal is None or not principal.is_active:
            raise InvalidCredentialsError("refresh token owner missing or inactive")

        access_token, new_refresh_token = self._sign_pair(principal, family_id=record.family_id)
        successor = self.ledger.rotate(db, refresh_token, new_refresh_token)
        if successor is None:
            raise InvalidCredentialsError("refresh token already rotated")

        self._emit(AuthAction.REFRESH_TOKEN_SUCCESS, AuthResult.SUCCESS, principal_id=principal.id, ip=client_ip)
        return TokenPair(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, db: Session, access_token: str, *, client_ip: Optional[str] = None) -> None:
        """Blacklist the access token and revoke its refresh family. Never raises."""
        claims = self._revoke_access_token(db, access_token, revoke_everything=False)
        self._emit(AuthAction.LOGOUT, AuthResult.SUCCESS,
                   principal_id=claims.principal_id if claims else None, ip=client_ip)

    def logout_all(self, db: Session, access_token: str, *, client_ip: Optional[str] = None) -> None:
        """Like logout, and also revoke every refresh token the owner holds. Never raises."""
        claims = self._revoke_access_token(db, access_token, revoke_everything=True)
        self._emit(AuthAction.LOGOUT_ALL_DEVICES, AuthResult.SUCCESS,
                   principal_id=claims.principal_id if claims else None, ip=client_ip)

    def revoke_refresh_token(self, db: Session, refresh_token: str) -> bool:
        """Best-effort revocation of one refresh token presented at logout."""
        try:
            return self.ledger.revoke_one(db, refresh_token)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Refresh token revocation skipped: %s", exc)
            return False

    def _revoke_access_token(self, db: Session, access_token: str, *, revoke_everything: bool) -> Optional[TokenClaims]:
        try:
            claims = self.signer.verify(access_token, TokenKind.ACCESS)
        except TokenInvalidError:
            logger.debug("Logout with unverifiable token; nothing to revoke")
            return None

        remaining = (claims.expires_at - self._clock()).total_seconds()
        if remaining > 0:
            try:
                self.revocation_cache.add(access_token, remaining)
            except BaseAPIException as exc:
                logger.warning("Access token of principal %s not blacklisted: %s", claims.principal_id, exc.message)

        try:
            if claims.family_id:
                self.ledger.revoke_family(db, claims.family_id)
            if revoke_everything:
                revoked = self.ledger.revoke_all(db, claims.principal_id)
                logger.info("Revoked %s refresh tokens for principal %s", revoked, claims.principal_id)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Refresh revocation for principal %s incomplete: %s", claims.principal_id, exc)
        return claims

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    def authenticate_request(self, bearer_token: str) -> AuthenticatedPrincipal:
        """
        Resolve the principal behind an access token on a protected request

        Checks run cheapest first: revocation, then signature, then expiry.

        Raises:
            TokenRevokedError, TokenInvalidError, TokenMalformedError, TokenExpiredError
            StoreUnavailableError: Revocation cache unreachable
        """
        if self.revocation_cache.contains(bearer_token):
            raise TokenRevokedError()

        claims = self.signer.verify(bearer_token, TokenKind.ACCESS)
        if claims.expires_at <= self._clock():
            raise TokenExpiredError()

        return AuthenticatedPrincipal(
            principal_id=claims.principal_id,
            username=claims.username,
            email=claims.email,
            family_id=claims.family_id,
            expires_at=claims.expires_at,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _sign_pair(self, principal: Principal, *, family_id: str):
        subject = TokenSubject(principal_id=principal.id, username=principal.username)
        access_token = self.signer.issue(
            TokenKind.ACCESS,
            subject,
            {"email": principal.email, "fam": family_id},
            ttl=self.access_ttl,
        )
        refresh_token = self.signer.issue(
            TokenKind.REFRESH,
            subject,
            {"fam": family_id},
            ttl=self.refresh_ttl,
        )
        return access_token, refresh_token

    def _issue_pair(self, db: Session, principal: Principal, *, family_id: str) -> TokenPair:
        access_token, refresh_token = self._sign_pair(principal, family_id=family_id)
        self.ledger.record(db, principal.id, refresh_token, family_id)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
        )

    def _emit(
        self,
        action: AuthAction,
        result: AuthResult,
        *,
        principal_id: Optional[int] = None,
        identifier: Optional[str] = None,
        reason: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> None:
        self.audit.emit(AuthEvent(
            action=action,
            result=result,
            principal_id=principal_id,
            identifier=identifier,
            reason=reason,
            ip_address=ip,
        ))


def build_coordinator(settings: Settings, *, audit: Optional[AuditService] = None) -> AuthenticationCoordinator:
    """Wire the production components from settings."""
    revocation_cache = RevocationCache.from_settings(settings)
    return AuthenticationCoordinator(
        signer=TokenSigner.from_settings(settings),
        credential_store=CredentialStore(),
        lockout_policy=LockoutPolicy.from_settings(settings),
        ledger=RefreshTokenLedger.from_settings(settings, revocation_cache),
        revocation_cache=revocation_cache,
        audit=audit or AuditService(max_queue_size=settings.AUDIT_QUEUE_SIZE),
        access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
    )

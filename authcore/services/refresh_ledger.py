"""Refresh token ledger: issuance records, rotation and revocation."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from sqlalchemy import delete, func, update
from sqlalchemy.orm import Session

from authcore.config import Settings
from authcore.core.database import transaction
from authcore.core.security import token_fingerprint, utc_now
from authcore.models.security import RefreshToken
from authcore.services.revocation_cache import RevocationCache

logger = logging.getLogger(__name__)


class RefreshTokenLedger:
    """
    System of record for refresh tokens.

    A token is usable only while its row exists, is unrevoked and unexpired;
    the JWT signature alone is never enough.
    """

    def __init__(
        self,
        revocation_cache: RevocationCache,
        refresh_ttl: timedelta,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.revocation_cache = revocation_cache
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, revocation_cache: RevocationCache) -> "RefreshTokenLedger":
        return cls(revocation_cache, timedelta(seconds=settings.refresh_token_ttl_seconds))

    @staticmethod
    def _find(db: Session, raw_token: str) -> Optional[RefreshToken]:
        fingerprint = token_fingerprint(raw_token)
        return db.query(RefreshToken).filter(RefreshToken.token_fingerprint == fingerprint).first()

    def _new_record(self, db: Session, *, principal_id: int, raw_token: str, family_id: str) -> RefreshToken:
        now = self._clock()
        record = RefreshToken(
            principal_id=principal_id,
            family_id=family_id,
            token_fingerprint=token_fingerprint(raw_token),
            issued_at=now,
            expires_at=now + self.refresh_ttl,
        )
        db.add(record)
        db.flush()
        return record

    def record(self, db: Session, principal_id: int, raw_token: str, family_id: str) -> RefreshToken:
        """Store the fingerprint of a freshly issued refresh token."""
        with transaction(db):
            record = self._new_record(db, principal_id=principal_id, raw_token=raw_token, family_id=family_id)
        return record

    def validate(self, db: Session, raw_token: str) -> Optional[RefreshToken]:
        """
        Return the ledger row if the token is currently usable.

        Unknown, expired, revoked and explicitly blacklisted tokens all yield None.
        """
        record = self._find(db, raw_token)
        if record is None or not record.is_valid(self._clock()):
            return None
        if self.revocation_cache.contains(raw_token):
            return None
        return record

    def rotate(self, db: Session, old_raw_token: str, new_raw_token: str) -> Optional[RefreshToken]:
        """
        Replace a refresh token with its successor in one transaction.

        The predecessor is revoked with a conditional update, so when two
        callers race on the same token only one of them sees a row change and
        goes on to insert a successor.

        Returns:
            The successor record, or None if the old token was not usable
        """
        old = self.validate(db, old_raw_token)
        if old is None:
            return None

        old_id = old.id
        now = self._clock()
        with transaction(db):
            result = db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.id == old_id,
                    RefreshToken.revoked_at.is_(None),
                    RefreshToken.expires_at > now,
                )
                .values(revoked_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning("Refresh token %s was revoked concurrently; rotation refused", old_id)
                return None

            successor = self._new_record(
                db,
                principal_id=old.principal_id,
                raw_token=new_raw_token,
                family_id=old.family_id,
            )
            db.execute(
                update(RefreshToken)
                .where(RefreshToken.id == old_id)
                .values(superseded_by=successor.id)
                .execution_options(synchronize_session=False)
            )
        return successor

    def revoke_one(self, db: Session, raw_token: str) -> bool:
        """Revoke a single refresh token. Returns True if a live row was revoked."""
        fingerprint = token_fingerprint(raw_token)
        with transaction(db):
            result = db.execute(
                update(RefreshToken)
                .where(RefreshToken.token_fingerprint == fingerprint, RefreshToken.revoked_at.is_(None))
                .values(revoked_at=self._clock())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0

    def revoke_family(self, db: Session, family_id: str) -> int:
        """Revoke every unrevoked token descended from one login."""
        with transaction(db):
            result = db.execute(
                update(RefreshToken)
                .where(RefreshToken.family_id == family_id, RefreshToken.revoked_at.is_(None))
                .values(revoked_at=self._clock())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount

    def revoke_all(self, db: Session, principal_id: int) -> int:
        """Revoke every unrevoked token of a principal in a single set-based update."""
        with transaction(db):
            result = db.execute(
                update(RefreshToken)
                .where(RefreshToken.principal_id == principal_id, RefreshToken.revoked_at.is_(None))
                .values(revoked_at=self._clock())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount

    def sweep_expired(self, db: Session, before: Optional[datetime] = None) -> int:
        """Delete rows that expired before the given instant (default now)."""
        cutoff = before or self._clock()
        with transaction(db):
            result = db.execute(
                delete(RefreshToken)
                .where(RefreshToken.expires_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info("Swept %s expired refresh tokens", result.rowcount)
        return result.rowcount

    def count_active(self, db: Session, principal_id: int) -> int:
        now = self._clock()
        return (
            db.query(func.count(RefreshToken.id))
            .filter(
                RefreshToken.principal_id == principal_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
            .scalar()
        )

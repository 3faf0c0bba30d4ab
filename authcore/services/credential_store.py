"""Credential store - principal lookup, password checks and lockout bookkeeping"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from authcore.core.database import transaction
from authcore.core.exceptions import ResourceAlreadyExistsError
from authcore.core.security import get_password_hash, verify_password
from authcore.models.principal import Principal, PrincipalStatus
from authcore.services.lockout_policy import LockDecision, LockState
import logging

logger = logging.getLogger(__name__)


class CredentialStore:
    """Persistence for principals"""

    @staticmethod
    def find_by_identifier(db: Session, identifier: str) -> Optional[Principal]:
        """
        Find a principal by email or username, case-insensitively

        Args:
            db: Database session
            identifier: Email or username

        Returns:
            The matching principal, or None when nothing (or more than one
            account) matches
        """
        needle = (identifier or "").strip().lower()
        if not needle:
            return None

        matches = (
            db.query(Principal)
            .filter(or_(func.lower(Principal.email) == needle, func.lower(Principal.username) == needle))
            .limit(2)
            .all()
        )
        if len(matches) > 1:
            logger.error(
                "Identifier matches more than one principal (ids=%s); refusing to choose",
                [p.id for p in matches],
            )
            return None
        return matches[0] if matches else None

    @staticmethod
    def get_by_id(db: Session, principal_id: int) -> Optional[Principal]:
        """Get principal by ID"""
        return db.query(Principal).filter(Principal.id == principal_id).first()

    @staticmethod
    def verify_password(raw_password: str, password_hash: str) -> bool:
        """Constant-time bcrypt check"""
        return verify_password(raw_password, password_hash)

    @staticmethod
    def record_failed_attempt(db: Session, principal: Principal, decision: LockDecision) -> Principal:
        """
        Persist the counter (and lock, if any) decided by the lockout policy

        Args:
            db: Database session
            principal: Principal that failed the password check
            decision: Result of LockoutPolicy.register_failure

        Returns:
            Updated principal
        """
        with transaction(db):
            principal.failed_attempt_count = decision.failed_attempts
            # None on ALLOW, which also clears a lapsed lock
            principal.locked_until = decision.locked_until
            if decision.state is LockState.WOULD_LOCK:
                logger.warning(
                    "Account locked for principal %s until %s", principal.id, decision.locked_until
                )
        return principal

    @staticmethod
    def reset_attempts(db: Session, principal: Principal) -> Principal:
        with transaction(db):
            principal.failed_attempt_count = 0
            principal.locked_until = None
        return principal

    @staticmethod
    def record_login(db: Session, principal: Principal, now: datetime) -> Principal:
        with transaction(db):
            principal.last_login_at = now
        return principal

    @staticmethod
    def create_principal(
        db: Session,
        *,
        email: str,
        username: str,
        password: str,
        full_name: Optional[str] = None,
        status: PrincipalStatus = PrincipalStatus.ACTIVE,
    ) -> Principal:
        """
        Provision a new principal

        Args:
            db: Database session
            email: Email address (stored lowercased)
            username: Username (stored lowercased)
            password: Plain text password, hashed before storage
            full_name: Optional display name
            status: Initial account status

        Returns:
            Created principal
        """
        email = email.strip().lower()
        username = username.strip().lower()

        if db.query(Principal).filter(func.lower(Principal.email) == email).first():
            raise ResourceAlreadyExistsError("Email")
        if db.query(Principal).filter(func.lower(Principal.username) == username).first():
            raise ResourceAlreadyExistsError("Username")

        principal = Principal(
            email=email,
            username=username,
            password_hash=get_password_hash(password),
            full_name=full_name,
            status=status.value,
            failed_attempt_count=0,
        )
        with transaction(db):
            db.add(principal)
        db.refresh(principal)

        logger.info(f"Created principal: {principal.username}")
        return principal

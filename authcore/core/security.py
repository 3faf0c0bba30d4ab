"""Security utilities - password hashing, token fingerprints, clock"""

from datetime import datetime, timezone
import hashlib
import secrets

import bcrypt


def utc_now() -> datetime:
    """
    Current time as a naive UTC datetime.

    Every timestamp persisted or compared by the service uses this form.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches; False for a corrupt or foreign hash
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


def token_fingerprint(token: str) -> str:
    """
    One-way fingerprint of a bearer token.

    Used as the refresh ledger lookup key and as the revocation cache key so
    raw tokens are never stored.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token_id() -> str:
    """Random identifier for the jti and family claims"""
    return secrets.token_urlsafe(32)

"""Security-related persistence models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from authcore.core.database import Base
from authcore.core.security import utc_now


class RefreshToken(Base):
    """Ledger row for one issued refresh token; the raw token is never stored."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    principal_id = Column(Integer, ForeignKey("principals.id", ondelete="CASCADE"), nullable=False, index=True)
    family_id = Column(String(128), nullable=False, index=True)
    token_fingerprint = Column(String(64), unique=True, nullable=False, index=True)
    issued_at = Column(DateTime, default=utc_now, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    superseded_by = Column(Integer, ForeignKey("refresh_tokens.id", ondelete="SET NULL"), nullable=True)

    principal = relationship("Principal", back_populates="refresh_tokens")

    __table_args__ = (
        Index("idx_refresh_tokens_principal_family", "principal_id", "family_id"),
        Index("idx_refresh_tokens_expires_at", "expires_at"),
    )

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Valid iff not revoked and not yet expired."""
        return not self.is_revoked and not self.is_expired(now)

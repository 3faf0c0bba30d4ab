"""Principal model"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from authcore.core.database import Base


class PrincipalStatus(str, enum.Enum):
    """Account status"""
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class Principal(Base):
    """Authenticatable account: identity, password hash and lockout bookkeeping"""

    __tablename__ = "principals"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    username = Column(String(50), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100))
    status = Column(String(20), default=PrincipalStatus.ACTIVE.value, nullable=False)
    failed_attempt_count = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime)
    last_login_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())

    refresh_tokens = relationship("RefreshToken", back_populates="principal", passive_deletes=True)

    __table_args__ = (
        Index('idx_principals_status', 'status'),
    )

    @property
    def is_active(self) -> bool:
        return self.status == PrincipalStatus.ACTIVE.value

    def __repr__(self):
        return f"<Principal(id={self.id}, username='{self.username}', status='{self.status}')>"

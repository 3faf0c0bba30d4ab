"""Database models"""

from authcore.models.principal import Principal, PrincipalStatus
from authcore.models.security import RefreshToken

__all__ = ["Principal", "PrincipalStatus", "RefreshToken"]

"""Authentication schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime


class LoginRequest(BaseModel):
    """Login with email or username"""
    identifier: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator('identifier')
    @classmethod
    def strip_identifier(cls, v):
        """Trim surrounding whitespace"""
        v = v.strip()
        if not v:
            raise ValueError('Identifier must not be blank')
        return v


class RefreshTokenRequest(BaseModel):
    """Refresh token exchange request"""
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    """Optional refresh token to revoke alongside the access token"""
    refresh_token: Optional[str] = None


class TokenResponse(BaseModel):
    """Access/refresh token pair"""
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


class PrincipalResponse(BaseModel):
    """Principal profile"""
    id: int
    email: str
    username: str
    full_name: Optional[str] = None
    status: str
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

"""Pydantic schemas for API validation"""

from authcore.schemas.auth import (
    LoginRequest,
    RefreshTokenRequest,
    LogoutRequest,
    TokenResponse,
    PrincipalResponse,
)
from authcore.schemas.response import APIResponse, ErrorResponse

__all__ = [
    "LoginRequest", "RefreshTokenRequest", "LogoutRequest", "TokenResponse", "PrincipalResponse",
    "APIResponse", "ErrorResponse"
]

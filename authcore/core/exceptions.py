"""Custom exception classes for the application"""

from datetime import datetime
from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=401, details=details)


class InvalidCredentialsError(AuthenticationError):
    """
    Unknown identifier, wrong password, inactive account, or unusable refresh token.

    Deliberately coarse so callers cannot tell which gate rejected them.
    """
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class AccountLockedError(AuthenticationError):
    """Account is locked due to failed login attempts"""
    def __init__(self, locked_until: datetime):
        self.locked_until = locked_until
        super().__init__(
            f"Account is locked until {locked_until.isoformat()}",
            details={"locked_until": locked_until.isoformat()}
        )


class TokenInvalidError(AuthenticationError):
    """Token signature does not verify"""
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class TokenMalformedError(TokenInvalidError):
    """Token cannot be decoded, lacks required claims, or is of the wrong kind"""
    def __init__(self, message: str = "Malformed token"):
        super().__init__(message)


class TokenExpiredError(AuthenticationError):
    """Token has passed its expiry claim"""
    def __init__(self):
        super().__init__("Token has expired")


class TokenRevokedError(AuthenticationError):
    """Token was explicitly revoked before its natural expiry"""
    def __init__(self):
        super().__init__("Token has been revoked")


# Resource Errors
class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} already exists", status_code=409)


# System Errors
class StoreUnavailableError(BaseAPIException):
    """Database or cache could not be reached in time; the request fails closed"""
    def __init__(self, message: str = "Authentication store unavailable"):
        super().__init__(message, status_code=503)


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, status_code=429)

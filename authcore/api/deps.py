"""API dependencies - coordinator wiring and request authentication"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from authcore.core.database import get_db
from authcore.core.exceptions import AuthenticationError
from authcore.models.principal import Principal
from authcore.services.auth_service import AuthenticatedPrincipal, AuthenticationCoordinator
from authcore.services.credential_store import CredentialStore
from authcore.services.rate_limiter import RedisRateLimiter

# HTTP Bearer token scheme
security = HTTPBearer()


def get_coordinator(request: Request) -> AuthenticationCoordinator:
    """Coordinator wired at startup and kept on the application state"""
    return request.app.state.coordinator


def get_rate_limiter(request: Request) -> RedisRateLimiter:
    return request.app.state.rate_limiter


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    return credentials.credentials


def get_current_principal(
    token: str = Depends(get_bearer_token),
    coordinator: AuthenticationCoordinator = Depends(get_coordinator),
) -> AuthenticatedPrincipal:
    """
    Authenticate the bearer token on a protected request

    Raises:
        AuthenticationError: If the token is revoked, invalid or expired
    """
    return coordinator.authenticate_request(token)


def get_current_active_principal(
    current: AuthenticatedPrincipal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> Principal:
    """
    Load the principal row behind a valid token

    Raises:
        AuthenticationError: If the principal no longer exists or is disabled
    """
    principal = CredentialStore.get_by_id(db, current.principal_id)
    if not principal:
        raise AuthenticationError("Principal not found")
    if not principal.is_active:
        raise AuthenticationError("Principal account is disabled")
    return principal

"""Authentication routes"""

from fastapi import APIRouter, Depends, status, Request
from sqlalchemy.orm import Session
from typing import Optional

from authcore.core.database import get_db
from authcore.config import settings
from authcore.schemas.auth import (
    LoginRequest,
    TokenResponse,
    PrincipalResponse,
    RefreshTokenRequest,
    LogoutRequest,
)
from authcore.schemas.response import APIResponse
from authcore.services.auth_service import AuthenticationCoordinator, TokenPair
from authcore.services.rate_limiter import RedisRateLimiter
from authcore.api.deps import (
    get_bearer_token,
    get_client_ip,
    get_coordinator,
    get_current_active_principal,
    get_current_principal,
    get_rate_limiter,
)
from authcore.models.principal import Principal
from authcore.core.exceptions import RateLimitExceededError

router = APIRouter()


def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
    )


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    coordinator: AuthenticationCoordinator = Depends(get_coordinator),
    rate_limiter: RedisRateLimiter = Depends(get_rate_limiter),
):
    """
    Login endpoint - authenticate with email or username and return a token pair

    Args:
        credentials: Identifier and password
        db: Database session

    Returns:
        Access and refresh tokens
    """
    client_ip = get_client_ip(request)
    identifier_key = credentials.identifier.lower()
    per_min_key = f"login:min:{client_ip}:{identifier_key}"
    per_hour_key = f"login:hour:{client_ip}:{identifier_key}"
    if not rate_limiter.allow(per_min_key, settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many login attempts. Please wait a minute.")
    if not rate_limiter.allow(per_hour_key, settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError("Too many login attempts. Please try again later.")

    pair = coordinator.authenticate(db, credentials.identifier, credentials.password, client_ip=client_ip)
    return _token_response(pair)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    req: RefreshTokenRequest,
    request: Request,
    db: Session = Depends(get_db),
    coordinator: AuthenticationCoordinator = Depends(get_coordinator),
    rate_limiter: RedisRateLimiter = Depends(get_rate_limiter),
):
    """
    Rotate a refresh token into a new token pair

    The presented refresh token is unusable afterwards.
    """
    client_ip = get_client_ip(request)
    if not rate_limiter.allow(f"refresh:min:{client_ip}", settings.REFRESH_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many refresh attempts. Slow down.")

    pair = coordinator.refresh(db, req.refresh_token, client_ip=client_ip)
    return _token_response(pair)


@router.post("/logout", response_model=APIResponse, status_code=status.HTTP_200_OK)
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    coordinator: AuthenticationCoordinator = Depends(get_coordinator),
):
    """
    Logout endpoint - revoke the access token and its refresh family

    Always succeeds, even for tokens that are already unusable.
    """
    coordinator.logout(db, token, client_ip=get_client_ip(request))
    revoked = False
    if body and body.refresh_token:
        revoked = coordinator.revoke_refresh_token(db, body.refresh_token)

    return APIResponse(
        message="Logged out successfully",
        data={"refresh_token_revoked": revoked},
    )


@router.post("/logout-all", response_model=APIResponse, status_code=status.HTTP_200_OK)
def logout_all(
    request: Request,
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    coordinator: AuthenticationCoordinator = Depends(get_coordinator),
):
    """Logout from every device by revoking all refresh tokens of the caller"""
    coordinator.logout_all(db, token, client_ip=get_client_ip(request))
    return APIResponse(message="Logged out from all devices")


@router.get("/me", response_model=PrincipalResponse)
def get_current_principal_info(
    principal: Principal = Depends(get_current_active_principal),
):
    """Current principal profile"""
    return PrincipalResponse.model_validate(principal)


@router.get("/verify")
def verify_token(current=Depends(get_current_principal)):
    """Token introspection hook for other services"""
    return {
        "principal_id": current.principal_id,
        "username": current.username,
        "expires_at": current.expires_at.isoformat(),
    }

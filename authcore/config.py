"""Application configuration management"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List
from urllib.parse import quote_plus

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

# Repository root
_BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Auth Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database (PostgreSQL in production, SQLite for local runs)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "authcore_db"
    POSTGRES_USER: str = "authcore"
    POSTGRES_PASSWORD: str = "authcore"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_TIMEOUT_SECONDS: int = 5
    DATABASE_STATEMENT_TIMEOUT_MS: int = 3000

    # Revocation cache / rate limiting
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0

    # Token signing
    JWT_ALGORITHM: str = "RS256"
    JWT_PRIVATE_KEY_PATH: str = ""
    JWT_PUBLIC_KEY_PATH: str = ""
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Lockout
    MAX_FAILED_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 30

    # Rate Limiting
    LOGIN_RATE_LIMIT_PER_MINUTE: int = 10
    LOGIN_RATE_LIMIT_PER_HOUR: int = 50
    REFRESH_RATE_LIMIT_PER_MINUTE: int = 30

    # Audit channel
    AUDIT_QUEUE_SIZE: int = 10000

    # Expired refresh token sweep
    RUN_EMBEDDED_SWEEPER: bool = True
    SWEEP_INTERVAL_SECONDS: float = 3600.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: Any) -> Any:
        """
        Accept JSON array or comma-separated origins from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            CORS_ORIGINS=http://localhost:3000,http://example.com
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(origin).strip() for origin in parsed if str(origin).strip()]

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    def _resolve_path(self, value: str, default: str) -> str:
        """Resolve path - use repository-relative default if empty or relative"""
        if not value or value.startswith(".."):
            return str(_BASE_DIR / default)
        return value

    def get_private_key_path(self) -> str:
        return self._resolve_path(self.JWT_PRIVATE_KEY_PATH, "keys/private_key.pem")

    def get_public_key_path(self) -> str:
        return self._resolve_path(self.JWT_PUBLIC_KEY_PATH, "keys/public_key.pem")

    def get_log_file(self) -> str:
        return self._resolve_path(self.LOG_FILE, "logs/authcore.log")

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def validate_security_settings(self) -> None:
        """
        Validate runtime security settings in production.

        Raises:
            ValueError: If signing keys are missing or token lifetimes are unsafe.
        """
        if self.ACCESS_TOKEN_EXPIRE_MINUTES * 60 >= self.refresh_token_ttl_seconds:
            raise ValueError(
                "ACCESS_TOKEN_EXPIRE_MINUTES must be shorter than the refresh token lifetime."
            )

        if self.ENVIRONMENT.lower() != "production":
            return

        if not self.JWT_ALGORITHM.upper().startswith(("RS", "ES", "PS")):
            raise ValueError(
                "JWT_ALGORITHM must be asymmetric (RS*/ES*/PS*) in production."
            )

        for label, path in (
            ("JWT_PRIVATE_KEY_PATH", self.get_private_key_path()),
            ("JWT_PUBLIC_KEY_PATH", self.get_public_key_path()),
        ):
            if not Path(path).is_file():
                raise ValueError(f"{label} does not point to a readable key file: {path}")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()

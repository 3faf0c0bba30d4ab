"""Main FastAPI application"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from pathlib import Path
from typing import Optional
import logging
import traceback
import time
import uuid

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi.responses import Response

from authcore.config import settings
from authcore.core.database import init_db, get_engine, SessionLocal
from authcore.core.exceptions import (
    BaseAPIException,
    TokenExpiredError,
    TokenInvalidError,
    TokenRevokedError,
)
from authcore.core.security import utc_now
from authcore.api.v1 import auth
from authcore.schemas.response import ErrorResponse
from authcore.services.auth_service import AuthenticationCoordinator, build_coordinator
from authcore.services.rate_limiter import RedisRateLimiter
from authcore.services.token_sweeper import TokenSweeper

logger = logging.getLogger(__name__)

REQUEST_COUNT = Counter(
    "authcore_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "authcore_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

_TOKEN_ERRORS = (TokenInvalidError, TokenExpiredError, TokenRevokedError)


def configure_logging() -> None:
    """Log to the configured file and to stderr"""
    _log_dir = Path(settings.get_log_file()).parent
    _log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(settings.get_log_file()),
            logging.StreamHandler()
        ]
    )


def _error_body(request: Request, message: str, details: Optional[dict] = None) -> dict:
    return ErrorResponse(error=message, details=details or {}, path=request.url.path).model_dump()


def create_app(
    coordinator: Optional[AuthenticationCoordinator] = None,
    rate_limiter: Optional[RedisRateLimiter] = None,
    *,
    run_background: bool = True,
) -> FastAPI:
    """
    Build the application

    Args:
        coordinator: Pre-wired coordinator; built from settings at startup when omitted
        rate_limiter: Pre-wired rate limiter; built from settings at startup when omitted
        run_background: Start the audit writer and refresh token sweeper
    """
    configure_logging()
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None
    )
    app.state.coordinator = coordinator
    app.state.rate_limiter = rate_limiter
    app.state.sweeper = None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security headers + request timing middleware
    @app.middleware("http")
    async def add_headers_and_timing(request: Request, call_next):
        """Add security headers and log slow requests"""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-Request-ID"] = request_id

        REQUEST_COUNT.labels(request.method, request.url.path, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(request.method, request.url.path).observe(duration)

        if duration > 1.0:
            logger.warning(
                "Slow request: %s %s took %.2fs request_id=%s",
                request.method,
                request.url.path,
                duration,
                request_id,
            )

        return response

    # Exception handlers
    @app.exception_handler(BaseAPIException)
    async def api_exception_handler(request: Request, exc: BaseAPIException):
        """Handle custom API exceptions"""
        if isinstance(exc, _TOKEN_ERRORS):
            # revoked/expired/forged are indistinguishable to the client
            logger.info("Rejected bearer token on %s: %s", request.url.path, exc.message)
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content=_error_body(request, "Unauthorized"),
                headers={"WWW-Authenticate": "Bearer"},
            )

        logger.warning(
            f"API Exception: {exc.message}",
            extra={
                "status_code": exc.status_code,
                "details": exc.details,
                "path": request.url.path,
                "method": request.method
            }
        )
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.message, exc.details),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors"""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"]
            })

        logger.warning(
            f"Validation error: {errors}",
            extra={"path": request.url.path, "method": request.method}
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "error": "Validation failed",
                "details": errors,
                "path": request.url.path,
                "timestamp": utc_now().isoformat()
            }
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        """Handle database errors that escaped the coordinator"""
        logger.error(
            f"Database error: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "traceback": traceback.format_exc()
            }
        )

        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=_error_body(request, "Authentication store unavailable. Please try again later."),
        )

    @app.on_event("startup")
    async def startup_event():
        """Wire components and start background workers"""
        settings.validate_security_settings()
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Environment: {settings.ENVIRONMENT}")

        if app.state.coordinator is None:
            try:
                init_db()
                logger.info("Database initialized successfully")
            except Exception as e:
                logger.error(f"Failed to initialize database: {e}")
                raise
            app.state.coordinator = build_coordinator(settings)
        if app.state.rate_limiter is None:
            app.state.rate_limiter = RedisRateLimiter.from_settings(settings)

        if run_background:
            app.state.coordinator.audit.start()
            if settings.RUN_EMBEDDED_SWEEPER:
                get_engine()
                sweeper = TokenSweeper(
                    app.state.coordinator.ledger,
                    SessionLocal,
                    interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
                )
                sweeper.start()
                app.state.sweeper = sweeper

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        if app.state.sweeper is not None:
            app.state.sweeper.stop()
        if run_background and app.state.coordinator is not None:
            app.state.coordinator.audit.stop()
        logger.info(f"Shutting down {settings.APP_NAME}")

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        db_ok = True
        db_error = None
        try:
            with get_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as exc:
            db_ok = False
            db_error = str(exc)

        cache_ok = bool(app.state.coordinator and app.state.coordinator.revocation_cache.ping())
        sweeper = app.state.sweeper

        return {
            "status": "healthy" if db_ok and cache_ok else "degraded",
            "version": settings.APP_VERSION,
            "timestamp": utc_now().isoformat(),
            "readiness": {
                "database": {"ok": db_ok, "error": db_error},
                "revocation_cache": {"ok": cache_ok},
                "sweeper": sweeper.status() if sweeper else {"running": False},
            },
        }

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running",
            "docs": "/api/docs" if settings.DEBUG else "disabled"
        }

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "authcore.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS
    )

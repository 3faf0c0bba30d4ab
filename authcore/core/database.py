"""Database configuration and session management"""

from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterator, Optional

from sqlalchemy import create_engine, text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from authcore.config import settings
import logging

logger = logging.getLogger(__name__)

# Session factory, bound to the engine on first use
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

# Create base class for models
Base = declarative_base()

_engine: Optional[Engine] = None

# Import models after Base is defined so metadata is populated.
from authcore import models  # noqa: E402,F401


def _engine_options(url: str) -> Dict[str, Any]:
    """
    Build engine keyword arguments with bounded waits for every backend.

    A query that cannot get a connection or finish within these limits raises,
    and callers treat that as a store outage rather than a success.
    """
    timeout_seconds = max(1, settings.DATABASE_STATEMENT_TIMEOUT_MS // 1000)
    if url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False, "timeout": timeout_seconds},
            "echo": settings.DEBUG,
        }
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT_SECONDS,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
        "connect_args": {
            "connect_timeout": timeout_seconds,
            "options": f"-c statement_timeout={settings.DATABASE_STATEMENT_TIMEOUT_MS}",
        },
        "echo": settings.DEBUG,
    }


def get_engine() -> Engine:
    """Create the process-wide engine lazily and bind the session factory to it."""
    global _engine
    if _engine is None:
        url = settings.get_database_url()
        _engine = create_engine(url, **_engine_options(url))
        SessionLocal.configure(bind=_engine)
    return _engine


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session

    Yields:
        Session: Database session
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Explicit unit of work: commit on success, roll back on any error.

    Args:
        db: Session owned by the current request

    Yields:
        The same session
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def init_db() -> None:
    """
    Initialize database according to configured strategy.

    DB_INIT_MODE:
      - migrate: require alembic_version table (migration-first discipline)
      - create_all: legacy behavior for local/dev bootstrap
      - off: skip initialization check
    """
    mode = settings.DB_INIT_MODE.lower().strip()
    if mode == "off":
        logger.info("DB initialization check skipped (DB_INIT_MODE=off)")
        return

    engine = get_engine()

    if mode == "create_all":
        Base.metadata.create_all(bind=engine)
        logger.warning("Using create_all database initialization (recommended only for local development).")
        return

    if mode == "migrate":
        with engine.connect() as conn:
            if engine.dialect.name == "postgresql":
                version_table_exists = conn.execute(
                    text("SELECT to_regclass('public.alembic_version')")
                ).scalar()
                exists = bool(version_table_exists)
            elif engine.dialect.name == "sqlite":
                version_table_exists = conn.execute(
                    text(
                        "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
                    )
                ).fetchone()
                exists = bool(version_table_exists)
            else:
                exists = "alembic_version" in inspect(conn).get_table_names()
            if settings.DB_REQUIRE_HEAD and not exists:
                raise RuntimeError(
                    "Migration table missing. Run Alembic migrations before starting the API."
                )
        logger.info("Migration metadata detected.")
        return

    raise RuntimeError(f"Unknown DB_INIT_MODE: {settings.DB_INIT_MODE}")

"""Database session management with connection pooling"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from society_billing.config import settings


def _connect_args(database_url: str) -> dict:
    # Bound every statement so batch jobs never wait indefinitely on a lock
    if database_url.startswith("postgresql"):
        return {"options": f"-c statement_timeout={settings.db_statement_timeout_ms}"}
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": settings.db_statement_timeout_ms / 1000}
    return {}


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=settings.db_pool_size,
    max_overflow=10,
    pool_timeout=settings.db_pool_timeout_seconds,
    pool_recycle=3600,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

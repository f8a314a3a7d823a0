"""Database engine, session factory and declarative base."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, sessionmaker

from greenlight.config import settings
from greenlight.errors import ValidationError

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_engine(url: str):
    """Create an engine with bounded connect and statement timeouts."""
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": settings.DB_CONNECT_TIMEOUT}
    elif url.startswith("postgresql"):
        connect_args = {
            "connect_timeout": settings.DB_CONNECT_TIMEOUT,
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        }
    else:
        connect_args = {}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def as_uuid(value) -> uuid.UUID:
    """Coerce an id from a path, payload or header into a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid id: {value!r}")

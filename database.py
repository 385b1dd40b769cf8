"""
Key-value cache table - SQLite with SQLAlchemy

Mirrors the `edge_cache` table the hosted functions use for repeated
geocoding / place-search lookups: one row per key with a JSON value and an
absolute expiry.
"""
import os
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

DEFAULT_DB_URL = "sqlite:///./museum_guide_cache.db"


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite DateTime columns do not keep tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CacheEntry(Base):
    __tablename__ = "edge_cache"

    key = Column(String, primary_key=True)
    value = Column(JSON)
    expires_at = Column(DateTime, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


def _db_url(url: str | None = None) -> str:
    return url or os.getenv("CACHE_DB_URL", DEFAULT_DB_URL)


def _make_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url)
    kwargs = {"connect_args": {"check_same_thread": False}}
    # in-memory databases live and die with their single connection
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def init_db(url: str | None = None):
    """Create the cache table if needed and return the engine."""
    engine = _make_engine(_db_url(url))
    Base.metadata.create_all(bind=engine)
    return engine


def get_session_factory(url: str | None = None):
    engine = init_db(url)
    return sessionmaker(bind=engine)


def purge_expired(session_factory, now: datetime | None = None) -> int:
    """Delete expired rows; returns the number removed."""
    now = now or utcnow()
    db = session_factory()
    try:
        removed = db.query(CacheEntry).filter(CacheEntry.expires_at <= now).delete()
        db.commit()
        return removed
    finally:
        db.close()

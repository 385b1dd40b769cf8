"""
TTL key-value cache shared by the geo, guide and itinerary services.

The cache is injected wherever repeated provider lookups happen. It never
raises: a store error is logged and treated as a miss, so a broken backend
only means "always fetch fresh".

Stores:
  MemoryStore  - process-local dict (tests, local dev)
  SqlStore     - SQLAlchemy `edge_cache` table (see database.py)
  RestStore    - Supabase PostgREST `edge_cache` table
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600
DEFAULT_MAX_ENTRIES = 2048
DEFAULT_SWEEP_SECONDS = 60
DEFAULT_PURGE_SECONDS = 60 * 10


class MemoryStore:
    """Thread-safe in-process store keyed by string, with absolute expiry.

    Bounded: expired entries are swept from ``set`` at most every
    ``sweep_interval`` seconds, and the least recently used entry is evicted
    once ``max_size`` entries are held.
    """

    def __init__(self, clock=time.time, max_size: int = DEFAULT_MAX_ENTRIES,
                 sweep_interval: float = DEFAULT_SWEEP_SECONDS):
        self._data: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()
        self._clock = clock
        self.max_size = max_size
        self.sweep_interval = sweep_interval
        self._last_sweep = clock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep(now)
            while self._data and key not in self._data and len(self._data) >= self.max_size:
                self._data.popitem(last=False)
            self._data[key] = (value, now + ttl_seconds)
            self._data.move_to_end(key)

    def _sweep(self, now: float) -> int:
        expired = [k for k, (_, expires_at) in self._data.items() if expires_at <= now]
        for k in expired:
            del self._data[k]
        self._last_sweep = now
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class SqlStore:
    """Store backed by the SQLAlchemy `edge_cache` table.

    Expired rows are purged from ``set`` at most every ``purge_interval``
    seconds.
    """

    def __init__(self, session_factory=None, url: str | None = None,
                 purge_interval: float = DEFAULT_PURGE_SECONDS, clock=time.monotonic):
        if session_factory is None:
            from database import get_session_factory
            session_factory = get_session_factory(url)
        self._session_factory = session_factory
        self.purge_interval = purge_interval
        self._clock = clock
        self._last_purge = clock()

    def get(self, key: str) -> Optional[Any]:
        from database import CacheEntry, utcnow

        db = self._session_factory()
        try:
            row = db.get(CacheEntry, key)
            if row is None or row.expires_at is None:
                return None
            if row.expires_at <= utcnow():
                return None
            return row.value
        finally:
            db.close()

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        from database import CacheEntry, utcnow

        db = self._session_factory()
        try:
            expires_at = utcnow() + timedelta(seconds=ttl_seconds)
            db.merge(CacheEntry(key=key, value=value, expires_at=expires_at))
            db.commit()
        finally:
            db.close()
        if self._clock() - self._last_purge >= self.purge_interval:
            removed = self.purge()
            if removed:
                logger.info("Purged %d expired cache rows", removed)

    def purge(self) -> int:
        from database import purge_expired
        self._last_purge = self._clock()
        return purge_expired(self._session_factory)


class RestStore:
    """Store backed by a PostgREST table (Supabase `edge_cache`)."""

    def __init__(self, base_url: str, service_key: str, table: str = "edge_cache",
                 timeout: float = 5):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.table = table
        self.timeout = timeout

    def _headers(self) -> dict:
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }

    def get(self, key: str) -> Optional[Any]:
        resp = requests.get(
            f"{self.base_url}/rest/v1/{self.table}",
            params={"key": f"eq.{key}", "select": "value,expires_at"},
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        rows = resp.json()
        if not rows:
            return None
        expires_at = datetime.fromisoformat(str(rows[0]["expires_at"]).replace("Z", "+00:00"))
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= datetime.now(timezone.utc):
            return None
        return rows[0].get("value")

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        resp = requests.post(
            f"{self.base_url}/rest/v1/{self.table}",
            params={"on_conflict": "key"},
            json={"key": key, "value": value, "expires_at": expires_at.isoformat()},
            headers={
                **self._headers(),
                "Content-Type": "application/json",
                "Prefer": "resolution=merge-duplicates",
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()


class TTLCache:
    """Best-effort cache front over a pluggable store."""

    def __init__(self, store=None, default_ttl: int = DEFAULT_TTL_SECONDS):
        self.store = store if store is not None else MemoryStore()
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        try:
            return self.store.get(key)
        except Exception as exc:
            logger.warning("Cache get failed for %s: %s", key, exc)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        try:
            self.store.set(key, value, ttl_seconds or self.default_ttl)
        except Exception as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)

    def get_or_fetch(self, key: str, fetch, ttl_seconds: int | None = None):
        """Return the cached value for ``key`` or call ``fetch()`` and cache it.

        Falsy results (None, empty lists) are not cached. Exceptions from
        ``fetch`` propagate to the caller.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = fetch()
        if value:
            self.set(key, value, ttl_seconds)
        return value


def cache_backend_name() -> str:
    return os.getenv("CACHE_BACKEND", "memory").lower().strip()


def build_cache_from_env() -> TTLCache:
    """Build the process cache from CACHE_BACKEND (memory | sql | supabase)."""
    backend = cache_backend_name()
    if backend == "sql":
        try:
            store = SqlStore(url=os.getenv("CACHE_DB_URL"))
            logger.info("SQL cache ready, purged %d expired rows", store.purge())
            return TTLCache(store)
        except Exception as exc:
            logger.warning("SQL cache unavailable, using memory: %s", exc)
    elif backend == "supabase":
        url = os.getenv("SUPABASE_URL", "").strip()
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
        if url and key:
            return TTLCache(RestStore(url, key))
        logger.warning("CACHE_BACKEND=supabase but SUPABASE_URL / key missing, using memory")
    return TTLCache(MemoryStore())

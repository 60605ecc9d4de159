"""
Storage abstraction layer for session snapshots.

Provides pluggable storage backends:
- In-memory (development)
- Redis (production)

Configure via STORAGE_BACKEND environment variable.
"""
import os
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)

KEY_PREFIX = "session:"


class SessionStore(ABC):
    """Abstract base class for session snapshot storage."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get a snapshot by session id. Returns None if not found or expired."""

    @abstractmethod
    def save(self, session_id: str, snapshot: Dict[str, Any], ttl_seconds: int) -> bool:
        """Store a snapshot with TTL. Returns True on success."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Delete a snapshot. Returns True if deleted."""

    @abstractmethod
    def cleanup_expired(self) -> int:
        """Remove expired entries. Returns count of removed entries."""


class InMemorySessionStore(SessionStore):
    """
    In-memory storage for development.

    NOT suitable for production with multiple workers.
    """

    def __init__(self):
        self._store: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()
        logger.info("Using in-memory session store (development only)")

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._store.get(session_id)
            if entry is None:
                return None

            if datetime.now(timezone.utc) > entry['expires_at']:
                del self._store[session_id]
                return None

            # Stored as JSON so callers never share references with the store
            return json.loads(entry['payload'])

    def save(self, session_id: str, snapshot: Dict[str, Any], ttl_seconds: int) -> bool:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._store[session_id] = {
                'payload': json.dumps(snapshot, default=str),
                'expires_at': now + timedelta(seconds=ttl_seconds),
                'saved_at': now,
            }
        return True

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._store.pop(session_id, None) is not None

    def cleanup_expired(self) -> int:
        now = datetime.now(timezone.utc)
        with self._lock:
            expired = [key for key, entry in self._store.items() if entry['expires_at'] < now]
            for key in expired:
                del self._store[key]
        return len(expired)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._store.keys())

    def size(self) -> int:
        """Get current store size."""
        return len(self._store)


class RedisSessionStore(SessionStore):
    """
    Redis storage for production.

    Requires redis package and REDIS_URL environment variable.
    """

    def __init__(self, redis_url: str):
        try:
            import redis
        except ImportError:
            raise RuntimeError(
                "Redis storage requires 'redis' package. "
                "Install with: pip install 'csv-assistant[redis]'"
            )
        try:
            self._client = redis.from_url(redis_url, decode_responses=True)
            self._client.ping()
        except Exception as e:
            raise RuntimeError(f"Failed to connect to Redis: {e}")
        logger.info("Connected to Redis session store")

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        try:
            data = self._client.get(f"{KEY_PREFIX}{session_id}")
        except Exception as e:
            logger.error(f"Redis get error: {e}")
            return None
        return json.loads(data) if data else None

    def save(self, session_id: str, snapshot: Dict[str, Any], ttl_seconds: int) -> bool:
        try:
            self._client.setex(
                f"{KEY_PREFIX}{session_id}",
                ttl_seconds,
                json.dumps(snapshot, default=str)
            )
            return True
        except Exception as e:
            logger.error(f"Redis set error: {e}")
            return False

    def delete(self, session_id: str) -> bool:
        try:
            return self._client.delete(f"{KEY_PREFIX}{session_id}") > 0
        except Exception as e:
            logger.error(f"Redis delete error: {e}")
            return False

    def cleanup_expired(self) -> int:
        # Redis handles TTL automatically
        return 0


_store_instance: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """
    Get the configured session store (singleton).

    Configure via environment variables:
    - STORAGE_BACKEND: "memory" (default) or "redis"
    - REDIS_URL: Required if using redis backend
    """
    global _store_instance

    if _store_instance is None:
        backend = os.getenv('STORAGE_BACKEND', 'memory').lower()

        if backend == 'redis':
            redis_url = os.getenv('REDIS_URL')
            if not redis_url:
                raise RuntimeError("REDIS_URL environment variable required for redis storage")
            _store_instance = RedisSessionStore(redis_url)
        else:
            _store_instance = InMemorySessionStore()

    return _store_instance


def reset_session_store():
    """Reset store instance (for testing)."""
    global _store_instance
    _store_instance = None

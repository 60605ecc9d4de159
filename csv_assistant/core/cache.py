"""
In-memory LRU caches with per-entry TTL.

The summary cache keeps AI-written chart summaries, so regenerating cards
after a transform only re-asks the model for charts whose aggregated rows
changed. The API keeps its live sessions in one as well.
"""
import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Optional, Dict, Any, List, NamedTuple
from threading import Lock

logger = logging.getLogger(__name__)


class CacheEntry(NamedTuple):
    data: Any
    expires_at: float


class SimpleCache:
    """Thread-safe LRU cache with per-entry TTL."""

    def __init__(self, default_ttl: float = 1800, max_entries: int = 512):
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = Lock()
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= time.time():
                if entry is not None:
                    del self._entries[key]
                self._misses += 1
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            logger.debug(f"Cache hit: {key[:24]}")
            return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        with self._lock:
            self._entries[key] = CacheEntry(value, time.time() + (ttl or self.default_ttl))
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = self._evictions = 0
        logger.info("Cache cleared")

    def cleanup_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = time.time()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Dropped {len(expired)} expired cache entries")
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        self.cleanup_expired()
        with self._lock:
            lookups = self._hits + self._misses
            return {
                'size': len(self._entries),
                'max_entries': self.max_entries,
                'hits': self._hits,
                'misses': self._misses,
                'evictions': self._evictions,
                'hit_rate': round(self._hits / lookups, 3) if lookups else 0.0,
                'default_ttl': self.default_ttl,
            }


_summary_cache: Optional[SimpleCache] = None


def get_summary_cache() -> SimpleCache:
    global _summary_cache
    if _summary_cache is None:
        from csv_assistant.core.config import get_settings
        _summary_cache = SimpleCache(default_ttl=get_settings().summary_cache_ttl_seconds)
    return _summary_cache


def generate_summary_cache_key(title: str, language: str, rows: List[Dict[str, Any]]) -> str:
    """Key a summary by chart title, output language and the aggregated rows."""
    payload = json.dumps({'title': title, 'language': language, 'rows': rows}, sort_keys=True, default=str)
    return f"summary:{hashlib.sha256(payload.encode()).hexdigest()}"

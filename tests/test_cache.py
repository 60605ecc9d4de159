"""
Tests for the summary cache.
"""
import pytest
import time
from csv_assistant.core.cache import SimpleCache, get_summary_cache, generate_summary_cache_key


@pytest.mark.unit
def test_simple_cache_set_get():
    """Test set/get and per-entry expiry."""
    cache = SimpleCache(default_ttl=1.0)

    cache.set("key1", "value1")
    assert cache.get("key1") == "value1"

    cache.set("key2", "value2", ttl=0.1)
    assert cache.get("key2") == "value2"

    time.sleep(0.2)
    assert cache.get("key2") is None


@pytest.mark.unit
def test_simple_cache_cleanup():
    """Test cleanup removes only expired entries."""
    cache = SimpleCache(default_ttl=0.1)

    cache.set("key1", "value1")
    cache.set("key2", "value2", ttl=5.0)

    time.sleep(0.15)
    assert cache.cleanup_expired() == 1
    assert cache.get("key1") is None
    assert cache.get("key2") == "value2"


@pytest.mark.unit
def test_simple_cache_stats_count_hits_and_misses():
    """Test stats count hits, misses and the hit rate."""
    cache = SimpleCache(default_ttl=1.0)
    cache.set("key1", "value1")

    cache.get("key1")
    cache.get("missing")

    stats = cache.get_stats()
    assert stats["size"] == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["default_ttl"] == 1.0
    assert stats["hit_rate"] == 0.5


@pytest.mark.unit
def test_simple_cache_evicts_least_recently_used():
    """Test the least recently used entry is evicted at capacity."""
    cache = SimpleCache(default_ttl=60, max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")

    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert cache.get_stats()["evictions"] == 1


@pytest.mark.unit
def test_generate_summary_cache_key():
    """Test summary keys depend on title, language and rows."""
    rows = [{"Region": "East", "Sales": 150.0}]

    key = generate_summary_cache_key("Sales by Region", "English", rows)

    assert key.startswith("summary:")
    assert key == generate_summary_cache_key("Sales by Region", "English", [dict(r) for r in rows])
    assert key != generate_summary_cache_key("Sales by Region", "Spanish", rows)
    assert key != generate_summary_cache_key("Sales by Region", "English", [{"Region": "East", "Sales": 151.0}])


@pytest.mark.unit
def test_summary_cache_is_singleton():
    """Test the summary cache is shared."""
    assert get_summary_cache() is get_summary_cache()

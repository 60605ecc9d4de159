"""
Tests for session snapshot storage.
"""
import pytest
import time
from csv_assistant.core.storage import InMemorySessionStore, get_session_store, reset_session_store


@pytest.mark.unit
def test_in_memory_store_round_trip_returns_copies():
    """Test saved payloads come back as copies."""
    store = InMemorySessionStore()
    snapshot = {"session_id": "s1", "analysis_cards": [{"id": "card-1"}]}

    assert store.save("s1", snapshot, ttl_seconds=60) is True
    loaded = store.get("s1")
    loaded["analysis_cards"].append({"id": "card-2"})

    assert store.get("s1")["analysis_cards"] == [{"id": "card-1"}]
    assert store.session_ids() == ["s1"]


@pytest.mark.unit
def test_in_memory_store_expiry():
    """Test entries expire after their TTL."""
    store = InMemorySessionStore()
    store.save("short", {"session_id": "short"}, ttl_seconds=0)
    store.save("long", {"session_id": "long"}, ttl_seconds=60)

    time.sleep(0.01)

    assert store.cleanup_expired() == 1
    assert store.get("short") is None
    assert store.get("long") is not None


@pytest.mark.unit
def test_in_memory_store_delete():
    """Test deleting an entry."""
    store = InMemorySessionStore()
    store.save("s1", {}, ttl_seconds=60)

    assert store.delete("s1") is True
    assert store.delete("s1") is False
    assert store.size() == 0


@pytest.mark.unit
def test_get_session_store_factory(monkeypatch):
    """Test the memory backend is built once and shared."""
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    reset_session_store()

    store = get_session_store()

    assert isinstance(store, InMemorySessionStore)
    assert get_session_store() is store


@pytest.mark.unit
def test_redis_backend_requires_url(monkeypatch):
    """Test the Redis backend needs a URL."""
    monkeypatch.setenv("STORAGE_BACKEND", "redis")
    monkeypatch.delenv("REDIS_URL", raising=False)
    reset_session_store()

    with pytest.raises(RuntimeError, match="REDIS_URL"):
        get_session_store()

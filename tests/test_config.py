"""
Tests for centralized configuration.
"""
import pytest
from csv_assistant.core.config import Settings, get_settings, reload_settings


@pytest.mark.unit
def test_settings_defaults():
    """Defaults match the documented pipeline constants."""
    settings = Settings.from_env()

    assert settings.max_file_size_mb == 50
    assert settings.rate_limit_per_minute == 10
    assert settings.chat_max_attempts == 3
    assert settings.prep_max_attempts == 2
    assert settings.transform_sample_rows == 20
    assert settings.card_context_rows == 100
    assert settings.memory_top_k == 3
    assert settings.language == "English"


@pytest.mark.unit
def test_settings_from_env(monkeypatch):
    """Environment variables override defaults after a reload."""
    monkeypatch.setenv("MAX_FILE_SIZE_MB", "100")
    monkeypatch.setenv("CHAT_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("LANGUAGE", "Spanish")

    settings = reload_settings()

    assert settings.max_file_size_mb == 100
    assert settings.chat_max_attempts == 5
    assert settings.language == "Spanish"


@pytest.mark.unit
def test_settings_validation():
    """Out-of-range and unknown values are rejected."""
    with pytest.raises(ValueError):
        Settings(max_file_size_mb=0)

    with pytest.raises(ValueError):
        Settings(log_level="INVALID")

    with pytest.raises(ValueError):
        Settings(ai_provider="openai")

    with pytest.raises(ValueError):
        Settings(language="Klingon")

    with pytest.raises(ValueError):
        Settings(transform_sample_rows=50)


@pytest.mark.unit
def test_provider_order_with_and_without_fallback():
    """Test the primary provider comes first and fallback adds the other."""
    assert Settings(ai_provider="groq").provider_order == ["groq", "gemini"]
    assert Settings(ai_provider="gemini").provider_order == ["gemini", "groq"]
    assert Settings(ai_provider="groq", ai_fallback_enabled=False).provider_order == ["groq"]


@pytest.mark.unit
def test_settings_properties():
    """Test derived settings properties."""
    settings = Settings(max_file_size_mb=50, allowed_origins="http://a.test, http://b.test,")

    assert settings.max_file_size_bytes == 50 * 1024 * 1024
    assert settings.allowed_origins_list == ["http://a.test", "http://b.test"]


@pytest.mark.unit
def test_settings_singleton():
    """Test settings are loaded once and reloaded on demand."""
    assert get_settings() is get_settings()
    assert reload_settings() is get_settings()

"""
Centralized configuration management.

All application configuration is loaded and validated here.
"""
import os
import logging
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("groq", "gemini")
SUPPORTED_LANGUAGES = ("English", "Mandarin", "Spanish", "Japanese", "French")


class Settings(BaseModel):
    """Application settings with validation."""

    # File upload settings
    max_file_size_mb: int = Field(default=50, ge=1, le=1000, description="Maximum file size in MB")
    max_file_rows: int = Field(default=1000000, ge=1000, description="Maximum rows in uploaded file")
    max_file_columns: int = Field(default=1000, ge=10, description="Maximum columns in uploaded file")
    max_cell_size_bytes: int = Field(default=100000, ge=1000, description="Maximum cell value size in bytes")

    # HTTP surface
    rate_limit_per_minute: int = Field(default=10, ge=1, le=1000, description="Rate limit per minute per IP")
    request_timeout_seconds: int = Field(default=300, ge=1, le=3600, description="Request timeout in seconds")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    # AI providers
    ai_provider: str = Field(default="gemini", description="Primary AI provider: 'groq' or 'gemini'")
    ai_fallback_enabled: bool = Field(default=True, description="Fail over to the other provider")
    groq_model: str = Field(default="llama-3.3-70b-versatile", description="Groq model to use")
    gemini_model: str = Field(default="gemini-2.5-flash", description="Gemini model to use")
    ai_max_retries: int = Field(default=2, ge=0, le=5, description="Transport retries per provider")
    ai_retry_delay_seconds: float = Field(default=1.0, ge=0, le=30, description="Fixed delay between retries")
    ai_request_timeout_seconds: float = Field(default=60.0, ge=1, le=600, description="Per-call provider timeout")
    language: str = Field(default="English", description="Language for AI summaries and chat")

    # Analysis pipeline
    chat_max_attempts: int = Field(default=3, ge=1, le=10, description="ReAct attempts per user message")
    prep_max_attempts: int = Field(default=2, ge=1, le=5, description="Data preparation self-correction attempts")
    filter_max_attempts: int = Field(default=2, ge=1, le=5, description="Filter generation self-correction attempts")
    candidate_plan_count: int = Field(default=12, ge=1, le=30, description="Plans requested in the first pass")
    fallback_plan_count: int = Field(default=8, ge=1, le=30, description="Plans requested by the simple fallback")
    min_plans: int = Field(default=4, ge=0, le=30, description="Floor for the refined plan list")
    max_plans: int = Field(default=12, ge=1, le=30, description="Cap for the refined plan list")
    plan_sample_rows: int = Field(default=20, ge=1, le=500, description="Rows used to propose and review plans")
    review_sample_rows: int = Field(default=20, ge=1, le=200, description="Aggregated rows shown per plan during review")
    transform_sample_rows: int = Field(default=20, ge=1, le=20, description="Rows used for sandbox dry runs")
    card_context_rows: int = Field(default=100, ge=1, le=1000, description="Aggregated rows per card sent to chat")
    chat_history_limit: int = Field(default=20, ge=1, le=200, description="Chat messages sent as context")
    memory_top_k: int = Field(default=3, ge=0, le=20, description="Memory snippets retrieved per chat turn")
    summary_concurrency: int = Field(default=3, ge=1, le=20, description="Concurrent summary requests")
    large_card_threshold: int = Field(default=15, ge=1, description="Rows above which Top-N is applied by default")
    default_top_n: int = Field(default=8, ge=2, description="Default Top-N for large cards")
    summary_cache_ttl_seconds: int = Field(default=1800, ge=1, description="Summary cache TTL")

    # Persistence
    session_ttl_seconds: int = Field(default=86400, ge=60, description="Session snapshot TTL")
    max_live_sessions: int = Field(default=100, ge=1, description="Sessions kept in process memory; older ones are restored from the store")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @field_validator('ai_provider')
    @classmethod
    def validate_ai_provider(cls, v: str) -> str:
        if v.lower() not in SUPPORTED_PROVIDERS:
            raise ValueError(f"AI_PROVIDER must be one of {list(SUPPORTED_PROVIDERS)}, got '{v}'")
        return v.lower()

    @field_validator('language')
    @classmethod
    def validate_language(cls, v: str) -> str:
        if v not in SUPPORTED_LANGUAGES:
            raise ValueError(f"LANGUAGE must be one of {list(SUPPORTED_LANGUAGES)}, got '{v}'")
        return v

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def allowed_origins_list(self) -> List[str]:
        """Get allowed origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def provider_order(self) -> List[str]:
        """Providers to try, primary first."""
        if not self.ai_fallback_enabled:
            return [self.ai_provider]
        return [self.ai_provider] + [p for p in SUPPORTED_PROVIDERS if p != self.ai_provider]

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            max_file_size_mb=int(os.getenv("MAX_FILE_SIZE_MB", "50")),
            max_file_rows=int(os.getenv("MAX_FILE_ROWS", "1000000")),
            max_file_columns=int(os.getenv("MAX_FILE_COLUMNS", "1000")),
            max_cell_size_bytes=int(os.getenv("MAX_CELL_SIZE_BYTES", "100000")),
            rate_limit_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "10")),
            request_timeout_seconds=int(os.getenv("REQUEST_TIMEOUT_SECONDS", "300")),
            allowed_origins=os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            ai_provider=os.getenv("AI_PROVIDER", "gemini"),
            ai_fallback_enabled=os.getenv("AI_FALLBACK_ENABLED", "true").lower() in ("1", "true", "yes"),
            groq_model=os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            ai_max_retries=int(os.getenv("AI_MAX_RETRIES", "2")),
            ai_retry_delay_seconds=float(os.getenv("AI_RETRY_DELAY_SECONDS", "1.0")),
            ai_request_timeout_seconds=float(os.getenv("AI_REQUEST_TIMEOUT_SECONDS", "60")),
            language=os.getenv("LANGUAGE", "English"),
            chat_max_attempts=int(os.getenv("CHAT_MAX_ATTEMPTS", "3")),
            prep_max_attempts=int(os.getenv("PREP_MAX_ATTEMPTS", "2")),
            filter_max_attempts=int(os.getenv("FILTER_MAX_ATTEMPTS", "2")),
            candidate_plan_count=int(os.getenv("CANDIDATE_PLAN_COUNT", "12")),
            fallback_plan_count=int(os.getenv("FALLBACK_PLAN_COUNT", "8")),
            min_plans=int(os.getenv("MIN_PLANS", "4")),
            max_plans=int(os.getenv("MAX_PLANS", "12")),
            memory_top_k=int(os.getenv("MEMORY_TOP_K", "3")),
            summary_cache_ttl_seconds=int(os.getenv("SUMMARY_CACHE_TTL_SECONDS", "1800")),
            summary_concurrency=int(os.getenv("SUMMARY_CONCURRENCY", "3")),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", "86400")),
            max_live_sessions=int(os.getenv("MAX_LIVE_SESSIONS", "100")),
        )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info("Configuration loaded and validated successfully")
    return _settings


def reload_settings() -> Settings:
    """Reload settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()

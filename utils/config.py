"""Configuration management for the Quick Study API."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=(".env.local", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Provider keys (clients also read them from the environment directly)
    openai_api_key: str = ""
    groq_api_key: str = ""
    anthropic_api_key: str = ""

    # Model selection, keys into utils.model_config.MODEL_CONFIGS
    default_model: str = "gpt-4o"
    optimizer_model: str = "gpt-3.5-turbo"

    # Upstream call policy
    upstream_retries: int = 1
    retry_backoff_seconds: float = 2.0
    default_timeout_seconds: float = 60.0
    notes_timeout_seconds: float = 120.0
    summary_timeout_seconds: float = 90.0
    flashcards_timeout_seconds: float = 90.0
    quiz_timeout_seconds: float = 90.0
    timeline_timeout_seconds: float = 60.0
    knowledge_map_timeout_seconds: float = 90.0
    grading_timeout_seconds: float = 60.0
    optimizer_timeout_seconds: float = 30.0
    stream_chunk_timeout_seconds: float = 30.0
    job_timeout_seconds: float = 180.0

    # Text selection / optimization
    max_source_chars: int = 15000
    max_tokens_per_chunk: int = 2000
    chunk_overlap_chars: int = 200
    min_chunk_tokens: int = 80
    min_alpha_ratio: float = 0.5
    raw_strategy_max_chars: int = 15000
    full_strategy_max_chars: int = 100000
    sampling_ratio: float = 0.3
    max_concurrent_calls: int = 4
    max_key_topics: int = 20

    # Uploads
    max_upload_bytes: int = 50 * 1024 * 1024
    min_pasted_chars: int = 10
    max_pasted_chars: int = 100000

    # Chat history cache; disabled when unset
    redis_url: Optional[str] = None
    chat_history_ttl_seconds: int = 86400
    max_cached_messages: int = 20

    def timeout_for(self, kind: str) -> float:
        """Per-kind provider timeout, falling back to the default."""
        attr = f"{kind.replace('-', '_')}_timeout_seconds"
        return float(getattr(self, attr, self.default_timeout_seconds))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

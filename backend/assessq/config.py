"""Application configuration using pydantic-settings."""
from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    gemini_api_key: str = ""

    # Database
    database_url: str = ""  # Defaults to data/assessq.db when empty

    # Scorer
    gemini_model: str = "gemini-1.5-flash"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    scorer_timeout_seconds: float = 120.0
    audio_fetch_timeout_seconds: float = 60.0

    # Inner (per-call) retry around the scorer
    scorer_max_retries: int = 5
    scorer_base_delay_seconds: float = 1.0
    scorer_max_delay_seconds: float = 20.0
    scorer_backoff_multiplier: float = 1.5
    scorer_jitter: float = 0.2  # Up to 20% of the delay

    # Queue-level retry
    max_retries: int = 5
    retry_base_delay_minutes: float = 1.0
    retry_max_delay_minutes: float = 60.0

    # Dispatcher
    dispatcher_poll_interval_seconds: float = 10.0
    max_concurrent_assessments: int = 2  # Sized for upstream rate limits

    # Health monitor
    monitor_interval_seconds: int = 30
    stuck_item_minutes: int = 10
    queue_length_warning: int = 50
    queue_length_critical: int = 100
    error_rate_threshold: float = 0.1
    alert_dedup_minutes: int = 5
    max_alerts: int = 100
    alert_retention_hours: int = 24
    db_slow_response_ms: int = 5000

    # Artifact storage (Supabase storage REST API)
    storage_url: str = ""
    storage_service_key: str = ""
    storage_bucket: str = "voice-assessments"

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()

DATA_DIR = Path(__file__).parent.parent.parent / "data"

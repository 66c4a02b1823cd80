"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./claimflow.db"

    # Analyzer (OpenAI-compatible chat completions endpoint)
    ANALYZER_API_KEY: str = ""
    ANALYZER_BASE_URL: str = "https://api.poe.com/v1"
    ANALYZER_MODEL: str = "Web-Search"
    ANALYZER_MODEL_VERSION: str = "poe-web-search"
    ANALYZER_TIMEOUT: float = 120.0
    ANALYZER_HTTP_ATTEMPTS: int = 2

    # Shown on every unedited AI verdict
    AI_DISCLAIMER: str = (
        "This is an AI-generated response. The organization is not responsible "
        "for any implications. Please verify with fact-checkers."
    )

    # Job queue
    JOB_MAX_ATTEMPTS: int = 3
    JOB_BACKOFF_DELAY: float = 5.0  # seconds, base for exponential backoff
    JOB_TIMEOUT: float = 300.0  # seconds
    JOB_STALL_INTERVAL: float = 30.0  # seconds without heartbeat
    JOB_MAX_STALLED_COUNT: int = 1
    JOB_HEARTBEAT_INTERVAL: float = 5.0
    JOB_RETENTION_DAYS: int = 7

    # Worker
    WORKER_POLL_INTERVAL: float = 1.0
    WORKER_CONCURRENCY: int = 2

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()

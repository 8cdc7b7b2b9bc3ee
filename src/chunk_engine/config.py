"""
Configuration settings for the Chunk Engine.

All settings are loaded from environment variables with sensible defaults.
Use .env file for local development.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Application ===
    APP_NAME: str = "Chunk Engine"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # === Chunking ===
    CHUNK_SIZE: int = 10
    MAX_OUTER_ATTEMPTS: int = 10  # Consecutive failed chunks before the job fails
    CHUNK_CONCURRENCY: int = 1  # >1 processes chunks on a worker pool
    ITEM_CONCURRENCY: int = 1  # >1 processes items of one chunk on a worker pool

    # === Retry ===
    RETRY_MODE: str = "stateful"  # "stateful" or "stateless"
    MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_INITIAL: float = 0.0  # seconds, stateless mode only
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_BACKOFF_MAX: float = 30.0
    ITEM_PROPAGATION: str | None = None  # "required" or "nested"; unset picks per retry mode
    RECOVER_ON_FINAL_FAILURE: bool = False  # Requires nested item propagation

    # === Retry Context Store ===
    RETRY_CONTEXT_BACKEND: str = "memory"  # "memory" or "redis"
    RETRY_CONTEXT_CAPACITY: int = 4096
    RETRY_CONTEXT_LOCK_TIMEOUT: float = 30.0  # seconds to wait for a busy identity
    RETRY_CONTEXT_LOCK_LEASE: float = 60.0  # Redis only, lock auto-expiry
    RETRY_CONTEXT_TTL_SECONDS: int = 86400  # Redis only
    RETRY_CONTEXT_KEY_PREFIX: str = "chunk_engine:retry"

    # === Redis ===
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # === Database ===
    DATABASE_URL: str = "sqlite:///chunk_engine.db"

    # === Monitoring ===
    PROMETHEUS_ENABLED: bool = True
    METRICS_PORT: int = 9090


# Global settings instance
settings = Settings()

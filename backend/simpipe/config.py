"""Application configuration."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./simulations.db"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Result cache backend: memory | database | redis
    CACHE_BACKEND: str = "database"
    RESULT_CACHE_TTL_SECONDS: int = 24 * 60 * 60

    # Reference data caches
    BENCHMARK_CACHE_TTL_SECONDS: int = 24 * 60 * 60
    COMPETITOR_CACHE_TTL_SECONDS: int = 12 * 60 * 60
    SCORING_TABLES_PATH: Optional[str] = None  # defaults to the bundled table

    # External dataset service (campaign + market data)
    DATASET_SERVICE_URL: Optional[str] = None
    DATASET_SERVICE_TIMEOUT_SECONDS: float = 30.0

    # Forecasting model
    MODEL_TIMEOUT_SECONDS: float = 120.0

    # Workers
    ENABLE_WORKERS: bool = True
    WORKER_COUNT: int = 5
    POLL_INTERVAL_SECONDS: float = 2.0

    # Retry policy (driver-side backoff)
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 5.0
    RETRY_MAX_DELAY_SECONDS: float = 300.0

    # A processing job older than this multiple of its estimate is stuck
    JOB_TIMEOUT_MULTIPLIER: float = 3.0

    # Scheduled maintenance
    ENABLE_SCHEDULER: bool = True
    RETENTION_SCHEDULE: str = "0 2 * * *"  # daily at 02:00 UTC
    JOB_RETENTION_DAYS: int = 30  # How long to keep terminal jobs

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()

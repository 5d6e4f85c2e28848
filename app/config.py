"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: Optional[str] = None

    # Environment
    environment: str = "development"

    # Voice Agent Platform (Retell AI)
    retell_api_key: Optional[str] = None
    retell_base_url: str = "https://api.retellai.com"

    # Idempotency Coordinator
    idempotency_window_minutes: int = 5  # Dedup window for identical requests
    idempotency_ttl_hours: int = 24  # Records become eligible for cleanup after this
    idempotency_poll_interval_seconds: float = 1.0  # Wait-for-completion poll interval
    idempotency_max_wait_seconds: float = 30.0  # Wait-for-completion bound
    idempotency_cleanup_interval_minutes: int = 60  # Scheduled cleanup cadence

    # Resilient Call Executor
    retry_max_retries: int = 3  # Total attempts, not extra attempts
    retry_delay_ms: int = 1000  # Base delay, doubled per attempt
    timeout_api_ms: int = 10000  # Per-attempt bound for platform calls

    # Sentry Error Tracking
    sentry_dsn: Optional[str] = None  # Sentry project DSN
    sentry_environment: Optional[str] = None  # Defaults to environment setting

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()

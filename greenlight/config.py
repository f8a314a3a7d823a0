"""Application configuration using Pydantic Settings."""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str
    DB_CONNECT_TIMEOUT: int = 10
    DB_STATEMENT_TIMEOUT_MS: int = 15000

    # Scheduler auth (at least one must be set)
    CRON_SECRET: str = ""
    NIGHT_SHIFT_SECRET: str = ""

    # Worker
    WORKER_ID: str = "worker-local"
    WORKER_POLL_INTERVAL: int = 5
    WORKER_CLAIM_BATCH: int = 5
    WORKER_CONCURRENCY: int = 3
    JOB_TIMEOUT_SECONDS: int = 600
    MAX_JOB_ATTEMPTS: int = 3
    STALE_JOB_MINUTES: int = 15
    RUN_EMBEDDED_WORKER: bool = False

    # Storage retries
    STORAGE_RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 0.25
    RETRY_MAX_DELAY: float = 4.0

    # Night shift
    NIGHTSHIFT_BATCH_LIMIT: int = 50
    NIGHTSHIFT_MAX_ACTIONS: int = 3
    NIGHTSHIFT_FAILURE_WINDOW_HOURS: int = 24
    NIGHTSHIFT_AUTO_APPROVE_LOW_RISK: bool = False

    # Collaborator services
    GENERATOR_BASE_URL: str = ""
    EXECUTOR_BASE_URL: str = ""
    COLLABORATOR_API_KEY: str = ""
    HTTP_TIMEOUT_SECONDS: float = 30.0

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    @model_validator(mode="after")
    def check_scheduler_secret(self) -> "Settings":
        if not self.CRON_SECRET.strip() and not self.NIGHT_SHIFT_SECRET.strip():
            raise ValueError("CRON_SECRET or NIGHT_SHIFT_SECRET must be configured")
        if not 1 <= self.NIGHTSHIFT_MAX_ACTIONS <= 3:
            raise ValueError("NIGHTSHIFT_MAX_ACTIONS must be between 1 and 3")
        return self


# Global settings instance
settings = Settings()

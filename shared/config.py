"""Application configuration with startup validation.

All config is validated at import time via pydantic-settings.
Invalid values cause an immediate, clear error.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "JOURNAL_", "env_file": ".env"}

    # Database
    database_url: str = "sqlite+aiosqlite:///./journal.db"
    auto_create_schema: bool = True

    # API
    api_version: str = "v1"

    # Intraday samples
    sample_retention_days: int = 75

    # Delimited exports
    weekly_calories_threshold: int = 5000

    # Snapshot backups
    snapshot_activity_app_hints: list[str] = ["garmin"]
    snapshot_body_app_hints: list[str] = ["fitdays", "sacoma"]
    snapshot_max_unwrap_depth: int = 3

    # Storage retry
    storage_retry_attempts: int = 3
    storage_retry_max_wait_seconds: int = 2

    @model_validator(mode="after")
    def validate_windows(self) -> "Settings":
        """Fail fast at startup if retention or retry windows are nonsensical."""
        problems = []
        if self.sample_retention_days <= 0:
            problems.append("JOURNAL_SAMPLE_RETENTION_DAYS must be positive")
        if self.storage_retry_attempts < 1:
            problems.append("JOURNAL_STORAGE_RETRY_ATTEMPTS must be at least 1")
        if self.snapshot_max_unwrap_depth < 1:
            problems.append("JOURNAL_SNAPSHOT_MAX_UNWRAP_DEPTH must be at least 1")
        if problems:
            raise ValueError("; ".join(problems))
        return self


settings = Settings()

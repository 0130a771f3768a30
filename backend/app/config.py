"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_env: str = "development"
    app_debug: bool = False
    log_level: str = "INFO"
    frontend_url: str = "http://localhost:3000"

    # Database
    database_url: str = ""  # Required - no insecure default
    database_pool_size: int = 10

    # GitHub
    github_api_base: str = "https://api.github.com"
    github_webhook_secret: str = ""

    # Gemini
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash-lite"

    # Background execution
    task_backend: Literal["inprocess", "celery"] = "inprocess"
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # Scanning
    scan_batch_size: int = 10
    scan_max_files: int = 1000
    scan_max_file_size: int = 1024 * 1024  # 1 MiB
    rate_limit_backoff_seconds: float = 5.0
    stale_job_timeout_minutes: int = 30

    # PR monitoring
    pr_monitor_enabled: bool = True
    pr_monitor_interval_seconds: float = 60.0
    pr_monitor_page_size: int = 10

    # JWT
    jwt_secret: str = ""  # Required - no insecure default
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    @field_validator("jwt_secret", mode="after")
    @classmethod
    def validate_secrets(cls, v: str, info) -> str:
        """Ensure secrets are set and not using insecure defaults."""
        insecure_values = {"", "change-me-in-production", "secret", "password"}
        if v.lower() in insecure_values:
            raise ValueError(
                f"{info.field_name} must be set to a secure value via environment variable. "
                f"Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )
        if len(v) < 32:
            raise ValueError(f"{info.field_name} must be at least 32 characters long")
        return v

    @field_validator("database_url", mode="after")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL is set."""
        if not v:
            raise ValueError("database_url must be set via DATABASE_URL environment variable")
        return v

    @field_validator("scan_batch_size", "scan_max_files", "pr_monitor_page_size", mode="after")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

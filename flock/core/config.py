from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # App
    app_name: str = "Flock Admin"
    debug: bool = False

    # CORS
    cors_origins: str = "http://localhost:5173"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # Security (tokens are issued by the login service; we only verify them)
    secret_key: str = "dev-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Record store
    store_backend: str = "memory"  # memory | sheets
    google_sheet_id: Optional[str] = None
    google_sheets_credentials: Optional[str] = None  # service account JSON
    store_timeout_seconds: float = 10.0
    store_max_retries: int = 3
    store_retry_delay_seconds: float = 0.5

    # Celery
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: Optional[str] = None

    @property
    def celery_backend(self) -> str:
        return self.celery_result_backend or self.celery_broker_url

    # Tagging
    tag_workers: int = 4
    tag_recompute_inline: bool = False  # run recomputes in-process instead of Celery

    # Seed file (roles, tags, tag rules)
    seed_file: str = "seed.yaml"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FLOCK_",
        case_sensitive=False,
        extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()

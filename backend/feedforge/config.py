from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    env: str = "dev"
    database_url: str = "sqlite:///./data/feedforge.db"
    log_level: str = "INFO"
    base_url: str = "http://localhost:8000"

    # Generation
    max_concurrent_runs: int = 50
    pipeline_deadline_s: int = 600
    artifact_dir: str = "./data/artifacts"
    artifact_retention: int = 5

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_tick_seconds: int = 60

    # Webhooks
    webhook_default_timeout_s: int = 30
    webhook_default_retries: int = 3
    webhook_backoff_base_s: float = 1.0
    webhook_poll_seconds: int = 2
    webhook_max_concurrency: int = 10
    webhook_batch_size: int = 100

    @model_validator(mode="after")
    def _validate(self) -> "Settings":
        if self.env == "prod" and self.database_url.startswith("sqlite"):
            raise ValueError(
                "Production requires explicit DATABASE_URL (not SQLite)"
            )
        for name in (
            "max_concurrent_runs",
            "pipeline_deadline_s",
            "artifact_retention",
            "scheduler_tick_seconds",
            "webhook_default_timeout_s",
            "webhook_default_retries",
            "webhook_poll_seconds",
            "webhook_max_concurrency",
            "webhook_batch_size",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be positive")
        if self.webhook_backoff_base_s < 0:
            raise ValueError("WEBHOOK_BACKOFF_BASE_S must not be negative")
        return self

    model_config = SettingsConfigDict(env_file=".env")


@lru_cache
def get_settings() -> Settings:
    return Settings()

"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (dispatcher wake-up + worker heartbeat, best-effort)
    redis_url: str = "redis://localhost:6379/0"

    # Sentry
    sentry_dsn: str = ""

    # Dispatcher
    dispatcher_enabled: bool = False  # In-process loop; otherwise rely on POST /process-events
    dispatcher_interval_seconds: int = 60
    dispatcher_batch_size: int = 10
    retry_backoff_seconds: float = 1.0  # delay = base * 2^retry_count

    # Remote event handlers
    remote_handler_base_url: str = ""  # Prefix for handler_function values that are not full URLs
    remote_handler_auth_token: str = ""  # Sent as Bearer token to remote handlers

    # Webhooks
    stripe_signature_tolerance_seconds: int = 0  # 0 disables the timestamp freshness check

    # Internal endpoints (/process-events, /jobs). Empty = unauthenticated.
    service_token: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "linkboard-api"
    environment: str = "dev"
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    admin_password: str | None = None
    admin_reader_password: str | None = None
    verified_user_password: str | None = None
    scan_engine_url: str | None = None
    scan_callback_base_url: str | None = None
    scan_callback_key: str | None = None
    scan_dispatch_timeout_seconds: float = 10.0
    scan_dispatch_max_attempts: int = 2
    scan_dispatch_retry_base_seconds: float = 1.0
    metadata_fetch_enabled: bool = False
    metadata_fetch_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "linkboard-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="LB_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./loyalty.db"
    database_echo: bool = False

    # Staff API security (empty disables the guard)
    staff_api_key: str = ""

    # Card mutations
    # optimistic-lock: bounded retry on concurrent card updates
    card_update_max_attempts: int = Field(default=3, ge=1)
    qr_code_prefix: str = "LC"

    # Card maintenance worker (expiry sweep + outbox redelivery)
    card_maintenance_worker_enabled: bool = False
    card_maintenance_interval_seconds: int = 15 * 60
    card_expiry_batch_size: int = 500
    outbox_dispatch_batch_size: int = 100
    outbox_max_attempts: int = 10

    # Tracing
    otel_exporter_endpoint: str | None = None
    otel_exporter_headers: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    http_host: str = "0.0.0.0"
    http_port: int = 3000
    database_url: str = "sqlite+aiosqlite:///./loyalty_relay.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "loyalty-relay"
    celery_drain_interval_seconds: float = 30.0

    # POS backend
    pos_api_base_url: str = "https://api.xenial.com/v1"
    pos_api_key: str = ""
    pos_store_id: str = ""
    pos_terminal_id: str = ""
    pos_timeout_seconds: float = 30.0

    # Loyalty backend (Salesforce Loyalty Management)
    salesforce_login_url: str = "https://login.salesforce.com"
    salesforce_username: str = ""
    salesforce_password: str = ""
    salesforce_security_token: str = ""
    salesforce_client_id: str = ""
    salesforce_client_secret: str = ""
    salesforce_api_version: str = "59.0"
    salesforce_timeout_seconds: float = 30.0
    loyalty_program_name: str = "Rewards Program"
    currency_iso_code: str = "USD"

    # Points rules
    points_per_dollar: int = 10
    minimum_transaction_for_points: Decimal = Decimal("1.00")

    # Relay queue
    relay_worker_enabled: bool = True
    relay_worker_concurrency: int = Field(default=2, ge=1)
    relay_poll_interval_seconds: float = 1.0
    relay_shutdown_timeout_seconds: float = 30.0
    relay_default_job_timeout_seconds: int = 120
    relay_stalled_grace_seconds: int = 30
    relay_remove_on_complete: bool = True
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = 1.0
    retry_backoff_multiplier: float = 2.0

    # Historical backfill
    historical_sync_timeout_seconds: int = 3600
    historical_sync_item_delay_seconds: float = 0.1

    # Internal API security
    admin_api_key: str = ""

    # Observability
    log_level: str = "INFO"
    log_json: bool = True
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None

    @property
    def salesforce_configured(self) -> bool:
        return bool(self.salesforce_username and self.salesforce_client_id)


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()

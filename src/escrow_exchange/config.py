"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup - if a setting is malformed, the app fails fast with a
clear error message.

Usage:
    from escrow_exchange.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Owner of the platform fee account. Seeded as an organization row.
PLATFORM_ORG_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


class Settings(BaseSettings):
    """Central configuration for the escrow exchange."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://escrow:escrow_dev"
        "@localhost:5432/escrow_exchange"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False
    # A blocked FOR UPDATE gives up after this long and surfaces as a transient error
    db_lock_timeout_ms: int = 5000

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Escrow Defaults ---
    default_currency: str = "USD"
    default_expiry_days: int = 7
    default_platform_fee_percent: Decimal = Decimal("15.00")
    platform_org_id: uuid.UUID = PLATFORM_ORG_ID

    # --- Caller-side retry of transient store failures ---
    store_retry_attempts: int = 3
    store_retry_min_wait_seconds: float = 0.05
    store_retry_max_wait_seconds: float = 1.0

    # --- MCP ---
    mcp_transport: str = "streamable-http"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith("postgresql")

    @property
    def sync_database_url(self) -> str:
        """Synchronous database URL for Alembic migrations."""
        return self.database_url.replace("+asyncpg", "+psycopg2")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()

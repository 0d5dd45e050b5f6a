"""
Configuration and settings for the storage service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_ORIGINS = (
    "https://app.mutinywallet.com",
    "capacitor://localhost",
    "https://signet-app.mutinywallet.com",
    "http://localhost:3420",
    "http://localhost",
    "https://localhost",
)
DEFAULT_ALLOWED_SUBDOMAIN = ".mutiny-web.pages.dev"
DEFAULT_ALLOWED_LOCALHOST = "http://127.0.0.1:"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    # Database (Postgres expected, SQLite works for single-node setups)
    database_url: Optional[str] = Field(default=None)
    db_pool_size: int = Field(default=10, ge=1)
    db_max_overflow: int = Field(default=10, ge=0)

    # HTTP server
    bind: str = Field(
        default="0.0.0.0", validation_alias=AliasChoices("bind", "VSS_BIND")
    )
    port: int = Field(
        default=8080, validation_alias=AliasChoices("port", "VSS_PORT")
    )
    log_level: str = Field(
        default="INFO", validation_alias=AliasChoices("log_level", "VSS_LOG_LEVEL")
    )

    # Auth: hex-encoded secp256k1 public key. Unset disables auth entirely.
    auth_key: Optional[str] = Field(default=None)
    jwt_leeway_seconds: int = Field(default=0, ge=0)

    # Self-hosted deployments accept every origin.
    self_hosted: bool = Field(default=False)

    # CORS allow-list
    allowed_origins: tuple[str, ...] = Field(default=DEFAULT_ALLOWED_ORIGINS)
    allowed_subdomain: str = Field(default=DEFAULT_ALLOWED_SUBDOMAIN)
    allowed_localhost: str = Field(default=DEFAULT_ALLOWED_LOCALHOST)

    # Reject writes whose version does not advance the stored one.
    enforce_version_order: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "enforce_version_order", "VSS_ENFORCE_VERSION_ORDER"
        ),
    )

    # Development toggles
    use_in_memory_backend: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "use_in_memory_backend", "VSS_USE_IN_MEMORY_BACKEND"
        ),
    )

    # Legacy backfill
    migration_url: Optional[str] = Field(default=None)
    migration_batch_size: int = Field(default=100, ge=1)
    migration_start_index: int = Field(default=0, ge=0)
    admin_key: Optional[str] = Field(default=None)

    @property
    def auth_enabled(self) -> bool:
        return bool(self.auth_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()

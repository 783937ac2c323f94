# retention_sync/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Fail fast with clear error messages if required config is missing.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        ...,
        description="PostgreSQL connection URL",
    )

    # Marketing Cloud credentials
    MCE_AUTH_BASE_URI: str = Field(
        ...,
        description="Auth base URI, e.g. https://<subdomain>.auth.marketingcloudapis.com",
    )
    MCE_REST_BASE_URI: str = Field(
        ...,
        description="REST base URI, e.g. https://<subdomain>.rest.marketingcloudapis.com",
    )
    MCE_CLIENT_ID: str = Field(..., description="Installed package client id")
    MCE_CLIENT_SECRET: str = Field(..., description="Installed package client secret")
    MCE_SCOPE: str = Field(..., description="Space separated OAuth scopes")
    MCE_ACCOUNT_ID: str | None = Field(
        default=None,
        description="Business unit MID (optional)",
    )
    MCE_FOLDER_TYPES: str = Field(
        default="synchronizeddataextension,dataextension,shared_data,recyclebin",
        description="Comma-separated folder content types fetched as the root set",
    )

    # HTTP transport
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, description="Per-request timeout")
    HTTP_MAX_ATTEMPTS: int = Field(default=5, ge=1, description="Attempts for transient failures")
    HTTP_MAX_ELAPSED_SECONDS: float = Field(
        default=300.0,
        description="Total time budget for retrying one request",
    )

    # Token cache
    TOKEN_DEFAULT_TTL_SECONDS: int = Field(
        default=1200,
        description="Token lifetime used when the auth server omits expires_in",
    )
    TOKEN_REFRESH_MARGIN_SECONDS: int = Field(
        default=30,
        description="Refresh tokens this many seconds before they expire",
    )

    # Concurrency
    TOP_LEVEL_CONCURRENCY: int = Field(default=10, ge=1)
    SUBFOLDER_CONCURRENCY: int = Field(default=5, ge=1)
    DATA_EXTENSION_CONCURRENCY: int = Field(default=10, ge=1)
    DATA_EXTENSION_PAGE_SIZE: int = Field(default=96, ge=1)
    RESOLVER_MAX_PASSES: int = Field(default=5, ge=1)

    # Retention configuration pushed to every data extension
    RETENTION_PERIOD_LENGTH: int = Field(default=1, ge=1)
    RETENTION_PERIOD_UNIT: str = Field(
        default="months",
        description="days, weeks, months or years",
    )
    RETENTION_ROW_BASED: bool = Field(default=True)
    RETENTION_DELETE_AT_END: bool = Field(default=False)
    RETENTION_RESET_ON_IMPORT: bool = Field(default=False)
    RETENTION_MAX_RETRIES: int = Field(
        default=5,
        description="Retry ceiling for the reconciliation query",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=True, description="Single-line JSON logs; False for local dev")

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    @field_validator("MCE_AUTH_BASE_URI", "MCE_REST_BASE_URI")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("RETENTION_PERIOD_UNIT")
    @classmethod
    def validate_unit(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"days", "weeks", "months", "years"}:
            raise ValueError(f"RETENTION_PERIOD_UNIT must be days, weeks, months or years (got '{v}')")
        return v

    @property
    def folder_types(self) -> list[str]:
        return [t.strip() for t in self.MCE_FOLDER_TYPES.split(",") if t.strip()]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()

"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__", so CA__URL maps to ca.url,
STORAGE__DSN maps to storage.dsn, etc.

Settings are read at startup and again only when the service is told to
reload (POST /config/reload); the issuance defaults derived from them are
passed explicitly into each operation.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cert_broker.domain.models import IssuanceDefaults

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class CaSettings(BaseModel):
    """
    Certificate authority REST API.

    `url` is the scheme + host, `api_path` the API root below it
    (e.g. "KeyfactorAPI"). Requests authenticate with HTTP basic auth.
    """

    url: str = Field(description="Certificate authority base URL")
    api_path: str = Field(default="KeyfactorAPI", description="API root path")
    username: str = Field(description="API username")
    password: SecretStr = Field(description="API password")
    default_ca: str = Field(default="", description="CA used when a request names none")
    default_template: str = Field(
        default="", description="Certificate template used when a request names none"
    )
    timeout_seconds: float = Field(default=60, gt=0)
    keepalive_expiry_seconds: float = Field(default=30, ge=0)
    max_connections: int = Field(default=20, ge=1)

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def issuance_defaults(self) -> IssuanceDefaults:
        return IssuanceDefaults(ca=self.default_ca, template=self.default_template)


class StorageSettings(BaseModel):
    """
    Record storage.

    With `dsn` set, records live in PostgreSQL (table kv_store); without it
    they are kept in process memory and lost on restart.
    """

    dsn: SecretStr | None = Field(default=None, description="PostgreSQL connection string")
    connect_timeout_seconds: int = Field(default=10, ge=1)
    statement_timeout_seconds: int = Field(default=30, ge=1)


class LeaseSettings(BaseModel):
    """
    Lease-expiry sweep schedule (standard 5-field cron expression).

    Examples:
      "*/15 * * * *" — every 15 minutes (default)
      "0 2 * * *"    — daily at 02:00
    """

    enabled: bool = Field(default=True)
    cron: str = Field(default="*/15 * * * *")

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        """Reject expressions that don't have exactly 5 space-separated fields."""
        fields = value.strip().split()
        if len(fields) != 5:
            raise ValueError(
                f"Cron expression must have exactly 5 fields "
                f"(minute hour dom month dow), got {len(fields)}: {value!r}"
            )
        return value.strip()


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    ca: CaSettings
    storage: StorageSettings = Field(default_factory=lambda: StorageSettings())
    leases: LeaseSettings = Field(default_factory=lambda: LeaseSettings())

    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)

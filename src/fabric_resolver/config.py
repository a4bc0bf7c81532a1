"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup
  - Keep secrets (database passwords) out of source control

The network topology itself lives in a separate YAML file
(NETWORK_CONFIG_PATH); these settings only say where to find it, which
organization the process acts for, and where credentials are stored.

Architecture: Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated by AppSettings via env_nested_delimiter="__", so the env
var STORE__BACKEND maps to store.backend, STORE__DSN maps to store.dsn, etc.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class StoreSettings(BaseModel):
    """
    Credential store configuration.

    `file` (default) reads certificates and keys from the directories named
    in the network config's `client.credentialStore` section. `postgres`
    reads them from one table; it needs either STORE__DSN or all of the
    individual connection components. STORE__DSN takes priority when both
    are provided.
    """

    backend: Literal["file", "postgres"] = Field(default="file", description="Credential store backend")
    table: str = Field(default="credential_store", description="PostgreSQL table holding store entries")

    # Option 1: full connection string (takes priority)
    dsn: SecretStr | None = Field(
        default=None,
        description="Full PostgreSQL connection string (overrides individual fields)",
    )

    # Option 2: individual components
    host: str | None = Field(default=None, description="PostgreSQL host")
    port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    name: str | None = Field(default=None, description="PostgreSQL database name")
    username: str | None = Field(default=None, description="PostgreSQL username")
    password: SecretStr | None = Field(default=None, description="PostgreSQL password")

    @model_validator(mode="after")
    def resolve_dsn(self) -> StoreSettings:
        """
        Ensure `dsn` is populated whenever the postgres backend is selected.

        Raises ValueError at startup if neither a full DSN nor all required
        components are provided.
        """
        if self.backend != "postgres" or self.dsn is not None:
            return self
        missing = [f for f, v in [
            ("STORE__HOST", self.host),
            ("STORE__NAME", self.name),
            ("STORE__USERNAME", self.username),
            ("STORE__PASSWORD", self.password),
        ] if not v]
        if missing:
            raise ValueError(
                "The postgres store needs STORE__DSN or all of: "
                + ", ".join(missing)
            )
        dsn_value = (
            f"postgresql://{self.username}:{self.password.get_secret_value()}"  # type: ignore[union-attr]
            f"@{self.host}:{self.port}/{self.name}"
        )
        object.__setattr__(self, "dsn", SecretStr(dsn_value))
        return self

    def get_dsn(self) -> str:
        """Return the active database DSN as a plain string (postgres backend only)."""
        if self.dsn is None:
            raise ValueError("No database DSN configured; STORE__BACKEND is not 'postgres'")
        return self.dsn.get_secret_value()


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first):
      1. Environment variables (Kubernetes ConfigMap)
      2. .env file
      3. Default values

    env_nested_delimiter="__" maps STORE__BACKEND → store.backend, etc.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    network_config_path: Path = Field(description="YAML network configuration file")
    organization: str | None = Field(
        default=None,
        description="Organization to act for; overrides client.organization from the network config",
    )
    store: StoreSettings = Field(default_factory=lambda: StoreSettings())

    log_level: str = Field(default="INFO")

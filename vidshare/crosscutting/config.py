"""
Name: Application Configuration (Settings)

Responsibilities:
  - Centralized, typed configuration using pydantic-settings
  - Fail fast when a required setting is missing, naming the exact key
  - Provide defaults for every non-secret setting

Collaborators:
  - lifecycle/runner.py: loads settings before anything else initializes
  - api/pipeline.py: reads stage options (rate limit, origins, dirs)
  - infrastructure/db/connector.py: reads connection target and pool sizes

Constraints:
  - Settings are frozen once loaded
  - No business logic, pure configuration

Notes:
  - Environment variables win over the env file (config/.env by default)
  - PORT that is unset, non-numeric or out of range falls back to DEFAULT_PORT
"""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError, MissingConfigurationError

DEFAULT_ENV_FILE = "config/.env"
DEFAULT_PORT = 5000

# R: Checked in this order; the first missing one is reported.
REQUIRED_SETTINGS: tuple[str, ...] = ("DATA_STORE_URI", "AUTH_SECRET")

RUN_MODES = {"development", "production"}


def _check_required(lookup) -> None:
    for key in REQUIRED_SETTINGS:
        if not str(lookup(key) or "").strip():
            raise MissingConfigurationError(key)


class Settings(BaseSettings):
    """
    Process configuration loaded from the environment.

    Attributes:
        data_store_uri: PostgreSQL connection string (required)
        auth_secret: Token-signing secret for the auth route group (required)
        run_mode: development (verbose request logging) or production
        port: Preferred listen port (None when unset or invalid)
        host: Interface to bind (default: 0.0.0.0)
        rate_limit_window_seconds: Rate limit window (default: 600)
        rate_limit_max_requests: Requests allowed per window (default: 100)
        max_body_bytes: Max JSON body size (default: 100KB)
        max_upload_bytes: Max multipart upload size (default: 50MB)
        upload_dir: Upload staging directory (created on startup)
        static_dir: Directory served at the root path
        sanitize_reject: Reject (instead of strip) operator-injection keys
        shutdown_grace_seconds: Time allowed for in-flight requests on drain
    """

    # Required (validated by validate_required, not by pydantic)
    data_store_uri: str = ""
    auth_secret: str = ""

    # Environment
    run_mode: str = "development"
    port: int | None = None
    host: str = "0.0.0.0"

    # Observability
    log_level: str = "INFO"
    log_json: bool = True

    # CORS
    allowed_origins: str = "*"
    cors_allow_credentials: bool = False

    # Security - Rate Limiting
    rate_limit_window_seconds: int = 10 * 60
    rate_limit_max_requests: int = 100
    trust_proxy: bool = False

    # Security - Hardening
    max_body_bytes: int = 100 * 1024
    sanitize_reject: bool = False

    # Uploads / static
    max_upload_bytes: int = 50 * 1024 * 1024
    upload_dir: str = "public/uploads"
    static_dir: str = "public"

    # Database - Connection Pool
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_connect_timeout_seconds: float = 10.0
    db_statement_timeout_ms: int = 30000

    # Lifecycle
    shutdown_grace_seconds: float = 30.0

    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @model_validator(mode="before")
    @classmethod
    def required_keys_before_typed_values(cls, data):
        # Runs before field validation so a missing key is reported ahead of
        # any malformed typed value.
        if isinstance(data, dict):
            _check_required(lambda key: data.get(key.lower()))
        return data

    @field_validator("run_mode", mode="before")
    @classmethod
    def run_mode_must_be_known(cls, v) -> str:
        mode = (v or "development").strip().lower()
        if mode not in RUN_MODES:
            raise ValueError(
                f"RUN_MODE must be one of {sorted(RUN_MODES)}, got {v!r}"
            )
        return mode

    @field_validator("port", mode="before")
    @classmethod
    def port_falls_back_when_invalid(cls, v) -> int | None:
        if v is None:
            return None
        text = str(v).strip()
        if not text.isdigit():
            return None
        value = int(text)
        if not 0 < value < 65536:
            return None
        return value

    @field_validator(
        "rate_limit_window_seconds",
        "rate_limit_max_requests",
        "max_body_bytes",
        "max_upload_bytes",
        "db_pool_min_size",
        "db_pool_max_size",
    )
    @classmethod
    def must_be_positive(cls, v: int, info) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be greater than 0")
        return v

    def validate_required(self) -> None:
        """Raise MissingConfigurationError for the first absent/empty required key."""
        _check_required(lambda key: getattr(self, key.lower()))

    @property
    def preferred_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORT

    def is_production(self) -> bool:
        return self.run_mode == "production"

    def is_verbose(self) -> bool:
        return self.run_mode == "development"

    def get_allowed_origins_list(self) -> list[str]:
        """Parse comma-separated origins into a list."""
        return [
            origin.strip()
            for origin in self.allowed_origins.split(",")
            if origin.strip()
        ]


def load_settings(env_file: str | None = None) -> Settings:
    """
    Read and validate process configuration.

    Raises:
        MissingConfigurationError: a required key is absent or empty
        ConfigurationError: a typed setting has an invalid value
    """
    path = env_file or os.getenv("ENV_FILE", DEFAULT_ENV_FILE)
    try:
        settings = Settings(_env_file=path)
    except ValidationError as exc:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]).upper() for err in exc.errors()
        )
        raise ConfigurationError(
            f"Invalid configuration value(s): {fields}", original_error=exc
        ) from exc

    return settings


@lru_cache
def get_settings() -> Settings:
    """Process-wide cached settings (use get_settings.cache_clear() in tests)."""
    return load_settings()

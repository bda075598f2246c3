"""Exporter configuration loaded from the environment."""

import logging
import os
from typing import List, Mapping, Optional

from pydantic import BaseModel, ValidationError, field_validator

from .fields import DEFAULT_WORKFLOW_FIELDS, parse_field_list, unknown_fields


logger = logging.getLogger(__name__)

PUBLIC_API_HOST = "api.github.com"
DEFAULT_CACHE_SIZE_BYTES = 10 * 1024 * 1024
DEFAULT_REFRESH_SECONDS = 60
DEFAULT_WORKFLOW_CACHE_REFRESH_SECONDS = 3600
MIN_WORKFLOW_CACHE_REFRESH_SECONDS = 60
DEFAULT_LOOKBACK_HOURS = 12


class ConfigurationError(Exception):
    """Raised at startup when the exporter cannot be configured."""


def _split_list(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


class ExporterConfig(BaseModel):
    github_token: str = ""
    app_id: int = 0
    app_installation_id: int = 0
    app_private_key: str = ""
    api_url: str = PUBLIC_API_HOST
    repositories: List[str] = []
    organizations: List[str] = []
    refresh_seconds: int = DEFAULT_REFRESH_SECONDS
    billing_refresh_multiplier: int = 5
    workflow_cache_refresh_seconds: int = DEFAULT_WORKFLOW_CACHE_REFRESH_SECONDS
    cache_size_bytes: int = DEFAULT_CACHE_SIZE_BYTES
    max_workflow_creation_age_hours: int = 720
    workflow_fields: List[str] = parse_field_list(DEFAULT_WORKFLOW_FIELDS)
    fetch_workflow_run_usage: bool = True
    port: int = 9999
    startup_grace_seconds: float = 10.0
    timeout_connect: float = 5.0
    timeout_read: float = 30.0
    transient_retry_attempts: int = 3
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("workflow_fields")
    @classmethod
    def _check_workflow_fields(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("workflow run label list is empty")
        unknown = unknown_fields(value)
        if unknown:
            raise ValueError(f"unknown workflow run label(s): {', '.join(unknown)}")
        return value

    @field_validator("refresh_seconds")
    @classmethod
    def _default_refresh(cls, value: int) -> int:
        return value if value > 0 else DEFAULT_REFRESH_SECONDS

    @field_validator("billing_refresh_multiplier")
    @classmethod
    def _default_multiplier(cls, value: int) -> int:
        return value if value > 0 else 5

    @field_validator("workflow_cache_refresh_seconds")
    @classmethod
    def _clamp_cache_refresh(cls, value: int) -> int:
        if value <= 0:
            value = DEFAULT_WORKFLOW_CACHE_REFRESH_SECONDS
        return max(value, MIN_WORKFLOW_CACHE_REFRESH_SECONDS)

    @field_validator("cache_size_bytes")
    @classmethod
    def _default_cache_size(cls, value: int) -> int:
        return value if value > 0 else DEFAULT_CACHE_SIZE_BYTES

    @field_validator("max_workflow_creation_age_hours")
    @classmethod
    def _default_lookback(cls, value: int) -> int:
        return value if value > 0 else DEFAULT_LOOKBACK_HOURS

    @field_validator("transient_retry_attempts")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        return max(value, 1)

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return value

    @property
    def billing_refresh_seconds(self) -> int:
        return self.refresh_seconds * self.billing_refresh_multiplier

    @property
    def uses_app_auth(self) -> bool:
        return (
            not self.github_token
            and self.app_id != 0
            and self.app_installation_id != 0
            and bool(self.app_private_key)
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ExporterConfig":
        """Read every recognized variable; raise ConfigurationError on bad input."""
        env = os.environ if environ is None else environ
        values = {
            "github_token": env.get("GITHUB_TOKEN", ""),
            "app_id": env.get("GITHUB_APP_ID", "0") or "0",
            "app_installation_id": env.get("GITHUB_APP_INSTALLATION_ID", "0") or "0",
            "app_private_key": env.get("GITHUB_APP_PRIVATE_KEY", ""),
            "api_url": env.get("GITHUB_API_URL", PUBLIC_API_HOST) or PUBLIC_API_HOST,
            "repositories": _split_list(env.get("GITHUB_REPOS", "")),
            "organizations": _split_list(env.get("GITHUB_ORGAS", "")),
            "refresh_seconds": env.get("GITHUB_REFRESH", str(DEFAULT_REFRESH_SECONDS)),
            "billing_refresh_multiplier": env.get("BILLING_REFRESH_MULTIPLIER", "5"),
            "workflow_cache_refresh_seconds": env.get(
                "WORKFLOW_CACHE_REFRESH_INTERVAL_SECONDS",
                str(DEFAULT_WORKFLOW_CACHE_REFRESH_SECONDS),
            ),
            "cache_size_bytes": env.get(
                "GITHUB_CACHE_SIZE_BYTES", str(DEFAULT_CACHE_SIZE_BYTES)
            ),
            "max_workflow_creation_age_hours": env.get(
                "FETCH_MAX_WORKFLOW_CREATION_AGE_HOURS", "720"
            ),
            "workflow_fields": parse_field_list(
                env.get("EXPORT_FIELDS_WORKFLOW_RUN", DEFAULT_WORKFLOW_FIELDS)
            ),
            "fetch_workflow_run_usage": _as_bool(
                env.get("FETCH_WORKFLOW_RUN_USAGE", "true")
            ),
            "port": env.get("PORT", "9999"),
            "startup_grace_seconds": env.get("STARTUP_GRACE_SECONDS", "10"),
            "timeout_connect": env.get("HTTP_TIMEOUT_CONNECT", "5"),
            "timeout_read": env.get("HTTP_TIMEOUT_READ", "30"),
            "transient_retry_attempts": env.get("TRANSIENT_RETRY_ATTEMPTS", "3"),
            "log_level": env.get("LOG_LEVEL", "INFO"),
            "log_format": env.get("LOG_FORMAT", "json"),
        }
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

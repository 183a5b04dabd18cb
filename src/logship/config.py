"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation.
Values may come from a YAML file; environment variables override it.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type
from urllib.parse import urlparse

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .core.buffer import OverflowPolicy
from .core.exceptions import ConfigError
from .models.record import LogLevel

DEFAULT_CONFIG_PATHS = ("logship.yaml", "config/logship.yaml")


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        for path in DEFAULT_CONFIG_PATHS:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if not os.path.exists(config_path):
        raise ConfigError(f"Config file not found: {config_path}", details={"path": config_path})

    with open(config_path, 'r') as f:
        try:
            config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}", details={"error": str(e)}) from e

    if not isinstance(config_data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return config_data


class FailurePolicy(str, Enum):
    """How failed pushes are handled."""

    DROP = "drop"
    RETRY = "retry"


class ExhaustedPolicy(str, Enum):
    """What happens to a batch once its retries are exhausted."""

    DROP = "drop"
    REQUEUE = "requeue"


class BufferSettings(BaseSettings):
    """Batching thresholds and memory ceiling."""

    max_logs: int = Field(default=4096, ge=1, description="Entries per generation before it is sealed")
    max_log_lifetime_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Maximum age of a generation's first entry before it is sealed"
    )
    capacity_limit: Optional[int] = Field(
        default=None,
        ge=1,
        description="Ceiling on live plus undelivered entries; unbounded if unset"
    )
    overflow_policy: OverflowPolicy = Field(
        default=OverflowPolicy.FLUSH,
        description="Reject new entries or seal immediately when the ceiling is hit"
    )

    @model_validator(mode="after")
    def validate_thresholds(self) -> "BufferSettings":
        """Capacity ceiling below the count threshold can never fill a batch."""
        if self.capacity_limit is not None and self.capacity_limit < self.max_logs:
            raise ValueError(
                f"capacity_limit ({self.capacity_limit}) must be >= max_logs ({self.max_logs})"
            )
        return self

    model_config = SettingsConfigDict(env_prefix="LOGSHIP_BUFFER_")


class RetrySettings(BaseSettings):
    """Delivery retry configuration."""

    failure_policy: FailurePolicy = Field(default=FailurePolicy.RETRY, description="Retry or drop failed pushes")
    max_retries: int = Field(default=6, ge=0, description="Maximum retry attempts after the first")
    backoff_base_seconds: float = Field(default=1.0, ge=0, description="First backoff interval")
    backoff_max_seconds: float = Field(default=60.0, ge=0, description="Backoff ceiling")
    on_exhausted: ExhaustedPolicy = Field(default=ExhaustedPolicy.DROP, description="Drop or requeue exhausted batches")
    max_requeues: int = Field(default=3, ge=0, description="Times one batch may be requeued")

    @model_validator(mode="after")
    def validate_backoff(self) -> "RetrySettings":
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        return self

    def backoff_for(self, attempt: int) -> float:
        """Exponential backoff before retry number `attempt` (0-based)."""
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)

    model_config = SettingsConfigDict(env_prefix="LOGSHIP_RETRY_")


class TLSSettings(BaseSettings):
    """Mutual TLS identity and trust store override."""

    client_cert_path: Optional[Path] = Field(default=None, description="PEM client certificate")
    client_key_path: Optional[Path] = Field(default=None, description="PEM client private key")
    ca_bundle_path: Optional[Path] = Field(default=None, description="CA bundle replacing the default trust store")
    verify: bool = Field(default=True, description="Verify the server certificate")

    @model_validator(mode="after")
    def validate_identity(self) -> "TLSSettings":
        if self.client_key_path is not None and self.client_cert_path is None:
            raise ValueError("client_key_path requires client_cert_path")
        return self

    @property
    def is_configured(self) -> bool:
        return (
            self.client_cert_path is not None
            or self.ca_bundle_path is not None
            or not self.verify
        )

    model_config = SettingsConfigDict(env_prefix="LOGSHIP_TLS_")


class ShipperSettings(BaseSettings):
    """Main shipper settings."""

    # Endpoint
    base_url: str = Field(description="Loki base URL, e.g. http://localhost:3100")
    push_endpoint: str = Field(default="/loki/api/v1/push", description="Loki push endpoint")
    headers: Dict[str, str] = Field(default_factory=dict, description="Static headers sent with every push")
    user_agent: str = Field(default="logship/0.1.0", description="User-Agent header")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")
    compress: bool = Field(default=False, description="Gzip request bodies")

    # Streams
    labels: Dict[str, str] = Field(description="Global labels applied to every stream")
    merge_record_labels: bool = Field(default=False, description="Promote record fields to stream labels")
    label_fields: List[str] = Field(default_factory=list, description="Record fields promoted to labels")
    min_level: LogLevel = Field(default=LogLevel.TRACE, description="Records below this level are discarded")

    # Lifecycle
    flush_timeout_seconds: float = Field(default=30.0, gt=0, description="Grace period for flush and shutdown")
    log_level: str = Field(default="INFO", description="Internal log level")

    # Component settings
    buffer: BufferSettings = Field(default_factory=BufferSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    tls: TLSSettings = Field(default_factory=TLSSettings)

    @field_validator("base_url")
    def validate_base_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v

    @field_validator("min_level", mode="before")
    def normalize_min_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("labels")
    def validate_labels(cls, v: Dict[str, str]) -> Dict[str, str]:
        if not v:
            raise ValueError("At least one label must be specified")
        for key in v:
            if not key:
                raise ValueError("Label keys must be non-empty")
        return v

    @property
    def push_url(self) -> str:
        """Full Loki push URL."""
        return f"{self.base_url.rstrip('/')}{self.push_endpoint}"

    model_config = SettingsConfigDict(env_prefix="LOGSHIP_", case_sensitive=False)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment variables override values passed in (from the config file)
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_settings(config_path: Optional[str] = None, **overrides: Any) -> ShipperSettings:
    """
    Build settings from an optional YAML file plus keyword overrides.

    Raises ConfigError instead of pydantic's ValidationError.
    """
    config_data = load_config_file(config_path)
    config_data.update(overrides)

    try:
        return ShipperSettings(**config_data)
    except ValidationError as e:
        raise ConfigError(
            "Invalid shipper configuration",
            details={"errors": [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]},
        ) from e

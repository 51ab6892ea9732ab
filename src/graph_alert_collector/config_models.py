"""
Pydantic models for YAML configuration validation.
Provides schema validation with clear error messages for collector configurations.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

ENV_PREFIX = "MICROSOFT_GRAPH_COLLECTOR_"
CREDENTIAL_FIELDS = ("tenant_id", "client_id", "client_secret")


class CredentialsConfig(BaseModel):
    """Client-credentials identity used for the token exchange."""
    tenant_id: str = Field("", description="Azure AD tenant id")
    client_id: str = Field("", description="Application (client) id")
    client_secret: str = Field("", description="Client secret", repr=False)

    @model_validator(mode='after')
    def validate_required(self):
        for name, flag in (("tenant_id", "tenant id"), ("client_id", "client id"), ("client_secret", "client secret")):
            if not getattr(self, name).strip():
                raise ValueError(f'missing {flag} param ({ENV_PREFIX}{name.upper()})')
        return self


class ScheduleConfig(BaseModel):
    """Configuration for scheduled execution."""
    enabled: bool = Field(True, description="Poll on an interval; false runs a single cycle")
    interval_seconds: int = Field(30, ge=1, le=86400, description="Time in seconds between polls")
    run_on_start: bool = Field(False, description="Run the first cycle immediately")


class HttpConfig(BaseModel):
    """HTTP timeout and rate-limit backoff."""
    timeout_s: float = Field(10, gt=0, le=300, description="Per-request timeout in seconds")
    initial_backoff_ms: int = Field(1000, ge=1, description="First wait after a rate-limit response")
    max_backoff_ms: int = Field(32000, ge=1, description="Largest wait before giving up on backoff")
    backoff_factor: int = Field(2, ge=2, le=10, description="Multiplier applied to each wait")

    @model_validator(mode='after')
    def validate_backoff(self):
        if self.max_backoff_ms < self.initial_backoff_ms:
            raise ValueError('max_backoff_ms must be >= initial_backoff_ms')
        return self


class BufferConfig(BaseModel):
    """Channel and temporary artifact settings."""
    max_messages: int = Field(5000, ge=1, description="Channel capacity")
    tmp_dir: Optional[str] = Field(None, description="Directory for temporary artifacts (default: system temp)")
    drain_timeout_s: Optional[float] = Field(None, gt=0, description="Give up waiting for the sink after this long")


class StateConfig(BaseModel):
    """Watermark persistence."""
    backend: Literal["file", "sqlite"] = "file"
    path: str = Field("state/graph-alerts.state.json", description="State file or SQLite database path")
    key: str = Field("microsoft-graph-security-alerts", description="Row key for the sqlite backend")


class FileOutputConfig(BaseModel):
    """Configuration for the file output."""
    type: Literal["file"] = "file"
    path: str = Field(..., description="Path to output JSON Lines file")
    write_mode: str = Field("append", description="Write mode: append or overwrite")

    @field_validator('write_mode')
    @classmethod
    def validate_mode(cls, v):
        if v not in ["append", "overwrite"]:
            raise ValueError('write_mode must be one of: append, overwrite')
        return v


class CollectorConfig(BaseModel):
    """Root configuration model for the collector."""
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    buffer: BufferConfig = Field(default_factory=BufferConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    output: FileOutputConfig
    initial_lookback_minutes: int = Field(60, ge=0, description="Window for the first poll when no state exists")
    verbose: bool = Field(False, description="Verbose logging")
    logging_config: str = Field("configs/logging.yaml", description="Path to a logging dictConfig YAML file")


def apply_env_overrides(raw_config: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Overlay MICROSOFT_GRAPH_COLLECTOR_* variables onto the credentials section."""
    merged = dict(raw_config)
    credentials = dict(merged.get("credentials") or {})
    for name in CREDENTIAL_FIELDS:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            credentials[name] = value
    merged["credentials"] = credentials

    if environ.get(f"{ENV_PREFIX}VERBOSE", "").lower() in ("true", "1", "yes"):
        merged["verbose"] = True
    return merged


def load_and_validate_config(config_path: str, environ: Optional[Mapping[str, str]] = None) -> CollectorConfig:
    """
    Load and validate a collector configuration from YAML file.

    Args:
        config_path: Path to the YAML configuration file
        environ: Environment to read overrides from (defaults to os.environ)

    Returns:
        Validated CollectorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If YAML is malformed or the configuration is invalid
    """
    import yaml

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(raw_config, dict):
        raise ValueError(f"Configuration in {config_path} must be a mapping")

    raw_config = apply_env_overrides(raw_config, os.environ if environ is None else environ)

    try:
        return CollectorConfig(**raw_config)
    except ValidationError as e:
        # Format validation errors nicely
        error_messages = []
        for error in e.errors():
            field_path = '.'.join(str(loc) for loc in error['loc'])
            error_messages.append(f"  {field_path}: {error['msg']}")

        raise ValueError(
            f"Configuration validation failed for {config_path}:\n" +
            '\n'.join(error_messages)
        ) from e

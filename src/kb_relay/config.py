"""Configuration loading and validation."""

from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DiscordConfig(BaseModel):
    """Discord connection configuration."""

    token: SecretStr | None = None
    command_prefix: str = "/elsa"
    typing_interval_seconds: Annotated[float, Field(gt=0.0)] = 8.0


class RateLimitConfig(BaseModel):
    """Sliding window rate limit configuration.

    A zero window or zero quota would make the limiter degenerate, so both
    are rejected here and the process refuses to start.
    """

    enabled: bool = False
    window_ms: Annotated[int, Field(ge=1)] = 60_000
    max_requests: Annotated[int, Field(ge=1)] = 30
    cleanup_interval_seconds: Annotated[float, Field(gt=0.0)] = 300.0

    # Shared backend (Redis)
    redis_enabled: bool = True
    redis_host: str = "localhost"
    redis_port: Annotated[int, Field(ge=1, le=65535)] = 6379
    redis_password: SecretStr | None = None
    key_prefix: str = "kb-relay:"
    redis_connect_timeout_seconds: Annotated[float, Field(gt=0.0)] = 2.0


class DedupConfig(BaseModel):
    """Duplicate event suppression configuration."""

    max_tracked: Annotated[int, Field(ge=1)] = 100


class FeedbackConfig(BaseModel):
    """Feedback correlation configuration."""

    ttl_ms: Annotated[int, Field(ge=1)] = 600_000
    sweep_interval_seconds: Annotated[float, Field(gt=0.0)] = 60.0


class BackendConfig(BaseModel):
    """Knowledge-base backend API configuration."""

    url: str = "http://localhost:3333"
    api_key: SecretStr | None = None
    request_timeout_seconds: Annotated[float, Field(gt=0.0)] = 30.0
    max_attempts: Annotated[int, Field(ge=1)] = 2
    retry_backoff_seconds: Annotated[float, Field(ge=0.0)] = 1.0


class HealthConfig(BaseModel):
    """Health/metrics HTTP server configuration."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: Annotated[int, Field(ge=1, le=65535)] = 3001
    metrics_enabled: bool = False
    status_log_interval_seconds: Annotated[float, Field(gt=0.0)] = 300.0


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KB_RELAY_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
    1. YAML config file (passed to the settings as init values)
    2. Environment variables (KB_RELAY_* prefix, nested with "__")
    3. Default values

    Nested sections are merged field by field, so an environment variable
    still applies to any field the YAML file leaves unset.

    Args:
        config_path: Path to YAML config file. If None, tries ./config.yaml

    Returns:
        Validated configuration object

    Raises:
        pydantic.ValidationError: If any value is out of range
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    yaml_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

    # Filter out None values from YAML (e.g., "backend:" with no values parses as None)
    yaml_config = {k: v for k, v in yaml_config.items() if v is not None}

    return Config(**yaml_config)

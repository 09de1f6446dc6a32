"""
Configuration for the Plume RPC server.

This module implements the ServerConfig Pydantic model. The configuration is
merged once when the server starts and is immutable afterwards.

Options can be given either by their Python names (``token_timeout_minutes``)
or by their wire-style camelCase names (``tokenTimeoutMinutes``).

Hosts that want file or environment driven configuration can use
load_config(), which layers:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file
3. Environment variables (PLUME_RPC_* prefix)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_PORT = 8080
DEFAULT_HOSTNAME = "127.0.0.1"
DEFAULT_MAX_REQUEST_BODY_SIZE_BYTES = 10 * 1024 * 1024
DEFAULT_TOKEN_TIMEOUT_MINUTES = 15
DEFAULT_SWEEP_INTERVAL_SECONDS = 30.0
DEFAULT_USERS_PATH = Path("data") / "users.json"
DEFAULT_ENV_PREFIX = "PLUME_RPC_"


class ServerConfig(BaseModel):
    """Server settings.

    Attributes:
        port: Listening TCP port (0 picks an ephemeral port).
        hostname: Listening interface.
        max_request_body_size_bytes: Hard cap on a buffered request body.
        min_username_length: Minimum username length after trimming.
        max_username_length: Maximum username length after trimming.
        min_password_length: Minimum password length after trimming.
        max_password_length: Maximum password length after trimming.
        token_timeout_minutes: Absolute token lifetime from issue.
        users_path: Location of the JSON user table.
        sweep_interval_seconds: Period of the expired-token sweeper.
        log_level: Log level for the ``plume_rpc`` logger.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    port: int = Field(
        default=DEFAULT_PORT,
        ge=0,
        le=65535,
        description="Listening TCP port",
    )
    hostname: str = Field(
        default=DEFAULT_HOSTNAME,
        description="Listening interface",
    )
    max_request_body_size_bytes: int = Field(
        default=DEFAULT_MAX_REQUEST_BODY_SIZE_BYTES,
        alias="maxRequestBodySizeBytes",
        gt=0,
        description="Hard cap on buffered request body",
    )
    min_username_length: int = Field(
        default=3,
        alias="minUsernameLength",
        ge=1,
        description="Minimum username length (post-trim)",
    )
    max_username_length: int = Field(
        default=32,
        alias="maxUsernameLength",
        ge=1,
        description="Maximum username length (post-trim)",
    )
    min_password_length: int = Field(
        default=3,
        alias="minPasswordLength",
        ge=1,
        description="Minimum password length (post-trim)",
    )
    max_password_length: int = Field(
        default=128,
        alias="maxPasswordLength",
        ge=1,
        description="Maximum password length (post-trim)",
    )
    token_timeout_minutes: float = Field(
        default=DEFAULT_TOKEN_TIMEOUT_MINUTES,
        alias="tokenTimeoutMinutes",
        gt=0,
        description="Absolute token TTL from issue, in minutes",
    )
    users_path: Path = Field(
        default=DEFAULT_USERS_PATH,
        alias="usersPath",
        description="User table backing file",
    )
    sweep_interval_seconds: float = Field(
        default=DEFAULT_SWEEP_INTERVAL_SECONDS,
        alias="sweepIntervalSeconds",
        gt=0,
        description="Period of the expired-token sweeper, in seconds",
    )
    log_level: str = Field(
        default="info",
        alias="logLevel",
        description="Log level: debug, info, warn, error",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower

    @model_validator(mode="after")
    def validate_length_bounds(self) -> ServerConfig:
        """Ensure each min/max length pair is ordered."""
        if self.min_username_length > self.max_username_length:
            raise ValueError("minUsernameLength must not exceed maxUsernameLength")
        if self.min_password_length > self.max_password_length:
            raise ValueError("minPasswordLength must not exceed maxPasswordLength")
        return self

    @property
    def token_timeout_seconds(self) -> float:
        """Token lifetime in seconds."""
        return self.token_timeout_minutes * 60


def _canonical_keys(values: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase aliases onto field names, leaving other keys alone."""
    by_alias = {
        info.alias: name
        for name, info in ServerConfig.model_fields.items()
        if info.alias is not None
    }
    return {by_alias.get(key, key): value for key, value in values.items()}


def merge_config(
    base: ServerConfig | None = None,
    overrides: ServerConfig | Mapping[str, Any] | None = None,
) -> ServerConfig:
    """
    Merge configuration overrides over a base configuration.

    Args:
        base: Base configuration (defaults when None).
        overrides: A complete ServerConfig, which replaces the base, or a
            mapping of option names to values.

    Returns:
        A new, validated ServerConfig.

    Raises:
        ValidationError: If the merged configuration is invalid.
    """
    base = base if base is not None else ServerConfig()
    if overrides is None:
        return base
    if isinstance(overrides, ServerConfig):
        return overrides

    merged = base.model_dump()
    merged.update(_canonical_keys(overrides))
    return ServerConfig.model_validate(merged)


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
        ValueError: If the document is not a mapping.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")
    return data


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to an int, float, bool or string.
    """
    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Example: PLUME_RPC_TOKEN_TIMEOUT_MINUTES=30 sets token_timeout_minutes.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        config_key = key[len(prefix) :].lower()
        if config_key == "users_path" or config_key == "hostname":
            result[config_key] = value
        else:
            result[config_key] = _parse_env_value(value)

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> ServerConfig:
    """
    Load configuration from a YAML file and the environment.

    Later sources override earlier ones: defaults, then the YAML file (if
    given), then PLUME_RPC_* environment variables.

    Args:
        config_path: Optional path to a YAML configuration file.
        env_prefix: Prefix for environment variables.

    Returns:
        Validated ServerConfig instance.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValidationError: If the configuration is invalid.

    Example:
        >>> config = load_config("/etc/plume-rpc/config.yml")
        >>> config.port
        8080
    """
    config_dict: dict[str, Any] = {}

    if config_path is not None:
        config_dict.update(_canonical_keys(_load_yaml_config(Path(config_path))))

    config_dict.update(_load_env_config(env_prefix))

    return merge_config(None, config_dict)

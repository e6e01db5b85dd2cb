"""Configuration management with Pydantic models and validation."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import tomli
from pydantic import BaseModel, Field, field_validator

from flagd_telemetry.errors import ConfigError

DEFAULT_SERVICE_NAME = "flagd"
DEFAULT_OTLP_METRICS_ENDPOINT = "http://localhost:4318/v1/metrics"

CONFIG_FILE_NAME = "flagd-telemetry.toml"


# Environment variable mapping
ENV_VAR_MAPPING = {
    # Service identity
    "service_name": ["FLAGD_SERVICE_NAME", "OTEL_SERVICE_NAME"],
    "service_version": ["FLAGD_SERVICE_VERSION"],

    # Metrics
    "enable_metrics": ["FLAGD_ENABLE_METRICS"],
    "exporter": ["FLAGD_METRICS_EXPORTER"],
    "endpoint": ["FLAGD_OTEL_COLLECTOR_URI", "OTEL_EXPORTER_OTLP_METRICS_ENDPOINT"],
    "export_interval_millis": ["FLAGD_METRICS_EXPORT_INTERVAL_MILLIS", "OTEL_METRIC_EXPORT_INTERVAL"],
    "fail_fast": ["FLAGD_METRICS_FAIL_FAST"],

    # Logging
    "debug": ["FLAGD_TELEMETRY_DEBUG"],
}

_TRUE_VALUES = ("true", "1", "yes")


class ServiceConfig(BaseModel):
    """Identity of the service emitting telemetry."""

    service_name: str = Field(
        default=DEFAULT_SERVICE_NAME,
        min_length=1,
        description="Service name, used as resource service.name and as the meter scope"
    )
    service_version: Optional[str] = Field(
        default=None,
        description="Service version reported on the resource"
    )


class MetricsConfig(BaseModel):
    """Metrics configuration section."""

    enable_metrics: bool = Field(
        default=True,
        description="Enable OpenTelemetry metrics emission"
    )
    exporter: Literal["otlp", "console"] = Field(
        default="otlp",
        description="Metric exporter behind the periodic reader"
    )
    endpoint: Optional[str] = Field(
        default=None,
        description=f"OTLP/HTTP metrics endpoint (defaults to {DEFAULT_OTLP_METRICS_ENDPOINT})"
    )
    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra headers sent with every OTLP export"
    )
    export_interval_millis: int = Field(
        default=5000,
        gt=0,
        description="Delay in milliseconds between periodic exports"
    )
    fail_fast: bool = Field(
        default=False,
        description="Raise when the recorder cannot be created instead of falling back to a no-op recorder"
    )

    @field_validator("endpoint")
    @classmethod
    def check_endpoint_scheme(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.startswith(("http://", "https://")):
            raise ConfigError(
                "Metrics endpoint must be an http:// or https:// URL.",
                details={"endpoint": value},
            )
        return value

    def effective_endpoint(self) -> str:
        return self.endpoint or DEFAULT_OTLP_METRICS_ENDPOINT


class LoggingConfig(BaseModel):
    """Logging configuration section."""

    debug: bool = Field(
        default=False,
        description="Enable debug logging for the telemetry package"
    )


class TelemetryConfig(BaseModel):
    """
    Complete telemetry configuration.

    This model validates and merges configuration from multiple sources:
    1. Config file (flagd-telemetry.toml)
    2. Environment variables
    3. Explicit parameters
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def find_config_file() -> Optional[str]:
    """
    Find the telemetry config file in standard locations.

    Lookup order:
    1. ./flagd-telemetry.toml (current directory)
    2. ~/.flagd/telemetry.toml (user home)

    Returns:
        Path to config file if found, None otherwise
    """
    cwd_config = Path.cwd() / CONFIG_FILE_NAME
    if cwd_config.exists():
        return str(cwd_config)

    home_config = Path.home() / ".flagd" / "telemetry.toml"
    if home_config.exists():
        return str(home_config)

    return None


def load_toml_config(path: str) -> Dict[str, Any]:
    """
    Load configuration from a TOML file.

    Args:
        path: Path to the TOML config file

    Returns:
        Dictionary with nested config structure
    """
    if not os.path.exists(path):
        return {}

    try:
        with open(path, "rb") as f:
            return tomli.load(f)
    except (OSError, tomli.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load config file: {e}", details={"path": path})


def get_env_value(config_key: str) -> Optional[str]:
    """
    Get environment variable value for a config key.

    Tries multiple environment variable names in order of preference.
    """
    for env_var in ENV_VAR_MAPPING.get(config_key, []):
        value = os.getenv(env_var)
        if value is not None:
            return value
    return None


def load_config_from_env() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    Returns:
        Nested dictionary of config values found in the environment
    """
    env_config: Dict[str, Dict[str, Any]] = {
        "service": {},
        "metrics": {},
        "logging": {},
    }

    for key in ["service_name", "service_version"]:
        value = get_env_value(key)
        if value is not None:
            env_config["service"][key] = value

    for key in ["enable_metrics", "fail_fast"]:
        value = get_env_value(key)
        if value is not None:
            env_config["metrics"][key] = value.lower() in _TRUE_VALUES

    for key in ["exporter", "endpoint"]:
        value = get_env_value(key)
        if value is not None:
            env_config["metrics"][key] = value

    value = get_env_value("export_interval_millis")
    if value is not None:
        try:
            env_config["metrics"]["export_interval_millis"] = int(value)
        except ValueError:
            raise ConfigError(f"Invalid export_interval_millis value: {value}. Must be an integer.")

    value = get_env_value("debug")
    if value is not None:
        env_config["logging"]["debug"] = value.lower() in _TRUE_VALUES

    # Remove empty sections
    return {k: v for k, v in env_config.items() if v}


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two config dictionaries.

    Args:
        base: Base configuration
        override: Override configuration (takes precedence)

    Returns:
        Merged configuration
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> TelemetryConfig:
    """
    Load and validate telemetry configuration from multiple sources.

    Priority (highest to lowest):
    1. Explicit overrides (passed as parameters)
    2. Environment variables
    3. Config file (./flagd-telemetry.toml or ~/.flagd/telemetry.toml)
    4. Defaults

    Args:
        config_file: Optional explicit path to config file
        overrides: Optional dict of explicit parameter overrides

    Returns:
        Validated TelemetryConfig instance

    Raises:
        ConfigError: If configuration is invalid
    """
    merged_config: Dict[str, Any] = {}

    # 1. Config file (lowest priority)
    path = config_file or find_config_file()
    if path:
        merged_config = merge_configs(merged_config, load_toml_config(path))

    # 2. Environment variables
    merged_config = merge_configs(merged_config, load_config_from_env())

    # 3. Explicit parameters
    if overrides:
        merged_config = merge_configs(merged_config, overrides)

    try:
        return TelemetryConfig(**merged_config)
    except Exception as e:
        raise ConfigError(f"Configuration validation failed: {e}")


def validate_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> tuple[bool, str, Optional[TelemetryConfig]]:
    """
    Validate configuration without keeping it.

    Returns:
        Tuple of (is_valid, message, config_or_none)
    """
    try:
        config = load_config(config_file=config_file, overrides=overrides)
        return True, "Configuration is valid", config
    except ConfigError as e:
        return False, f"Configuration error: {e}", None

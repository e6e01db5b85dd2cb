"""Exception types raised by flagd_telemetry."""

from __future__ import annotations

from typing import Any, Dict, Optional


class FlagdTelemetryError(Exception):
    """Base error for the telemetry package."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        rendered = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.message} ({rendered})"


class ConfigError(FlagdTelemetryError, ValueError):
    """Invalid or conflicting configuration."""


class MetricsInitError(FlagdTelemetryError):
    """The meter provider or one of the recorder instruments could not be created."""

"""Service metrics for flagd: HTTP and flag-evaluation instruments on OpenTelemetry."""

from importlib.metadata import PackageNotFoundError, version

from flagd_telemetry import metrics
from flagd_telemetry.builder import build_metric_reader, build_metrics_recorder, build_resource
from flagd_telemetry.config import TelemetryConfig, load_config
from flagd_telemetry.errors import ConfigError, FlagdTelemetryError, MetricsInitError
from flagd_telemetry.metrics import (
    MetricsRecorder,
    NoopMetricsRecorder,
    create_otel_recorder,
    get_metrics_recorder,
    set_global_recorder,
)
from flagd_telemetry.semconv import (
    KeyValue,
    exception_type,
    feature_flag_attributes,
    feature_flag_reason,
    http_attributes,
)

# Version exposure
try:
    __version__ = version("flagd-telemetry")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback version


__all__ = [
    "__version__",
    "metrics",
    "MetricsRecorder",
    "NoopMetricsRecorder",
    "create_otel_recorder",
    "get_metrics_recorder",
    "set_global_recorder",
    "build_metrics_recorder",
    "build_metric_reader",
    "build_resource",
    "TelemetryConfig",
    "load_config",
    "FlagdTelemetryError",
    "ConfigError",
    "MetricsInitError",
    "KeyValue",
    "http_attributes",
    "feature_flag_reason",
    "exception_type",
    "feature_flag_attributes",
]

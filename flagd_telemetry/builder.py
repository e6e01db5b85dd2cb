"""Wire a MetricsRecorder from configuration."""

from __future__ import annotations

import logging
from typing import Optional, Union

from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.semconv.resource import ResourceAttributes

from flagd_telemetry.config import MetricsConfig, TelemetryConfig, load_config
from flagd_telemetry.errors import ConfigError, MetricsInitError
from flagd_telemetry.metrics.metrics import MetricsRecorder, NoopMetricsRecorder, create_otel_recorder

logger = logging.getLogger(__name__)


def build_resource(service_name: str, service_version: Optional[str] = None) -> Resource:
    """Resource describing the service emitting telemetry."""
    resource_attrs = {ResourceAttributes.SERVICE_NAME: service_name}
    if service_version:
        resource_attrs[ResourceAttributes.SERVICE_VERSION] = service_version
    return Resource.create(resource_attrs)


def build_metric_reader(config: MetricsConfig) -> MetricReader:
    """Create the periodic reader for the configured exporter."""
    if config.exporter == "console":
        exporter = ConsoleMetricExporter()
    elif config.exporter == "otlp":
        exporter = OTLPMetricExporter(
            endpoint=config.effective_endpoint(),
            headers=dict(config.headers),
        )
    else:
        raise ConfigError(f"Unsupported metrics exporter: {config.exporter}")

    return PeriodicExportingMetricReader(
        exporter=exporter,
        export_interval_millis=config.export_interval_millis,
    )


def _build_reader_or_raise(config: MetricsConfig) -> MetricReader:
    try:
        reader = build_metric_reader(config)
    except Exception as e:
        raise MetricsInitError(
            f"Failed to create metric reader: {e}",
            details={"exporter": config.exporter},
        ) from e
    logger.debug(
        f"Metric reader configured: exporter={config.exporter}, "
        f"interval={config.export_interval_millis}ms"
    )
    return reader


def build_metrics_recorder(
    config: Optional[TelemetryConfig] = None,
    reader: Optional[MetricReader] = None,
) -> Union[MetricsRecorder, NoopMetricsRecorder]:
    """
    Build the service's metrics recorder.

    Args:
        config: Telemetry configuration (loaded from file/env when omitted)
        reader: Metric reader to use instead of the one built from config

    Returns:
        A MetricsRecorder, or a NoopMetricsRecorder when metrics are disabled
        or construction failed and fail_fast is off

    Raises:
        MetricsInitError: If construction failed and metrics.fail_fast is set
    """
    if config is None:
        config = load_config()

    if config.logging.debug:
        logging.getLogger("flagd_telemetry").setLevel(logging.DEBUG)

    if not config.metrics.enable_metrics:
        logger.debug("Metrics disabled, using no-op recorder")
        return NoopMetricsRecorder()

    try:
        if reader is None:
            reader = _build_reader_or_raise(config.metrics)
        resource = build_resource(config.service.service_name, config.service.service_version)
        return create_otel_recorder(reader, resource, config.service.service_name)
    except MetricsInitError as e:
        if config.metrics.fail_fast:
            raise
        logger.error(f"Metrics initialization failed, metrics disabled: {e}")
        return NoopMetricsRecorder()

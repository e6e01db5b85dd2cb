"""Core metrics utilities for flagd services.

This module provides StandardMetrics for declaring the service instruments and
their bucket views, and MetricsRecorder for recording HTTP and flag-evaluation
measurements against them.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from opentelemetry.context import Context
from opentelemetry.metrics import Counter, Histogram, Meter, UpDownCounter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.metrics.view import ExplicitBucketHistogramAggregation, View
from opentelemetry.sdk.resources import Resource

from flagd_telemetry import semconv
from flagd_telemetry.errors import MetricsInitError
from flagd_telemetry.metrics.evaluation import (
    EvaluationFailure,
    EvaluationOutcome,
    EvaluationSuccess,
    classify_evaluation,
)
from flagd_telemetry.semconv import KeyValue

logger = logging.getLogger(__name__)

REQUEST_DURATION_NAME = "http_request_duration_seconds"
RESPONSE_SIZE_NAME = "http_response_size_bytes"
REQUESTS_INFLIGHT_NAME = "http_requests_inflight"
IMPRESSIONS_NAME = "impressions"
REASONS_NAME = "reasons"

# Latency buckets in seconds, sub-millisecond resolution up to 10s.
DEFAULT_BUCKETS: Tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


def exponential_buckets(start: float, factor: float, count: int) -> Tuple[float, ...]:
    """Return ``count`` bucket boundaries, the first at ``start``, each ``factor`` times the previous."""
    if count < 1:
        raise ValueError("count must be positive")
    if start <= 0:
        raise ValueError("start must be positive")
    if factor <= 1:
        raise ValueError("factor must be greater than 1")
    buckets = []
    start = float(start)
    for _ in range(count):
        buckets.append(start)
        start *= factor
    return tuple(buckets)


# 8 buckets from 100 bytes up to 1 GB.
RESPONSE_SIZE_BUCKETS: Tuple[float, ...] = exponential_buckets(100, 10, 8)


class StandardMetrics:
    """Factory for the instruments and views every flagd service exposes."""

    @staticmethod
    def create_request_duration_histogram(meter: Meter) -> Histogram:
        return meter.create_histogram(
            name=REQUEST_DURATION_NAME,
            description="The latency of the HTTP requests",
        )

    @staticmethod
    def create_response_size_histogram(meter: Meter) -> Histogram:
        return meter.create_histogram(
            name=RESPONSE_SIZE_NAME,
            unit="By",
            description="The size of the HTTP responses",
        )

    @staticmethod
    def create_inflight_counter(meter: Meter) -> UpDownCounter:
        return meter.create_up_down_counter(
            name=REQUESTS_INFLIGHT_NAME,
            description="The number of inflight requests being handled at the same time",
        )

    @staticmethod
    def create_impressions_counter(meter: Meter) -> Counter:
        return meter.create_counter(
            name=IMPRESSIONS_NAME,
            description="The number of evaluations for a given flag",
        )

    @staticmethod
    def create_reasons_counter(meter: Meter) -> Counter:
        return meter.create_counter(
            name=REASONS_NAME,
            description="The number of evaluations for a given reason",
        )

    @staticmethod
    def create_standard_metrics(meter: Meter) -> Dict[str, Any]:
        """Create all service instruments.

        Returns:
            Dictionary with instrument names as keys and instrument handles as values
        """
        return {
            REQUEST_DURATION_NAME: StandardMetrics.create_request_duration_histogram(meter),
            RESPONSE_SIZE_NAME: StandardMetrics.create_response_size_histogram(meter),
            REQUESTS_INFLIGHT_NAME: StandardMetrics.create_inflight_counter(meter),
            IMPRESSIONS_NAME: StandardMetrics.create_impressions_counter(meter),
            REASONS_NAME: StandardMetrics.create_reasons_counter(meter),
        }

    @staticmethod
    def create_histogram_view(instrument_name: str, service_name: str, boundaries: Sequence[float]) -> View:
        """Explicit bucket aggregation for one instrument, scoped to the service's meter."""
        return View(
            instrument_name=instrument_name,
            meter_name=service_name,
            aggregation=ExplicitBucketHistogramAggregation(boundaries=list(boundaries)),
        )

    @staticmethod
    def create_standard_views(service_name: str) -> List[View]:
        return [
            StandardMetrics.create_histogram_view(REQUEST_DURATION_NAME, service_name, DEFAULT_BUCKETS),
            StandardMetrics.create_histogram_view(RESPONSE_SIZE_NAME, service_name, RESPONSE_SIZE_BUCKETS),
        ]


def _context_kwargs(context: Optional[Context]) -> Dict[str, Any]:
    return {"context": context} if context is not None else {}


class MetricsRecorder:
    """Records HTTP and flag-evaluation measurements.

    The recorder is immutable after construction and safe to share between
    threads; the instruments it holds are thread-safe.
    """

    def __init__(self, metrics: Dict[str, Any], meter_provider: Optional[MeterProvider] = None):
        """Initialize metrics recorder.

        Args:
            metrics: Dictionary of instrument handles from StandardMetrics
            meter_provider: Provider owning the instruments, kept for flush/shutdown

        Raises:
            MetricsInitError: If any of the five instruments is missing
        """
        missing = [
            name
            for name in (REQUEST_DURATION_NAME, RESPONSE_SIZE_NAME, REQUESTS_INFLIGHT_NAME, IMPRESSIONS_NAME, REASONS_NAME)
            if metrics.get(name) is None
        ]
        if missing:
            raise MetricsInitError("Metrics recorder is missing instruments", details={"missing": missing})

        self.meter_provider = meter_provider
        self._request_duration = metrics[REQUEST_DURATION_NAME]
        self._response_size = metrics[RESPONSE_SIZE_NAME]
        self._requests_inflight = metrics[REQUESTS_INFLIGHT_NAME]
        self._impressions = metrics[IMPRESSIONS_NAME]
        self._reasons = metrics[REASONS_NAME]

    http_attributes = staticmethod(semconv.http_attributes)

    def http_request_duration(
        self,
        duration: Union[timedelta, float],
        attributes: Sequence[KeyValue],
        context: Optional[Context] = None,
    ) -> None:
        """Record request latency.

        Args:
            duration: Elapsed time, as a timedelta or in seconds
            attributes: Attributes from http_attributes()
            context: Optional OpenTelemetry context
        """
        seconds = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
        self._request_duration.record(
            seconds, attributes=semconv.to_otel_attributes(attributes), **_context_kwargs(context)
        )

    def http_response_size(
        self,
        size_bytes: int,
        attributes: Sequence[KeyValue],
        context: Optional[Context] = None,
    ) -> None:
        self._response_size.record(
            float(size_bytes), attributes=semconv.to_otel_attributes(attributes), **_context_kwargs(context)
        )

    def in_flight_request_start(self, attributes: Sequence[KeyValue], context: Optional[Context] = None) -> None:
        self._requests_inflight.add(1, attributes=semconv.to_otel_attributes(attributes), **_context_kwargs(context))

    def in_flight_request_end(self, attributes: Sequence[KeyValue], context: Optional[Context] = None) -> None:
        # No clamping: an unmatched end drives the counter negative.
        self._requests_inflight.add(-1, attributes=semconv.to_otel_attributes(attributes), **_context_kwargs(context))

    def impressions(self, reason: str, variant: str, flag_key: str, context: Optional[Context] = None) -> None:
        """Count a successful evaluation of ``flag_key`` resolving to ``variant``."""
        attrs = semconv.feature_flag_attributes(flag_key, variant) + (semconv.feature_flag_reason(reason),)
        self._impressions.add(1, attributes=semconv.to_otel_attributes(attrs), **_context_kwargs(context))

    def reasons(self, reason: str, error: Optional[BaseException] = None, context: Optional[Context] = None) -> None:
        """Count an evaluation by reason, tagging the exception type when it failed."""
        attrs: Tuple[KeyValue, ...] = (
            semconv.feature_flag_provider_name(semconv.FLAGD_PROVIDER_NAME),
            semconv.feature_flag_reason(reason),
        )
        if error is not None:
            attrs += (semconv.exception_type(str(error)),)
        self._reasons.add(1, attributes=semconv.to_otel_attributes(attrs), **_context_kwargs(context))

    def record_outcome(self, outcome: EvaluationOutcome, context: Optional[Context] = None) -> None:
        if isinstance(outcome, EvaluationSuccess):
            self.impressions(outcome.reason, outcome.variant, outcome.flag_key, context=context)
            self.reasons(outcome.reason, context=context)
        elif isinstance(outcome, EvaluationFailure):
            self.reasons(outcome.reason, outcome.error, context=context)
        else:
            raise TypeError(f"Unknown evaluation outcome: {outcome!r}")

    def record_evaluation(
        self,
        error: Optional[BaseException],
        reason: str,
        variant: str,
        flag_key: str,
        context: Optional[Context] = None,
    ) -> None:
        """Record the result of one flag evaluation.

        A successful evaluation (``error is None``) counts an impression and a
        reason; a failed one counts only the reason, with the exception type.
        """
        self.record_outcome(classify_evaluation(error, reason, variant, flag_key), context=context)


class NoopMetricsRecorder:
    """Recorder with the MetricsRecorder interface that drops every measurement."""

    meter_provider = None

    http_attributes = staticmethod(semconv.http_attributes)

    def http_request_duration(self, duration, attributes, context=None) -> None:
        pass

    def http_response_size(self, size_bytes, attributes, context=None) -> None:
        pass

    def in_flight_request_start(self, attributes, context=None) -> None:
        pass

    def in_flight_request_end(self, attributes, context=None) -> None:
        pass

    def impressions(self, reason, variant, flag_key, context=None) -> None:
        pass

    def reasons(self, reason, error=None, context=None) -> None:
        pass

    def record_outcome(self, outcome, context=None) -> None:
        pass

    def record_evaluation(self, error, reason, variant, flag_key, context=None) -> None:
        pass


def create_otel_recorder(reader: MetricReader, resource: Resource, service_name: str) -> MetricsRecorder:
    """Create a MetricsRecorder backed by its own MeterProvider.

    The provider is not registered globally: this is the only place a meter is
    derived from it.

    Args:
        reader: Metric reader the provider exports through
        resource: Entity producing the telemetry
        service_name: Meter (scope) name the instruments and views are bound to

    Raises:
        MetricsInitError: If the provider or any instrument cannot be created
    """
    if not service_name:
        raise MetricsInitError("service_name must be a non-empty string")

    try:
        provider = MeterProvider(
            metric_readers=[reader],
            resource=resource,
            views=StandardMetrics.create_standard_views(service_name),
        )
    except Exception as e:
        raise MetricsInitError(
            f"Failed to create meter provider: {e}",
            details={"service_name": service_name},
        ) from e

    try:
        meter = provider.get_meter(service_name)
        recorder = MetricsRecorder(StandardMetrics.create_standard_metrics(meter), meter_provider=provider)
    except Exception as e:
        # Stop the reader bound to the discarded provider. The SDK keeps it
        # registered, so a retry needs a fresh reader.
        try:
            provider.shutdown()
        except Exception:
            logger.warning("Failed to shut down meter provider after init failure", exc_info=True)
        if isinstance(e, MetricsInitError):
            raise
        raise MetricsInitError(
            f"Failed to create metrics instruments: {e}",
            details={"service_name": service_name},
        ) from e

    logger.info(f"Metrics recorder initialized for service {service_name}")
    return recorder

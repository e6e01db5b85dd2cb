"""Metrics module for OpenTelemetry-based metrics emission."""

from __future__ import annotations

from .evaluation import EvaluationFailure, EvaluationOutcome, EvaluationSuccess, classify_evaluation
from .metrics import (
    DEFAULT_BUCKETS,
    RESPONSE_SIZE_BUCKETS,
    MetricsRecorder,
    NoopMetricsRecorder,
    StandardMetrics,
    create_otel_recorder,
    exponential_buckets,
)
from .recorder import get_metrics_recorder, set_global_recorder

__all__ = [
    "DEFAULT_BUCKETS",
    "RESPONSE_SIZE_BUCKETS",
    "StandardMetrics",
    "MetricsRecorder",
    "NoopMetricsRecorder",
    "create_otel_recorder",
    "exponential_buckets",
    "EvaluationSuccess",
    "EvaluationFailure",
    "EvaluationOutcome",
    "classify_evaluation",
    "get_metrics_recorder",
    "set_global_recorder",
]

"""Metrics module tests for flagd_telemetry."""

from __future__ import annotations

import unittest
from datetime import timedelta
from unittest.mock import MagicMock, patch

from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.resources import Resource

from flagd_telemetry.errors import MetricsInitError
from flagd_telemetry.metrics import (
    DEFAULT_BUCKETS,
    RESPONSE_SIZE_BUCKETS,
    EvaluationFailure,
    EvaluationSuccess,
    MetricsRecorder,
    NoopMetricsRecorder,
    StandardMetrics,
    classify_evaluation,
    create_otel_recorder,
    exponential_buckets,
)
from flagd_telemetry.metrics.recorder import get_metrics_recorder, set_global_recorder
from flagd_telemetry.semconv import http_attributes


def _collect(reader):
    """Map (scope name, metric name) to the data points the reader currently holds."""
    points = {}
    data = reader.get_metrics_data()
    if data is None:
        return points
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points[(scope_metrics.scope.name, metric.name)] = list(metric.data.data_points)
    return points


class _TrackingReader(InMemoryMetricReader):
    """In-memory reader that counts shutdown calls."""

    def __init__(self):
        super().__init__()
        self.shutdown_calls = 0

    def shutdown(self, timeout_millis: float = 30_000, **kwargs) -> None:
        self.shutdown_calls += 1


class TestBuckets(unittest.TestCase):
    """Test bucket boundary helpers."""

    def test_response_size_buckets(self):
        assert list(RESPONSE_SIZE_BUCKETS) == [
            100, 1000, 10000, 100000, 1000000, 10000000, 100000000, 1000000000,
        ]

    def test_default_buckets_span_latency_range(self):
        assert DEFAULT_BUCKETS[0] == 0.005
        assert DEFAULT_BUCKETS[-1] == 10.0
        assert list(DEFAULT_BUCKETS) == sorted(DEFAULT_BUCKETS)

    def test_exponential_buckets_rejects_bad_input(self):
        with self.assertRaises(ValueError):
            exponential_buckets(100, 10, 0)
        with self.assertRaises(ValueError):
            exponential_buckets(0, 10, 3)
        with self.assertRaises(ValueError):
            exponential_buckets(1, 1, 3)


class TestStandardMetrics(unittest.TestCase):
    """Test StandardMetrics factory."""

    def test_create_response_size_histogram(self):
        meter = MagicMock()
        StandardMetrics.create_response_size_histogram(meter)
        call_kw = meter.create_histogram.call_args[1]
        assert call_kw["name"] == "http_response_size_bytes"
        assert call_kw["unit"] == "By"

    def test_create_inflight_counter(self):
        meter = MagicMock()
        StandardMetrics.create_inflight_counter(meter)
        call_kw = meter.create_up_down_counter.call_args[1]
        assert call_kw["name"] == "http_requests_inflight"

    def test_create_standard_metrics(self):
        meter = MagicMock()
        metrics = StandardMetrics.create_standard_metrics(meter)
        assert set(metrics) == {
            "http_request_duration_seconds",
            "http_response_size_bytes",
            "http_requests_inflight",
            "impressions",
            "reasons",
        }
        assert meter.create_histogram.call_count == 2
        assert meter.create_up_down_counter.call_count == 1
        assert meter.create_counter.call_count == 2

    def test_create_standard_views(self):
        duration_view, size_view = StandardMetrics.create_standard_views("svc")
        assert duration_view._instrument_name == "http_request_duration_seconds"
        assert duration_view._meter_name == "svc"
        assert size_view._instrument_name == "http_response_size_bytes"
        assert size_view._meter_name == "svc"


class TestMetricsRecorder(unittest.TestCase):
    """Test MetricsRecorder against mocked instruments."""

    def setUp(self):
        self.duration_hist = MagicMock()
        self.size_hist = MagicMock()
        self.inflight = MagicMock()
        self.impressions = MagicMock()
        self.reasons = MagicMock()
        self.recorder = MetricsRecorder({
            "http_request_duration_seconds": self.duration_hist,
            "http_response_size_bytes": self.size_hist,
            "http_requests_inflight": self.inflight,
            "impressions": self.impressions,
            "reasons": self.reasons,
        })
        self.attrs = http_attributes("svc", "/x", "GET", "200")
        self.otel_attrs = {
            "service.name": "svc",
            "http.url": "/x",
            "http.method": "GET",
            "http.status_code": "200",
        }

    def test_missing_instrument_raises(self):
        with self.assertRaises(MetricsInitError) as ctx:
            MetricsRecorder({"impressions": MagicMock()})
        assert "reasons" in ctx.exception.details["missing"]

    def test_http_request_duration_timedelta(self):
        self.recorder.http_request_duration(timedelta(milliseconds=1500), self.attrs)
        self.duration_hist.record.assert_called_once_with(1.5, attributes=self.otel_attrs)

    def test_http_request_duration_seconds(self):
        self.recorder.http_request_duration(0.25, self.attrs)
        self.duration_hist.record.assert_called_once_with(0.25, attributes=self.otel_attrs)

    def test_http_response_size(self):
        self.recorder.http_response_size(2048, self.attrs)
        self.size_hist.record.assert_called_once_with(2048.0, attributes=self.otel_attrs)
        assert isinstance(self.size_hist.record.call_args[0][0], float)

    def test_context_is_forwarded(self):
        context = MagicMock()
        self.recorder.in_flight_request_start(self.attrs, context=context)
        self.inflight.add.assert_called_once_with(1, attributes=self.otel_attrs, context=context)

    def test_in_flight_start_and_end(self):
        self.recorder.in_flight_request_start(self.attrs)
        self.recorder.in_flight_request_end(self.attrs)
        calls = self.inflight.add.call_args_list
        assert [c[0][0] for c in calls] == [1, -1]

    def test_impressions(self):
        self.recorder.impressions("STATIC", "on", "my-flag")
        self.impressions.add.assert_called_once_with(1, attributes={
            "feature_flag.key": "my-flag",
            "feature_flag.variant": "on",
            "feature_flag.reason": "STATIC",
        })

    def test_reasons_without_error(self):
        self.recorder.reasons("DEFAULT")
        self.reasons.add.assert_called_once_with(1, attributes={
            "feature_flag.provider_name": "flagd",
            "feature_flag.reason": "DEFAULT",
        })

    def test_reasons_with_error(self):
        self.recorder.reasons("ERROR", ValueError("flag not found"))
        attrs = self.reasons.add.call_args[1]["attributes"]
        assert attrs["exception.type"] == "flag not found"

    def test_record_evaluation_success(self):
        self.recorder.record_evaluation(None, "STATIC", "on", "my-flag")
        self.impressions.add.assert_called_once()
        self.reasons.add.assert_called_once()
        assert "exception.type" not in self.reasons.add.call_args[1]["attributes"]

    def test_record_evaluation_failure(self):
        self.recorder.record_evaluation(KeyError("boom"), "ERROR", "", "my-flag")
        self.impressions.add.assert_not_called()
        self.reasons.add.assert_called_once()
        assert self.reasons.add.call_args[1]["attributes"]["exception.type"] == str(KeyError("boom"))

    def test_record_outcome_rejects_unknown(self):
        with self.assertRaises(TypeError):
            self.recorder.record_outcome("not-an-outcome")


class TestClassifyEvaluation(unittest.TestCase):

    def test_success(self):
        outcome = classify_evaluation(None, "STATIC", "on", "my-flag")
        assert outcome == EvaluationSuccess(reason="STATIC", variant="on", flag_key="my-flag")

    def test_failure(self):
        error = RuntimeError("parse error")
        outcome = classify_evaluation(error, "ERROR", "", "my-flag")
        assert isinstance(outcome, EvaluationFailure)
        assert outcome.error is error
        assert outcome.reason == "ERROR"


class TestOtelRecorder(unittest.TestCase):
    """End-to-end recording through the OpenTelemetry SDK."""

    def setUp(self):
        self.reader = InMemoryMetricReader()
        self.recorder = create_otel_recorder(self.reader, Resource.create({"service.name": "svc"}), "svc")
        self.attrs = http_attributes("svc", "/x", "GET", "200")

    def tearDown(self):
        self.recorder.meter_provider.shutdown()

    def test_duration_recorded_in_seconds_with_default_buckets(self):
        self.recorder.http_request_duration(timedelta(milliseconds=1500), self.attrs)
        [point] = _collect(self.reader)[("svc", "http_request_duration_seconds")]
        assert point.sum == 1.5
        assert point.count == 1
        assert list(point.explicit_bounds) == list(DEFAULT_BUCKETS)

    def test_response_size_uses_exponential_buckets(self):
        self.recorder.http_response_size(2048, self.attrs)
        [point] = _collect(self.reader)[("svc", "http_response_size_bytes")]
        assert point.sum == 2048.0
        assert list(point.explicit_bounds) == [
            100, 1000, 10000, 100000, 1000000, 10000000, 100000000, 1000000000,
        ]

    def test_in_flight_nets_to_zero(self):
        self.recorder.in_flight_request_start(self.attrs)
        self.recorder.in_flight_request_end(self.attrs)
        [point] = _collect(self.reader)[("svc", "http_requests_inflight")]
        assert point.value == 0

    def test_unmatched_end_goes_negative(self):
        self.recorder.in_flight_request_end(self.attrs)
        [point] = _collect(self.reader)[("svc", "http_requests_inflight")]
        assert point.value == -1

    def test_successful_evaluation_counts_impression_and_reason(self):
        self.recorder.record_evaluation(None, "STATIC", "on", "my-flag")
        points = _collect(self.reader)
        [impression] = points[("svc", "impressions")]
        [reason] = points[("svc", "reasons")]
        assert impression.value == 1
        assert reason.value == 1
        assert "exception.type" not in reason.attributes

    def test_failed_evaluation_counts_reason_only(self):
        self.recorder.record_evaluation(ValueError("bad flag"), "ERROR", "", "my-flag")
        points = _collect(self.reader)
        assert ("svc", "impressions") not in points
        [reason] = points[("svc", "reasons")]
        assert reason.value == 1
        assert reason.attributes["exception.type"] == "bad flag"
        assert reason.attributes["feature_flag.provider_name"] == "flagd"

    def test_views_apply_only_to_service_scope(self):
        other_meter = self.recorder.meter_provider.get_meter("other")
        other_meter.create_histogram(name="http_response_size_bytes").record(2048)
        self.recorder.http_response_size(2048, self.attrs)
        points = _collect(self.reader)
        [svc_point] = points[("svc", "http_response_size_bytes")]
        [other_point] = points[("other", "http_response_size_bytes")]
        assert list(svc_point.explicit_bounds) == list(RESPONSE_SIZE_BUCKETS)
        assert list(other_point.explicit_bounds) == [
            0.0, 5.0, 10.0, 25.0, 50.0, 75.0, 100.0, 250.0, 500.0, 750.0,
            1000.0, 2500.0, 5000.0, 7500.0, 10000.0,
        ]

    def test_recorders_are_scoped_by_service_name(self):
        other_reader = InMemoryMetricReader()
        other = create_otel_recorder(other_reader, Resource.create({"service.name": "other"}), "other")
        try:
            self.recorder.impressions("STATIC", "on", "my-flag")
            assert ("svc", "impressions") in _collect(self.reader)
            other_points = _collect(other_reader)
            assert ("other", "impressions") not in other_points
            assert ("svc", "impressions") not in other_points
        finally:
            other.meter_provider.shutdown()


class TestCreateOtelRecorder(unittest.TestCase):
    """Construction failures are reported, not swallowed."""

    def test_empty_service_name(self):
        with self.assertRaises(MetricsInitError):
            create_otel_recorder(InMemoryMetricReader(), Resource.create({}), "")

    def test_instrument_creation_failure(self):
        with patch.object(StandardMetrics, "create_standard_metrics", side_effect=RuntimeError("bad aggregator")):
            with self.assertRaises(MetricsInitError) as ctx:
                create_otel_recorder(InMemoryMetricReader(), Resource.create({}), "svc")
        assert ctx.exception.details == {"service_name": "svc"}
        assert isinstance(ctx.exception.__cause__, RuntimeError)

    def test_instrument_failure_shuts_down_provider(self):
        reader = _TrackingReader()
        with patch.object(StandardMetrics, "create_standard_metrics", side_effect=RuntimeError("bad aggregator")):
            with self.assertRaises(MetricsInitError):
                create_otel_recorder(reader, Resource.create({}), "svc")
        assert reader.shutdown_calls == 1

        # The SDK never unregisters a reader, so reuse is reported rather than silently dropped.
        with self.assertRaises(MetricsInitError):
            create_otel_recorder(reader, Resource.create({}), "svc")

        fresh_reader = InMemoryMetricReader()
        recorder = create_otel_recorder(fresh_reader, Resource.create({}), "svc")
        try:
            recorder.impressions("STATIC", "on", "my-flag")
            assert ("svc", "impressions") in _collect(fresh_reader)
        finally:
            recorder.meter_provider.shutdown()

    def test_reader_already_registered(self):
        reader = InMemoryMetricReader()
        recorder = create_otel_recorder(reader, Resource.create({}), "svc")
        try:
            with self.assertRaises(MetricsInitError):
                create_otel_recorder(reader, Resource.create({}), "svc")
        finally:
            recorder.meter_provider.shutdown()


class TestNoopRecorder(unittest.TestCase):

    def test_all_operations_are_silent(self):
        recorder = NoopMetricsRecorder()
        attrs = recorder.http_attributes("svc", "/x", "GET", "200")
        recorder.http_request_duration(timedelta(seconds=1), attrs)
        recorder.http_response_size(10, attrs)
        recorder.in_flight_request_start(attrs)
        recorder.in_flight_request_end(attrs)
        recorder.impressions("STATIC", "on", "my-flag")
        recorder.reasons("ERROR", ValueError("x"))
        recorder.record_evaluation(None, "STATIC", "on", "my-flag")
        assert recorder.meter_provider is None


class TestGlobalRecorder(unittest.TestCase):
    """Test global recorder access."""

    def tearDown(self):
        set_global_recorder(None)

    def test_get_metrics_recorder_noop_when_not_set(self):
        set_global_recorder(None)
        assert isinstance(get_metrics_recorder(), NoopMetricsRecorder)

    def test_set_and_get_global_recorder(self):
        recorder = MagicMock()
        set_global_recorder(recorder)
        assert get_metrics_recorder() is recorder


if __name__ == "__main__":
    unittest.main()

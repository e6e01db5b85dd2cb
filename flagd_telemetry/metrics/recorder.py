"""Process-wide metrics recorder."""

from typing import Optional, Union

from flagd_telemetry.metrics.metrics import MetricsRecorder, NoopMetricsRecorder

_NOOP_RECORDER = NoopMetricsRecorder()

# Global recorder instance (set by the owning service at startup)
_global_recorder: Optional[MetricsRecorder] = None


def set_global_recorder(recorder: Optional[MetricsRecorder]) -> None:
    """Set the global metrics recorder (pass None to clear it)."""
    global _global_recorder
    _global_recorder = recorder


def get_metrics_recorder() -> Union[MetricsRecorder, NoopMetricsRecorder]:
    """Get the global metrics recorder instance.

    Returns:
        The recorder set by set_global_recorder, or a no-op recorder if none is set
    """
    if _global_recorder is None:
        return _NOOP_RECORDER
    return _global_recorder

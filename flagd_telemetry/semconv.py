"""Attribute keys and builders attached to recorded data points.

Every builder is pure and returns immutable ``KeyValue`` pairs so attribute
sets can be compared for equality and reused across threads.
"""

from __future__ import annotations

from typing import Dict, Iterable, NamedTuple, Tuple

from opentelemetry.semconv.resource import ResourceAttributes
from opentelemetry.semconv.trace import SpanAttributes

FLAGD_PROVIDER_NAME = "flagd"

FEATURE_FLAG_REASON_KEY = "feature_flag.reason"
EXCEPTION_TYPE_KEY = "exception.type"
FEATURE_FLAG_KEY = SpanAttributes.FEATURE_FLAG_KEY
FEATURE_FLAG_VARIANT_KEY = SpanAttributes.FEATURE_FLAG_VARIANT
FEATURE_FLAG_PROVIDER_NAME_KEY = SpanAttributes.FEATURE_FLAG_PROVIDER_NAME


class KeyValue(NamedTuple):
    """A single attribute attached to one data point."""

    key: str
    value: str


Attributes = Tuple[KeyValue, ...]


def http_attributes(service_name: str, url: str, method: str, status_code: str) -> Attributes:
    """Build the attributes recorded for an HTTP request.

    Args:
        service_name: Name of the service handling the request
        url: Request URL or route
        method: HTTP method
        status_code: Response status code, carried as a string

    Returns:
        Four attributes in a fixed order: service name, URL, method, status code
    """
    return (
        KeyValue(ResourceAttributes.SERVICE_NAME, service_name),
        KeyValue(SpanAttributes.HTTP_URL, url),
        KeyValue(SpanAttributes.HTTP_METHOD, method),
        KeyValue(SpanAttributes.HTTP_STATUS_CODE, str(status_code)),
    )


def feature_flag_reason(reason: str) -> KeyValue:
    """Why a flag evaluation resolved the way it did (STATIC, DEFAULT, ERROR...)."""
    return KeyValue(FEATURE_FLAG_REASON_KEY, reason)


def exception_type(value: str) -> KeyValue:
    return KeyValue(EXCEPTION_TYPE_KEY, value)


def feature_flag_provider_name(name: str) -> KeyValue:
    return KeyValue(FEATURE_FLAG_PROVIDER_NAME_KEY, name)


def feature_flag_attributes(flag_key: str, variant: str) -> Attributes:
    """Identity of an evaluated flag: its key and the resolved variant."""
    return (
        KeyValue(FEATURE_FLAG_KEY, flag_key),
        KeyValue(FEATURE_FLAG_VARIANT_KEY, variant),
    )


def to_otel_attributes(attributes: Iterable[KeyValue]) -> Dict[str, str]:
    """Convert a KeyValue sequence into the mapping the OpenTelemetry API expects."""
    return {kv.key: kv.value for kv in attributes}

"""OpenTelemetry tracing configuration for fallible.

The library never configures tracing on import. Host applications that do not
install their own TracerProvider call configure_tracing() once at startup;
the test suite uses the in-memory exporter.

Environment Variables:
    FALLIBLE_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    FALLIBLE_REQUIRE_OTEL: Set to "1" to fail if tracing cannot initialize
    FALLIBLE_OTEL_SERVICE_NAME: Service name for spans (default: "fallible")
    FALLIBLE_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP/HTTP traces endpoint (optional)
    FALLIBLE_OTEL_TEST_CAPTURE: Set to "1" to use in-memory exporter for tests
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
    from opentelemetry.sdk.trace.export import SpanExporter

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | None = None
_is_configured: bool = False
_test_exporter: Any = None  # InMemorySpanExporter when test capture is on


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and FALLIBLE_REQUIRE_OTEL=1."""


def _get_env_bool(key: str) -> bool:
    return os.environ.get(key, "").strip().lower() in ("1", "true", "yes")


def _create_resource() -> Resource:
    """Build the resource identifying this process in exported spans."""
    from opentelemetry.sdk.resources import Resource

    service_name = os.environ.get("FALLIBLE_OTEL_SERVICE_NAME", "").strip() or "fallible"
    return Resource.create({"service.name": service_name})


def _create_exporter(test_capture: bool) -> SpanExporter:
    """Create the in-memory exporter for tests, otherwise OTLP over HTTP.

    The OTLP exporter ships in the ``otlp`` extra.
    """
    if test_capture:
        from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
            InMemorySpanExporter,
        )

        return InMemorySpanExporter()

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    endpoint = os.environ.get("FALLIBLE_OTEL_EXPORTER_OTLP_ENDPOINT", "").strip()
    return OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()


def configure_tracing() -> bool:
    """Configure OpenTelemetry tracing.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If FALLIBLE_REQUIRE_OTEL=1 and configuration fails.
    """
    global _tracer_provider, _is_configured, _test_exporter

    if not _get_env_bool("FALLIBLE_OTEL_ENABLED"):
        _is_configured = True
        logger.debug("OpenTelemetry tracing disabled (FALLIBLE_OTEL_ENABLED not set)")
        return False

    test_capture = _get_env_bool("FALLIBLE_OTEL_TEST_CAPTURE")

    # The global provider can only be set once; reuse the capturing exporter.
    if _test_exporter is not None and test_capture:
        return True

    if _is_configured and _tracer_provider is not None:
        return True

    _is_configured = True

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

        provider = TracerProvider(resource=_create_resource())
        exporter = _create_exporter(test_capture)
        if test_capture:
            _test_exporter = exporter
            provider.add_span_processor(SimpleSpanProcessor(exporter))
        else:
            provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider

        logger.info(
            "OpenTelemetry tracing configured: exporter=%s",
            "in-memory" if test_capture else "otlp",
        )
        return True

    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if _get_env_bool("FALLIBLE_REQUIRE_OTEL"):
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False


def get_current_trace_id() -> str | None:
    """Get the current trace ID for logging correlation.

    Returns:
        Hex string of current trace ID, or None if no active span.
    """
    from opentelemetry import trace

    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        return None
    return format(ctx.trace_id, "032x")


def get_test_spans() -> list[ReadableSpan]:
    """Return spans captured while FALLIBLE_OTEL_TEST_CAPTURE=1, else []."""
    if _test_exporter is not None:
        return list(_test_exporter.get_finished_spans())
    return []


def clear_test_spans() -> None:
    if _test_exporter is not None:
        _test_exporter.clear()


def reset_tracing() -> None:
    """Reset tracing configuration (for testing).

    The OpenTelemetry TracerProvider cannot be replaced once set, so the
    test exporter is kept and only its captured spans are dropped.
    """
    global _is_configured

    clear_test_spans()
    _is_configured = False

"""fallible observability module.

Provides OpenTelemetry tracing setup for storage facade spans.
"""

from fallible.observability.tracing import configure_tracing, get_current_trace_id

__all__ = ["configure_tracing", "get_current_trace_id"]

"""Storage facade OpenTelemetry tracing integration.

Provides the tracing decorator applied to facade operations.

Security:
    - Never export object keys or filesystem paths in span attributes
    - Keys are exported only as a SHA256 hash for correlation
    - No credentials or object content in any span attribute
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import os
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar, cast

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])

FALLIBLE_OTEL_ENABLED_ENV = "FALLIBLE_OTEL_ENABLED"


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    return default


def _is_otel_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    return _get_env_bool(FALLIBLE_OTEL_ENABLED_ENV, False)


def hash_key(key: str) -> str:
    """Return the SHA256 hex digest used to reference a key in spans."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _bound_key(
    signature: inspect.Signature, args: tuple[Any, ...], kwargs: dict[str, Any]
) -> Any:
    """Return the first argument after self however it was passed, or None."""
    try:
        bound = signature.bind(*args, **kwargs)
    except TypeError:
        return None
    names = list(signature.parameters)
    if len(names) < 2:
        return None
    return bound.arguments.get(names[1])


def traced_storage_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace async facade operations with OpenTelemetry.

    The object key (or prefix) is the first parameter after self; it may be
    passed positionally or by name.

    Args:
        operation: Operation name (e.g., "read", "write", "list").

    Returns:
        Decorated coroutine function that emits spans when tracing is enabled.
    """

    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _is_otel_enabled():
                return await func(*args, **kwargs)

            try:
                from opentelemetry import trace
            except ImportError:
                return await func(*args, **kwargs)

            owner = args[0] if args else None
            key = _bound_key(signature, args, kwargs)

            tracer = trace.get_tracer("fallible.storage")
            with tracer.start_as_current_span(f"fallible.storage.{operation}") as span:
                span.set_attribute("storage.backend", getattr(owner, "backend_name", "unknown"))
                span.set_attribute("fallible.store_name", getattr(owner, "store_name", "unknown"))
                # Raw keys may embed secrets; export the hash only.
                if isinstance(key, str):
                    span.set_attribute("fallible.object_key_sha256", hash_key(key))

                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

                _add_result_attributes(span, result)
                return result

        return cast(F, wrapper)

    return decorator


def _add_result_attributes(span: Any, result: Any) -> None:
    """Add result-based attributes to span safely.

    Only sizes, counts and booleans are added, never content or keys.
    """
    try:
        from fallible.storage.models import ObjectMetadata

        if isinstance(result, ObjectMetadata):
            span.set_attribute("fallible.object_size_bytes", result.size_bytes)
            if result.content_type:
                span.set_attribute("fallible.object_content_type", result.content_type)
        elif isinstance(result, bytes):
            span.set_attribute("fallible.object_size_bytes", len(result))
        elif isinstance(result, bool):
            span.set_attribute("fallible.object_exists", result)
        elif isinstance(result, list):
            span.set_attribute("fallible.object_count", len(result))
    except Exception as e:
        logger.debug("Failed to add result attributes to span: %s", e)

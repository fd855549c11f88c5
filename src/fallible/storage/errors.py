"""Storage facade error types.

Every fallible facade operation raises one of these. Backend exceptions are
wrapped and kept on ``cause`` so callers never need to import boto3 or
handle OSError directly.
"""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for storage facade operations.

    Attributes:
        message: Human-readable error message.
        store: Name of the store the operation targeted (if applicable).
        key: Object key associated with the operation (if applicable).
    """

    def __init__(
        self,
        message: str,
        *,
        store: str | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.store = store
        self.key = key

    def __str__(self) -> str:
        parts = [self.message]
        if self.store:
            parts.append(f"store={self.store}")
        if self.key:
            parts.append(f"key={self.key}")
        return " ".join(parts)


class ConstructionError(StorageError):
    """Raised when a facade cannot be bound to its store.

    The store is missing, unreachable, or the caller is not authorized to
    use it. No facade instance exists when this is raised.
    """

    def __init__(
        self,
        message: str = "Store is unreachable or does not exist",
        *,
        store: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, store=store)
        self.cause = cause


class TransformError(StorageError):
    """Raised when a caller-supplied encrypt/decrypt function fails.

    The transform's own exception is available on ``cause`` and is also
    chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str = "Transform function failed",
        *,
        store: str | None = None,
        key: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, store=store, key=key)
        self.cause = cause


class ObjectNotFoundError(StorageError):
    """Raised when the requested object does not exist in the store."""

    def __init__(
        self,
        message: str = "Object not found",
        *,
        store: str | None = None,
        key: str | None = None,
        version_id: str | None = None,
    ) -> None:
        super().__init__(message, store=store, key=key)
        self.version_id = version_id


class PathTraversalError(StorageError):
    """Raised when a key would escape the root of a local store.

    Keys like "../x", absolute paths, backslashes and drive letters are
    rejected before touching the filesystem.
    """

    def __init__(
        self,
        message: str = "Invalid key: path traversal detected",
        *,
        store: str | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(message, store=store, key=key)


class StorageBackendError(StorageError):
    """Raised when the storage backend cannot complete an operation.

    This covers transport, authorization and service failures (or disk
    errors for local stores) as opposed to a logical miss like
    ObjectNotFoundError.
    """

    def __init__(
        self,
        message: str = "Storage backend error",
        *,
        store: str | None = None,
        key: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, store=store, key=key)
        self.cause = cause

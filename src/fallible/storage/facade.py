"""Storage facade interface definition.

Provides the StorageFacade contract that every storage backend must implement,
plus the transform (encrypt/decrypt) plumbing shared by all backends.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from fallible.storage.errors import TransformError
from fallible.storage.models import ObjectMetadata, StoreMetadata
from fallible.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

Transform = Callable[[bytes], bytes]
"""Caller-supplied encrypt/decrypt function. Raising signals failure."""


def _run_transform(
    transform: Transform,
    data: bytes,
    *,
    store: str,
    key: str,
    direction: str,
) -> bytes:
    try:
        result = transform(data)
    except TransformError:
        raise
    except Exception as e:
        raise TransformError(
            message=f"{direction} transform failed: {e}",
            store=store,
            key=key,
            cause=e,
        ) from e

    if not isinstance(result, (bytes, bytearray, memoryview)):
        raise TransformError(
            message=f"{direction} transform returned {type(result).__name__}, expected bytes",
            store=store,
            key=key,
        )
    return bytes(result)


async def apply_transform(
    transform: Transform,
    data: bytes,
    *,
    store: str,
    key: str,
    direction: str,
) -> bytes:
    """Run a caller-supplied transform, wrapping any failure in TransformError.

    The transform runs in a worker thread so a slow cipher never blocks the
    event loop.

    Args:
        transform: The encrypt or decrypt function.
        data: Input bytes. A private copy is handed to the transform.
        store: Store name for error context.
        key: Object key for error context.
        direction: "encrypt" or "decrypt", used in the error message.

    Returns:
        The transformed bytes.

    Raises:
        TransformError: If the transform raises or returns a non-bytes value.
    """
    return await asyncio.to_thread(
        _run_transform,
        transform,
        bytes(data),
        store=store,
        key=key,
        direction=direction,
    )


class StorageFacade(ABC):
    """Abstract base class for storage backends.

    A facade is bound to exactly one store for its whole lifetime and holds
    no mutable state besides its client handle, so any number of operations
    may run concurrently against one instance. Nothing is retried and there
    are no built-in timeouts.

    Implementations:
    - S3Facade: S3-compatible object storage
    - LocalFacade: Local directory tree
    """

    def __init__(self, metadata: StoreMetadata) -> None:
        self._metadata = metadata

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability.

        Returns:
            Backend name string (e.g., "s3", "local").
        """
        ...

    @property
    def metadata(self) -> StoreMetadata:
        """Return the metadata of the bound store."""
        return self._metadata

    @property
    def store_name(self) -> str:
        """Return the addressable name of the bound store."""
        return self._metadata.name

    def describe(self) -> StoreMetadata:
        """Return the identity, name and description of the bound store."""
        return self._metadata

    @abstractmethod
    async def read(self, path: str, decrypt: Transform | None = None) -> bytes:
        """Fetch the full object at a path.

        The whole object is buffered in memory; there is no streaming path.

        Args:
            path: Full key of the object.
            decrypt: Optional function applied once to the raw bytes.

        Returns:
            Object content, decrypted if a decrypt function was given.

        Raises:
            ObjectNotFoundError: If no object exists at path.
            TransformError: If decrypt fails. No partial result is returned.
            StorageBackendError: If the backend cannot complete the read.
        """
        ...

    @abstractmethod
    async def write(
        self,
        path: str,
        data: bytes | bytearray | memoryview,
        encrypt: Transform | None = None,
    ) -> None:
        """Store an object, overwriting anything already at path.

        The caller's buffer is never mutated. Last write wins; there is no
        conditional write.

        Args:
            path: Full key of the object.
            data: Object content.
            encrypt: Optional function applied to a copy of data before upload.

        Raises:
            TransformError: If encrypt fails. Nothing is written.
            StorageBackendError: If the backend cannot complete the write.
        """
        ...

    @abstractmethod
    async def list(self, dir_path: str) -> list[str]:
        """List every key beginning with a prefix.

        Args:
            dir_path: Prefix to match. The whole subtree is returned.

        Returns:
            Matching keys sorted ascending. Empty list if nothing matches.

        Raises:
            StorageBackendError: If the backend cannot complete the listing.
        """
        ...

    @abstractmethod
    async def list_versions(self, file_path: str) -> list[str]:
        """List the version ids of the object at a path.

        Args:
            file_path: Full key of the object.

        Returns:
            Version ids in the order the backend reports them. Empty list if
            the object does not exist or the backend is not versioned.

        Raises:
            StorageBackendError: If the backend cannot complete the listing.
        """
        ...

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete the object at a path. Deleting a missing object succeeds.

        Raises:
            StorageBackendError: If the backend cannot complete the deletion.
        """
        ...

    @abstractmethod
    async def copy(self, src: str, dst: str) -> None:
        """Copy an object within the same store, overwriting dst.

        Both paths include the file name so a copy may also rename.

        Raises:
            ObjectNotFoundError: If no object exists at src.
            StorageBackendError: If the backend cannot complete the copy.
        """
        ...

    @traced_storage_operation("move")
    async def move(self, src: str, dst: str) -> None:
        """Move an object by copying it to dst and then deleting src.

        This is not atomic. If the copy fails the delete is never attempted
        and src is untouched. If the delete fails the object exists at both
        paths and the error propagates; there is no rollback.

        Raises:
            ObjectNotFoundError: If no object exists at src.
            StorageBackendError: If either step fails at the backend.
        """
        await self.copy(src, dst)
        await self.delete(src)
        logger.debug("Moved object: store=%s src=%s dst=%s", self.store_name, src, dst)

    @abstractmethod
    async def stat_metadata(self, path: str) -> ObjectMetadata:
        """Get object metadata without retrieving content.

        Raises:
            ObjectNotFoundError: If no object exists at path.
            StorageBackendError: If the backend cannot complete the request.
        """
        ...

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check whether an object exists at a path. Not for directories.

        Never raises. A missing object returns False; backend failures are
        logged and also reported as False.
        """
        ...

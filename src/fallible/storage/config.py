"""Storage backend selection from environment configuration.

Environment Variables:
    FALLIBLE_STORAGE_BACKEND: "s3" or "local" (default: "local")
    FALLIBLE_LOCAL_ROOT: Root directory for the local backend
        (default: tempfile.gettempdir() / fallible_store)
    FALLIBLE_S3_REGION: Region for the S3 client (optional)
    FALLIBLE_S3_ENDPOINT_URL: Endpoint for S3-compatible services such as MinIO (optional)
    FALLIBLE_S3_PAGE_SIZE: Keys requested per listing page (default: 1000)
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fallible.storage.errors import ConstructionError
from fallible.storage.facade import StorageFacade
from fallible.storage.local_facade import LocalFacade
from fallible.storage.s3_facade import DEFAULT_PAGE_SIZE, S3Facade

logger = logging.getLogger(__name__)

FALLIBLE_STORAGE_BACKEND_ENV = "FALLIBLE_STORAGE_BACKEND"
FALLIBLE_LOCAL_ROOT_ENV = "FALLIBLE_LOCAL_ROOT"
FALLIBLE_S3_REGION_ENV = "FALLIBLE_S3_REGION"
FALLIBLE_S3_ENDPOINT_URL_ENV = "FALLIBLE_S3_ENDPOINT_URL"
FALLIBLE_S3_PAGE_SIZE_ENV = "FALLIBLE_S3_PAGE_SIZE"

SUPPORTED_BACKENDS = frozenset({"s3", "local"})


def _get_env_str(key: str) -> str | None:
    """Get a stripped string from the environment, None if unset or blank."""
    val = os.environ.get(key, "").strip()
    return val or None


@dataclass(frozen=True)
class StorageSettings:
    """Snapshot of storage configuration.

    Attributes:
        backend: Backend kind, "s3" or "local".
        local_root: Root directory used by the local backend.
        s3_region: Region for a new S3 client.
        s3_endpoint_url: Endpoint for a new S3 client.
        s3_page_size: MaxKeys per listing page.
    """

    backend: str = "local"
    local_root: Path | None = None
    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    s3_page_size: int = DEFAULT_PAGE_SIZE

    @classmethod
    def from_env(cls) -> StorageSettings:
        """Read settings from FALLIBLE_* environment variables.

        Raises:
            ValueError: If FALLIBLE_S3_PAGE_SIZE is not a positive integer.
        """
        backend = (_get_env_str(FALLIBLE_STORAGE_BACKEND_ENV) or "local").lower()

        local_root_raw = _get_env_str(FALLIBLE_LOCAL_ROOT_ENV)
        if local_root_raw is None:
            local_root = Path(tempfile.gettempdir()) / "fallible_store"
        else:
            local_root = Path(local_root_raw)

        page_size_raw = _get_env_str(FALLIBLE_S3_PAGE_SIZE_ENV)
        page_size = int(page_size_raw) if page_size_raw is not None else DEFAULT_PAGE_SIZE
        if page_size < 1:
            raise ValueError(f"{FALLIBLE_S3_PAGE_SIZE_ENV} must be positive, got {page_size}")

        return cls(
            backend=backend,
            local_root=local_root,
            s3_region=_get_env_str(FALLIBLE_S3_REGION_ENV),
            s3_endpoint_url=_get_env_str(FALLIBLE_S3_ENDPOINT_URL_ENV),
            s3_page_size=page_size,
        )


async def open_facade(
    name: str,
    description: str,
    *,
    settings: StorageSettings | None = None,
    client: Any | None = None,
) -> StorageFacade:
    """Construct the configured facade for a store.

    For the s3 backend, name is the bucket name. For the local backend, name
    is a directory below settings.local_root; an absolute name is used as-is.

    Args:
        name: Store name.
        description: Why the store exists. Must be non-empty.
        settings: Settings to use. Read from the environment if None.
        client: Optional preconfigured S3 client (s3 backend only).

    Returns:
        A StorageFacade bound to the store.

    Raises:
        ConstructionError: If the backend is unknown or the store is unreachable.
    """
    if settings is None:
        settings = StorageSettings.from_env()

    if settings.backend not in SUPPORTED_BACKENDS:
        raise ConstructionError(
            message=f"Unsupported storage backend: {settings.backend}",
            store=name,
        )

    logger.debug("Opening %s facade for store=%s", settings.backend, name)

    if settings.backend == "s3":
        return await S3Facade.create(
            name,
            description,
            client=client,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            page_size=settings.s3_page_size,
        )

    root = Path(name)
    if not root.is_absolute():
        base = settings.local_root or Path(tempfile.gettempdir()) / "fallible_store"
        root = base / name
    return await LocalFacade.create(root, description)

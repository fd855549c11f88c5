"""fallible storage facades.

Provides one contract for reading, writing, listing and managing objects
across long-term storage backends.

Backends:
- S3Facade: S3-compatible object storage (boto3)
- LocalFacade: Local directory tree

Environment Variables:
    FALLIBLE_STORAGE_BACKEND: "s3" or "local" (default: "local")
    See fallible.storage.config for the full list.
"""

from fallible.storage.config import StorageSettings, open_facade
from fallible.storage.errors import (
    ConstructionError,
    ObjectNotFoundError,
    PathTraversalError,
    StorageBackendError,
    StorageError,
    TransformError,
)
from fallible.storage.facade import StorageFacade, Transform
from fallible.storage.local_facade import LocalFacade
from fallible.storage.models import (
    LocalPathId,
    ObjectMetadata,
    ObjectStoreId,
    StoreIdentity,
    StoreMetadata,
)
from fallible.storage.s3_facade import S3Facade

__all__ = [
    "StorageFacade",
    "Transform",
    "S3Facade",
    "LocalFacade",
    "StorageSettings",
    "open_facade",
    "StoreIdentity",
    "ObjectStoreId",
    "LocalPathId",
    "StoreMetadata",
    "ObjectMetadata",
    "StorageError",
    "ConstructionError",
    "TransformError",
    "ObjectNotFoundError",
    "StorageBackendError",
    "PathTraversalError",
]

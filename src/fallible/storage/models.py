"""Storage identity and metadata models.

Provides frozen dataclasses describing which store a facade is bound to and
what a single stored object looks like.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

S3_ARN_PREFIX = "arn:aws:s3:::"


@dataclass(frozen=True)
class ObjectStoreId:
    """Identity of a bucket-style object store.

    Attributes:
        locator: Backend-assigned unique resource identifier (an S3 ARN).
    """

    locator: str

    @classmethod
    def for_bucket(cls, bucket: str) -> ObjectStoreId:
        """Synthesize an identity from a bucket name."""
        return cls(locator=f"{S3_ARN_PREFIX}{bucket}")


@dataclass(frozen=True)
class LocalPathId:
    """Identity of a local directory store.

    Attributes:
        path: Absolute path of the store's root directory.
    """

    path: Path

    def __post_init__(self) -> None:
        if not self.path.is_absolute():
            raise ValueError(f"Local store root must be absolute: {self.path}")


StoreIdentity = ObjectStoreId | LocalPathId


@dataclass(frozen=True)
class StoreMetadata:
    """Identity, name and purpose of a store bound to a facade.

    Attributes:
        identity: Backend-specific identity (ObjectStoreId or LocalPathId).
        name: Addressable name of the store (bucket name or root dir name).
        description: Why the store exists. Mandatory for auditability.
    """

    identity: StoreIdentity
    name: str
    description: str

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Store name must be non-empty")
        if not self.description or not self.description.strip():
            raise ValueError("Store description must be non-empty")

    @property
    def backend_kind(self) -> str:
        """Return "s3" or "local" depending on the identity variant."""
        if isinstance(self.identity, ObjectStoreId):
            return "s3"
        return "local"

    def to_dict(self) -> dict[str, str]:
        """Convert metadata to dictionary for JSON serialization."""
        if isinstance(self.identity, ObjectStoreId):
            locator = self.identity.locator
        else:
            locator = str(self.identity.path)
        return {
            "backend": self.backend_kind,
            "locator": locator,
            "name": self.name,
            "description": self.description,
        }


@dataclass(frozen=True)
class ObjectMetadata:
    """Metadata for a single stored object.

    Attributes:
        key: Key/path of the object within its store.
        size_bytes: Size of the object content in bytes.
        last_modified: Timestamp of the last write, if the backend reports it.
        content_type: MIME type of the content, if known.
        etag: Entity tag reported by the backend (object stores only).
        version_id: Version of the object, if the backend is versioned.
        raw: Backend-native key/value metadata as returned by the backend.
    """

    key: str
    size_bytes: int
    last_modified: datetime | None = None
    content_type: str | None = None
    etag: str | None = None
    version_id: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, str | int | None]:
        """Convert metadata to dictionary for JSON serialization."""
        return {
            "key": self.key,
            "size_bytes": self.size_bytes,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "content_type": self.content_type,
            "etag": self.etag,
            "version_id": self.version_id,
        }

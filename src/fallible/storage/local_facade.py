"""Local filesystem storage facade.

Binds the StorageFacade contract to one directory tree. Keys map directly to
files below the root:
    {root}/{key}

Writes are atomic (temp file + replace). Local files are unversioned, so
list_versions always returns an empty list. Blocking filesystem calls run in a
worker thread via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import re
import shutil
import uuid
from datetime import UTC, datetime
from pathlib import Path

from fallible.storage.errors import (
    ConstructionError,
    ObjectNotFoundError,
    PathTraversalError,
    StorageBackendError,
)
from fallible.storage.facade import StorageFacade, Transform, apply_transform
from fallible.storage.models import LocalPathId, ObjectMetadata, StoreMetadata
from fallible.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

_TMP_MARKER = ".fallible-tmp-"
_TMP_NAME_PATTERN = re.compile(re.escape(_TMP_MARKER) + r"[0-9a-f]{32}$")

_DRIVE_LETTER_PATTERN = re.compile(r"^[a-zA-Z]:")


def _is_path_traversal(key: str) -> bool:
    """Check if a key could escape the store root or be rewritten by the OS.

    Detects:
    - ".." and "." segments, empty segments ("a//b") and trailing "/"
    - Absolute paths (starting with / or ~)
    - Windows drive letters and backslashes
    - Null bytes
    """
    if not key or "\x00" in key or "\\" in key:
        return True
    if key.startswith("/") or key.startswith("~"):
        return True
    if _DRIVE_LETTER_PATTERN.match(key):
        return True
    return any(segment in ("", ".", "..") for segment in key.split("/"))


class LocalFacade(StorageFacade):
    """Filesystem-based storage facade.

    Construct with ``await LocalFacade.create(root, description)``; the root
    directory must already exist.
    """

    def __init__(self, metadata: StoreMetadata) -> None:
        if not isinstance(metadata.identity, LocalPathId):
            raise TypeError("LocalFacade requires a LocalPathId identity")
        super().__init__(metadata)
        self._root = metadata.identity.path

    @classmethod
    async def create(cls, root: str | Path, description: str) -> LocalFacade:
        """Create a facade bound to an existing directory.

        Args:
            root: Root directory of the store.
            description: Why this store exists. Must be non-empty.

        Returns:
            A facade bound to the resolved root directory.

        Raises:
            ConstructionError: If the description is empty or root is not an
                existing directory.
        """
        root_path = Path(root).expanduser().resolve()
        name = root_path.name or str(root_path)

        if not description or not description.strip():
            raise ConstructionError("Store description must be non-empty", store=name)
        if not await asyncio.to_thread(root_path.is_dir):
            raise ConstructionError(
                message=f"Store root is not an existing directory: {root_path}",
                store=name,
            )

        metadata = StoreMetadata(
            identity=LocalPathId(path=root_path),
            name=name,
            description=description,
        )
        logger.debug("LocalFacade bound: root=%s", root_path)
        return cls(metadata)

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "local"

    @property
    def root(self) -> Path:
        """Return the root directory path."""
        return self._root

    def _resolve(self, key: str) -> Path:
        """Map a key to a file path below root, rejecting traversal."""
        if _is_path_traversal(key):
            raise PathTraversalError(
                message="Invalid key: path traversal or unsafe characters detected",
                store=self.store_name,
                key=key,
            )
        resolved = (self._root / key).resolve()
        try:
            resolved.relative_to(self._root)
        except ValueError as e:
            raise PathTraversalError(
                message="Path resolves outside store root",
                store=self.store_name,
                key=key,
            ) from e
        if resolved == self._root:
            raise PathTraversalError(
                message="Key resolves to the store root itself",
                store=self.store_name,
                key=key,
            )
        return resolved

    def _read_bytes(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise ObjectNotFoundError(store=self.store_name, key=key) from e
        except OSError as e:
            raise StorageBackendError(
                message=f"Failed to read object: {e}",
                store=self.store_name,
                key=key,
                cause=e,
            ) from e

    def _write_bytes(self, key: str, data: bytes) -> None:
        path = self._resolve(key)
        tmp_file = path.with_name(f"{path.name}{_TMP_MARKER}{uuid.uuid4().hex}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_file.write_bytes(data)
            os.replace(tmp_file, path)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise StorageBackendError(
                message=f"Failed to write object: {e}",
                store=self.store_name,
                key=key,
                cause=e,
            ) from e

    def _list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            for dirpath, _dirnames, filenames in os.walk(self._root):
                for filename in filenames:
                    if _TMP_NAME_PATTERN.search(filename):
                        continue
                    key = (Path(dirpath) / filename).relative_to(self._root).as_posix()
                    if key.startswith(prefix):
                        keys.append(key)
        except OSError as e:
            raise StorageBackendError(
                message=f"Failed to list objects: {e}",
                store=self.store_name,
                key=prefix,
                cause=e,
            ) from e
        keys.sort()
        return keys

    def _delete_file(self, key: str) -> None:
        path = self._resolve(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageBackendError(
                message=f"Failed to delete object: {e}",
                store=self.store_name,
                key=key,
                cause=e,
            ) from e

    def _copy_file(self, src: str, dst: str) -> None:
        src_path = self._resolve(src)
        dst_path = self._resolve(dst)
        if not src_path.is_file():
            raise ObjectNotFoundError(store=self.store_name, key=src)
        try:
            dst_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src_path, dst_path)
        except OSError as e:
            raise StorageBackendError(
                message=f"Failed to copy object: {e}",
                store=self.store_name,
                key=src,
                cause=e,
            ) from e

    def _stat(self, key: str) -> ObjectMetadata:
        path = self._resolve(key)
        if not path.is_file():
            raise ObjectNotFoundError(store=self.store_name, key=key)
        try:
            st = path.stat()
        except OSError as e:
            raise StorageBackendError(
                message=f"Failed to stat object: {e}",
                store=self.store_name,
                key=key,
                cause=e,
            ) from e

        content_type, _encoding = mimetypes.guess_type(path.name)
        return ObjectMetadata(
            key=key,
            size_bytes=st.st_size,
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=UTC),
            content_type=content_type,
            raw={
                "st_mode": st.st_mode,
                "st_size": st.st_size,
                "st_mtime": st.st_mtime,
                "st_ctime": st.st_ctime,
            },
        )

    @traced_storage_operation("read")
    async def read(self, path: str, decrypt: Transform | None = None) -> bytes:
        """Read a file and optionally decrypt it."""
        data = await asyncio.to_thread(self._read_bytes, path)
        if decrypt is not None:
            data = await apply_transform(
                decrypt, data, store=self.store_name, key=path, direction="decrypt"
            )
        return data

    @traced_storage_operation("write")
    async def write(
        self,
        path: str,
        data: bytes | bytearray | memoryview,
        encrypt: Transform | None = None,
    ) -> None:
        """Write a file atomically, optionally encrypting it first."""
        payload = bytes(data)
        if encrypt is not None:
            payload = await apply_transform(
                encrypt, payload, store=self.store_name, key=path, direction="encrypt"
            )
        await asyncio.to_thread(self._write_bytes, path, payload)
        logger.debug("Stored object: store=%s key=%s size=%d", self.store_name, path, len(payload))

    @traced_storage_operation("list")
    async def list(self, dir_path: str) -> list[str]:
        """List files below root whose relative key starts with a prefix."""
        return await asyncio.to_thread(self._list_keys, dir_path)

    @traced_storage_operation("list_versions")
    async def list_versions(self, file_path: str) -> list[str]:
        """Local files are unversioned; always an empty list."""
        self._resolve(file_path)
        return []

    @traced_storage_operation("delete")
    async def delete(self, path: str) -> None:
        """Delete a file. A missing file is not an error."""
        await asyncio.to_thread(self._delete_file, path)
        logger.debug("Deleted object: store=%s key=%s", self.store_name, path)

    @traced_storage_operation("copy")
    async def copy(self, src: str, dst: str) -> None:
        """Copy a file within the store."""
        await asyncio.to_thread(self._copy_file, src, dst)
        logger.debug("Copied object: store=%s src=%s dst=%s", self.store_name, src, dst)

    @traced_storage_operation("stat_metadata")
    async def stat_metadata(self, path: str) -> ObjectMetadata:
        """Return size, mtime and guessed content type for a file."""
        return await asyncio.to_thread(self._stat, path)

    @traced_storage_operation("exists")
    async def exists(self, path: str) -> bool:
        """Return True if a regular file exists at the key."""
        try:
            target = self._resolve(path)
            return await asyncio.to_thread(target.is_file)
        except (PathTraversalError, OSError) as e:
            logger.warning(
                "Treating failed existence probe as missing: store=%s key=%s error=%s",
                self.store_name,
                path,
                e,
            )
            return False

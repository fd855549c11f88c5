"""S3-compatible object storage facade.

Binds the StorageFacade contract to a single bucket through a boto3 client.
boto3 is synchronous, so every request runs in a worker thread via
asyncio.to_thread and the calling task is suspended until it completes.
Credentials, region and endpoint resolution are left to boto3's default
chain unless a preconfigured client is passed in.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import closing
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from fallible.storage.errors import (
    ConstructionError,
    ObjectNotFoundError,
    StorageBackendError,
    StorageError,
)
from fallible.storage.facade import StorageFacade, Transform, apply_transform
from fallible.storage.models import ObjectMetadata, ObjectStoreId, StoreMetadata
from fallible.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000

# NoSuchBucket is also a 404 but means the store is gone, not the object.
_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchVersion", "NotFound", "404"})


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _is_not_found(error: ClientError) -> bool:
    """Return True if a ClientError means the object key does not exist."""
    code = _error_code(error)
    if code in _NOT_FOUND_CODES:
        return True
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return status == 404 and code != "NoSuchBucket"


def _build_client(region: str | None, endpoint_url: str | None) -> Any:
    session = boto3.session.Session(region_name=region) if region else boto3.session.Session()
    return session.client("s3", endpoint_url=endpoint_url)


class S3Facade(StorageFacade):
    """Storage facade for one S3-compatible bucket.

    Construct with ``await S3Facade.create(name, description)``; the
    constructor probes the bucket with head-bucket and never returns a
    facade for a bucket it cannot reach.

    Listings page through the bucket sequentially and return the fully
    materialized result. Move is copy followed by delete (see
    StorageFacade.move).
    """

    def __init__(
        self,
        client: Any,
        metadata: StoreMetadata,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        """Bind an already validated client and store metadata.

        Prefer create(), which performs the existence probe.

        Args:
            client: boto3 S3 client (or compatible object).
            metadata: Metadata of the bucket this facade is bound to.
            page_size: MaxKeys requested per listing page.
        """
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")
        super().__init__(metadata)
        self._client = client
        self._page_size = page_size

    @classmethod
    async def create(
        cls,
        name: str,
        description: str,
        *,
        client: Any | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> S3Facade:
        """Create a facade bound to an existing, reachable bucket.

        Args:
            name: Bucket name. Must name an existing bucket.
            description: Why this store exists. Must be non-empty.
            client: Optional preconfigured boto3 S3 client.
            region: Region for a new client when client is None.
            endpoint_url: Endpoint for a new client (e.g. MinIO) when client is None.
            page_size: MaxKeys requested per listing page.

        Returns:
            A facade bound to the bucket.

        Raises:
            ConstructionError: If the arguments are invalid or the bucket is
                missing, unreachable or not authorized.
        """
        if not name:
            raise ConstructionError("Bucket name must be non-empty")
        if not description or not description.strip():
            raise ConstructionError("Store description must be non-empty", store=name)

        if client is None:
            try:
                client = _build_client(region, endpoint_url)
            except (BotoCoreError, ValueError) as e:
                raise ConstructionError(
                    message=f"Cannot build S3 client: {e}",
                    store=name,
                    cause=e,
                ) from e

        try:
            response = await asyncio.to_thread(client.head_bucket, Bucket=name)
        except (ClientError, BotoCoreError) as e:
            raise ConstructionError(
                message=f"Bucket is missing, unreachable or not authorized: {e}",
                store=name,
                cause=e,
            ) from e

        arn = response.get("BucketArn") if isinstance(response, dict) else None
        identity = ObjectStoreId(locator=arn) if arn else ObjectStoreId.for_bucket(name)
        metadata = StoreMetadata(identity=identity, name=name, description=description)

        logger.debug("S3Facade bound: bucket=%s locator=%s", name, identity.locator)
        return cls(client, metadata, page_size=page_size)

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "s3"

    async def _run(self, key: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        """Run a blocking client call in a worker thread, translating errors."""
        try:
            return await asyncio.to_thread(func, **kwargs)
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(store=self.store_name, key=key) from e
            raise StorageBackendError(
                message=f"S3 request failed ({_error_code(e) or 'unknown'}): {e}",
                store=self.store_name,
                key=key,
                cause=e,
            ) from e
        except BotoCoreError as e:
            raise StorageBackendError(
                message=f"S3 transport failed: {e}",
                store=self.store_name,
                key=key,
                cause=e,
            ) from e

    def _get_body(self, path: str) -> bytes:
        response = self._client.get_object(Bucket=self.store_name, Key=path)
        with closing(response["Body"]) as body:
            return body.read()

    @traced_storage_operation("read")
    async def read(self, path: str, decrypt: Transform | None = None) -> bytes:
        """Fetch an object and optionally decrypt it."""
        data = await self._run(path, self._get_body, path=path)

        if decrypt is not None:
            data = await apply_transform(
                decrypt, data, store=self.store_name, key=path, direction="decrypt"
            )

        logger.debug("Read object: store=%s key=%s size=%d", self.store_name, path, len(data))
        return data

    @traced_storage_operation("write")
    async def write(
        self,
        path: str,
        data: bytes | bytearray | memoryview,
        encrypt: Transform | None = None,
    ) -> None:
        """Upload an object in a single request, optionally encrypting it first."""
        payload = bytes(data)
        if encrypt is not None:
            payload = await apply_transform(
                encrypt, payload, store=self.store_name, key=path, direction="encrypt"
            )

        await self._run(
            path,
            self._client.put_object,
            Bucket=self.store_name,
            Key=path,
            Body=payload,
        )
        logger.debug("Stored object: store=%s key=%s size=%d", self.store_name, path, len(payload))

    @traced_storage_operation("list")
    async def list(self, dir_path: str) -> list[str]:
        """List every key under a prefix, following continuation tokens."""
        keys: list[str] = []
        params: dict[str, Any] = {
            "Bucket": self.store_name,
            "Prefix": dir_path,
            "MaxKeys": self._page_size,
        }
        pages = 0

        while True:
            page = await self._run(dir_path, self._client.list_objects_v2, **params)
            pages += 1
            keys.extend(obj["Key"] for obj in page.get("Contents", []))

            if not page.get("IsTruncated"):
                break

            token = page.get("NextContinuationToken")
            if not token:
                raise StorageBackendError(
                    message="Truncated listing returned no continuation token",
                    store=self.store_name,
                    key=dir_path,
                )
            params["ContinuationToken"] = token

        keys.sort()
        logger.debug(
            "Listed objects: store=%s prefix=%s count=%d pages=%d",
            self.store_name,
            dir_path,
            len(keys),
            pages,
        )
        return keys

    @traced_storage_operation("list_versions")
    async def list_versions(self, file_path: str) -> list[str]:
        """List version ids of one key, following key and version-id markers."""
        versions: list[str] = []
        params: dict[str, Any] = {
            "Bucket": self.store_name,
            "Prefix": file_path,
            "MaxKeys": self._page_size,
        }

        while True:
            page = await self._run(file_path, self._client.list_object_versions, **params)
            # The prefix also matches longer keys such as "report.txt.bak".
            versions.extend(
                v["VersionId"] for v in page.get("Versions", []) if v.get("Key") == file_path
            )

            if not page.get("IsTruncated"):
                break

            key_marker = page.get("NextKeyMarker")
            version_marker = page.get("NextVersionIdMarker")
            if not key_marker:
                raise StorageBackendError(
                    message="Truncated version listing returned no key marker",
                    store=self.store_name,
                    key=file_path,
                )
            params["KeyMarker"] = key_marker
            if version_marker:
                params["VersionIdMarker"] = version_marker
            else:
                params.pop("VersionIdMarker", None)

        logger.debug(
            "Listed versions: store=%s key=%s count=%d", self.store_name, file_path, len(versions)
        )
        return versions

    @traced_storage_operation("delete")
    async def delete(self, path: str) -> None:
        """Delete an object. A missing object is not an error."""
        try:
            await self._run(path, self._client.delete_object, Bucket=self.store_name, Key=path)
        except ObjectNotFoundError:
            logger.debug("Delete of missing object ignored: store=%s key=%s", self.store_name, path)
            return
        logger.debug("Deleted object: store=%s key=%s", self.store_name, path)

    @traced_storage_operation("copy")
    async def copy(self, src: str, dst: str) -> None:
        """Server-side copy within this bucket."""
        await self._run(
            src,
            self._client.copy_object,
            Bucket=self.store_name,
            Key=dst,
            CopySource=f"{self.store_name}/{src}",
        )
        logger.debug("Copied object: store=%s src=%s dst=%s", self.store_name, src, dst)

    @traced_storage_operation("stat_metadata")
    async def stat_metadata(self, path: str) -> ObjectMetadata:
        """Return head-object metadata for a key."""
        response = await self._run(
            path, self._client.head_object, Bucket=self.store_name, Key=path
        )
        raw = {k: v for k, v in response.items() if k != "ResponseMetadata"}
        etag = raw.get("ETag")

        return ObjectMetadata(
            key=path,
            size_bytes=int(raw.get("ContentLength", 0)),
            last_modified=raw.get("LastModified"),
            content_type=raw.get("ContentType"),
            etag=etag.strip('"') if etag else None,
            version_id=raw.get("VersionId"),
            raw=raw,
        )

    @traced_storage_operation("exists")
    async def exists(self, path: str) -> bool:
        """Probe a key with head-object.

        Any failure reads as False. Failures other than a 404 are logged,
        since they usually mean the bucket is unreachable rather than that
        the object is absent.
        """
        try:
            await self._run(path, self._client.head_object, Bucket=self.store_name, Key=path)
        except ObjectNotFoundError:
            return False
        except StorageError as e:
            logger.warning(
                "Treating failed existence probe as missing: store=%s key=%s error=%s",
                self.store_name,
                path,
                e,
            )
            return False
        return True

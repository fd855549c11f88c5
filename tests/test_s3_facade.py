"""Tests for the S3 storage facade.

Runs against FakeS3Client, which mirrors boto3's call surface and S3's
error codes:
- Construction: bucket probe, locator resolution, fail-fast errors
- Pagination: continuation tokens and version markers are followed
- Error translation: 404 -> ObjectNotFoundError, others -> StorageBackendError
- exists(): every failure reads as False, non-404 causes are logged
- move(): copy then delete, no rollback
"""

from __future__ import annotations

import asyncio
import logging

import pytest
from botocore.exceptions import BotoCoreError, EndpointConnectionError

from fallible.storage.errors import (
    ConstructionError,
    StorageBackendError,
)
from fallible.storage.models import ObjectStoreId
from fallible.storage.s3_facade import S3Facade
from tests.fixtures.fake_s3 import TEST_BUCKET_NAME, FakeS3Client, client_error


class TestConstruction:
    """Tests for S3Facade.create()."""

    @pytest.mark.asyncio
    async def test_create_binds_bucket_metadata(self, fake_s3: FakeS3Client) -> None:
        """Name, description and synthesized ARN are captured at construction."""
        facade = await S3Facade.create(TEST_BUCKET_NAME, "Audit evidence archive", client=fake_s3)

        metadata = facade.describe()
        assert metadata.name == TEST_BUCKET_NAME
        assert metadata.description == "Audit evidence archive"
        assert isinstance(metadata.identity, ObjectStoreId)
        assert metadata.identity.locator == f"arn:aws:s3:::{TEST_BUCKET_NAME}"
        assert fake_s3.call_count("head_bucket") == 1

    @pytest.mark.asyncio
    async def test_create_prefers_backend_reported_arn(self) -> None:
        """A BucketArn in the head-bucket response is used as the locator."""
        arn = "arn:aws:s3:eu-west-1:123456789012:bucket/reported"
        client = FakeS3Client([TEST_BUCKET_NAME], bucket_arn=arn)

        facade = await S3Facade.create(TEST_BUCKET_NAME, "desc", client=client)

        assert facade.describe().identity == ObjectStoreId(locator=arn)

    @pytest.mark.asyncio
    async def test_create_missing_bucket_raises_construction_error(
        self, fake_s3: FakeS3Client
    ) -> None:
        """A bucket that does not exist never yields a facade."""
        with pytest.raises(ConstructionError) as exc_info:
            await S3Facade.create("no-such-bucket", "desc", client=fake_s3)

        assert exc_info.value.store == "no-such-bucket"
        assert exc_info.value.cause is not None

    @pytest.mark.asyncio
    async def test_create_unauthorized_bucket_raises_construction_error(
        self, fake_s3: FakeS3Client
    ) -> None:
        """A 403 from head-bucket is a construction failure."""
        fake_s3.fail_on["head_bucket"] = client_error("403", 403, "HeadBucket")

        with pytest.raises(ConstructionError):
            await S3Facade.create(TEST_BUCKET_NAME, "desc", client=fake_s3)

    @pytest.mark.asyncio
    async def test_create_network_failure_raises_construction_error(
        self, fake_s3: FakeS3Client
    ) -> None:
        """Transport errors during the probe are wrapped, not leaked."""
        cause = EndpointConnectionError(endpoint_url="https://s3.invalid")
        fake_s3.fail_on["head_bucket"] = cause

        with pytest.raises(ConstructionError) as exc_info:
            await S3Facade.create(TEST_BUCKET_NAME, "desc", client=fake_s3)

        assert exc_info.value.cause is cause

    @pytest.mark.asyncio
    @pytest.mark.parametrize("description", ["", "   "])
    async def test_create_requires_description(
        self, fake_s3: FakeS3Client, description: str
    ) -> None:
        """An empty description is rejected before any request is made."""
        with pytest.raises(ConstructionError):
            await S3Facade.create(TEST_BUCKET_NAME, description, client=fake_s3)

        assert fake_s3.calls == []

    @pytest.mark.asyncio
    async def test_create_malformed_endpoint_raises_construction_error(self) -> None:
        """Client construction failures are wrapped like probe failures."""
        with pytest.raises(ConstructionError) as exc_info:
            await S3Facade.create(
                TEST_BUCKET_NAME,
                "desc",
                region="us-east-1",
                endpoint_url="not a url",
            )

        assert exc_info.value.store == TEST_BUCKET_NAME
        assert isinstance(exc_info.value.cause, (ValueError, BotoCoreError))

    @pytest.mark.asyncio
    async def test_create_requires_bucket_name(self, fake_s3: FakeS3Client) -> None:
        """An empty bucket name is rejected."""
        with pytest.raises(ConstructionError):
            await S3Facade.create("", "desc", client=fake_s3)

    def test_page_size_must_be_positive(self, fake_s3: FakeS3Client) -> None:
        """Direct construction validates page_size."""
        from fallible.storage.models import StoreMetadata

        metadata = StoreMetadata(
            identity=ObjectStoreId.for_bucket(TEST_BUCKET_NAME),
            name=TEST_BUCKET_NAME,
            description="desc",
        )
        with pytest.raises(ValueError):
            S3Facade(fake_s3, metadata, page_size=0)

    @pytest.mark.asyncio
    async def test_backend_name(self, s3_facade: S3Facade) -> None:
        """Backend name should be 's3'."""
        assert s3_facade.backend_name == "s3"


class TestRequests:
    """Tests for the requests each operation issues."""

    @pytest.mark.asyncio
    async def test_write_issues_single_put(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """A write is one full-object upload to the bound bucket."""
        await s3_facade.write("requests/one.txt", b"payload")

        puts = [kwargs for name, kwargs in fake_s3.calls if name == "put_object"]
        assert len(puts) == 1
        assert puts[0]["Bucket"] == TEST_BUCKET_NAME
        assert puts[0]["Key"] == "requests/one.txt"
        assert puts[0]["Body"] == b"payload"

    @pytest.mark.asyncio
    async def test_encrypted_write_uploads_ciphertext(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """The encrypt hook runs before upload."""
        await s3_facade.write("requests/enc.txt", b"abc", encrypt=lambda d: d[::-1])

        assert fake_s3.stored_bytes(TEST_BUCKET_NAME, "requests/enc.txt") == b"cba"

    @pytest.mark.asyncio
    async def test_copy_source_is_bucket_slash_key(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """Copies are server-side within the bound bucket."""
        await s3_facade.write("requests/src.txt", b"x")

        await s3_facade.copy("requests/src.txt", "requests/dst.txt")

        copies = [kwargs for name, kwargs in fake_s3.calls if name == "copy_object"]
        assert copies == [
            {
                "Bucket": TEST_BUCKET_NAME,
                "Key": "requests/dst.txt",
                "CopySource": f"{TEST_BUCKET_NAME}/requests/src.txt",
            }
        ]

    @pytest.mark.asyncio
    async def test_exists_uses_head_object_not_get(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """Existence checks are metadata probes."""
        await s3_facade.exists("requests/anything.txt")

        assert fake_s3.call_count("head_object") == 1
        assert fake_s3.call_count("get_object") == 0


class TestPagination:
    """Tests for listing pagination."""

    @pytest.mark.asyncio
    async def test_list_follows_continuation_tokens(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """Five keys at two per page take three sequential requests."""
        keys = [f"pages/{c}.txt" for c in "edcba"]
        for key in keys:
            await s3_facade.write(key, b"x")

        listed = await s3_facade.list("pages/")

        assert listed == sorted(keys)
        assert fake_s3.call_count("list_objects_v2") == 3
        list_calls = [kwargs for name, kwargs in fake_s3.calls if name == "list_objects_v2"]
        assert "ContinuationToken" not in list_calls[0]
        assert all("ContinuationToken" in kwargs for kwargs in list_calls[1:])

    @pytest.mark.asyncio
    async def test_truncated_listing_without_token_raises(
        self, s3_facade: S3Facade, monkeypatch: pytest.MonkeyPatch, fake_s3: FakeS3Client
    ) -> None:
        """A truncated page with no token is a backend error, not an endless loop."""
        monkeypatch.setattr(
            fake_s3, "list_objects_v2", lambda **kwargs: {"IsTruncated": True, "Contents": []}
        )

        with pytest.raises(StorageBackendError):
            await s3_facade.list("pages/")

    @pytest.mark.asyncio
    async def test_list_versions_follows_markers(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """Version listings chain key and version-id markers across pages."""
        for i in range(5):
            await s3_facade.write("versions/report.txt", f"v{i}".encode())

        versions = await s3_facade.list_versions("versions/report.txt")

        assert len(versions) == 5
        assert len(set(versions)) == 5
        version_calls = [
            kwargs for name, kwargs in fake_s3.calls if name == "list_object_versions"
        ]
        assert len(version_calls) == 3
        assert "KeyMarker" not in version_calls[0]
        assert version_calls[1]["KeyMarker"] == "versions/report.txt"
        assert "VersionIdMarker" in version_calls[1]

    @pytest.mark.asyncio
    async def test_list_versions_newest_first(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """Versions keep the backend's order (S3 reports newest first)."""
        await s3_facade.write("versions/doc.txt", b"old")
        await s3_facade.write("versions/doc.txt", b"new")

        versions = await s3_facade.list_versions("versions/doc.txt")
        latest = await s3_facade.stat_metadata("versions/doc.txt")

        assert versions[0] == latest.version_id

    @pytest.mark.asyncio
    async def test_list_versions_excludes_longer_keys(self, s3_facade: S3Facade) -> None:
        """Keys that merely share the prefix are not versions of the file."""
        await s3_facade.write("versions/a.txt", b"1")
        await s3_facade.write("versions/a.txt.bak", b"2")

        assert len(await s3_facade.list_versions("versions/a.txt")) == 1

    @pytest.mark.asyncio
    async def test_list_versions_of_missing_key_is_empty(self, s3_facade: S3Facade) -> None:
        """No versions for a key that was never written."""
        assert await s3_facade.list_versions("versions/never.txt") == []


class TestErrorHandling:
    """Tests for error translation."""

    @pytest.mark.asyncio
    async def test_access_denied_on_read_is_backend_error(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """Non-404 client errors keep their cause."""
        denied = client_error("AccessDenied", 403, "GetObject")
        fake_s3.fail_on["get_object"] = denied

        with pytest.raises(StorageBackendError) as exc_info:
            await s3_facade.read("errors/secret.txt")

        assert exc_info.value.cause is denied
        assert "AccessDenied" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_failure_on_write_is_backend_error(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """botocore transport errors are wrapped as StorageBackendError."""
        fake_s3.fail_on["put_object"] = EndpointConnectionError(endpoint_url="https://s3.invalid")

        with pytest.raises(StorageBackendError) as exc_info:
            await s3_facade.write("errors/file.txt", b"x")

        assert isinstance(exc_info.value.cause, EndpointConnectionError)

    @pytest.mark.asyncio
    async def test_deleted_bucket_is_not_reported_as_missing_object(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """NoSuchBucket is a backend failure even though it is a 404."""
        fake_s3.fail_on["get_object"] = client_error("NoSuchBucket", 404, "GetObject")

        with pytest.raises(StorageBackendError):
            await s3_facade.read("errors/file.txt")

    @pytest.mark.asyncio
    async def test_delete_tolerates_no_such_key(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """Delete treats a NoSuchKey response as success."""
        fake_s3.fail_on["delete_object"] = client_error("NoSuchKey", 404, "DeleteObject")

        await s3_facade.delete("errors/gone.txt")

    @pytest.mark.asyncio
    async def test_delete_propagates_access_denied(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """Other delete failures propagate."""
        fake_s3.fail_on["delete_object"] = client_error("AccessDenied", 403, "DeleteObject")

        with pytest.raises(StorageBackendError):
            await s3_facade.delete("errors/file.txt")


class TestExistsMasking:
    """Tests for exists() collapsing failures into False."""

    @pytest.mark.asyncio
    async def test_forbidden_probe_reads_as_missing_and_is_logged(
        self,
        s3_facade: S3Facade,
        fake_s3: FakeS3Client,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A 403 returns False but leaves a warning with the cause."""
        await s3_facade.write("exists/present.txt", b"x")
        fake_s3.fail_on["head_object"] = client_error("403", 403, "HeadObject")

        with caplog.at_level(logging.WARNING, logger="fallible.storage.s3_facade"):
            assert await s3_facade.exists("exists/present.txt") is False

        assert any("existence probe" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_network_failure_reads_as_missing(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """Transport errors never escape exists()."""
        fake_s3.fail_on["head_object"] = EndpointConnectionError(endpoint_url="https://s3.invalid")

        assert await s3_facade.exists("exists/anything.txt") is False

    @pytest.mark.asyncio
    async def test_plain_miss_is_not_logged_as_warning(
        self, s3_facade: S3Facade, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An ordinary 404 is not a warning."""
        with caplog.at_level(logging.WARNING, logger="fallible.storage.s3_facade"):
            assert await s3_facade.exists("exists/missing.txt") is False

        assert caplog.records == []


class TestMoveFailures:
    """Tests for the non-atomic move."""

    @pytest.mark.asyncio
    async def test_failed_copy_never_deletes_source(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """If the copy fails the source is untouched and delete is not attempted."""
        await s3_facade.write("move/source.txt", b"keep me")
        fake_s3.fail_on["copy_object"] = client_error("AccessDenied", 403, "CopyObject")

        with pytest.raises(StorageBackendError):
            await s3_facade.move("move/source.txt", "move/dest.txt")

        assert fake_s3.call_count("delete_object") == 0
        fake_s3.fail_on.clear()
        assert await s3_facade.read("move/source.txt") == b"keep me"

    @pytest.mark.asyncio
    async def test_failed_delete_leaves_both_copies(
        self, s3_facade: S3Facade, fake_s3: FakeS3Client
    ) -> None:
        """If the delete fails the object exists at both paths and the error surfaces."""
        await s3_facade.write("move/source.txt", b"duplicated")
        fake_s3.fail_on["delete_object"] = client_error("AccessDenied", 403, "DeleteObject")

        with pytest.raises(StorageBackendError):
            await s3_facade.move("move/source.txt", "move/dest.txt")

        assert await s3_facade.exists("move/source.txt") is True
        assert await s3_facade.exists("move/dest.txt") is True
        assert await s3_facade.read("move/dest.txt") == b"duplicated"


class TestStatMetadata:
    """Tests for stat_metadata()."""

    @pytest.mark.asyncio
    async def test_stat_metadata_maps_head_object_fields(self, s3_facade: S3Facade) -> None:
        """Size, ETag, content type and version come from head-object."""
        await s3_facade.write("stat/file.bin", b"0123456789")

        meta = await s3_facade.stat_metadata("stat/file.bin")

        assert meta.size_bytes == 10
        assert meta.etag is not None and not meta.etag.startswith('"')
        assert meta.content_type == "binary/octet-stream"
        assert meta.version_id is not None
        assert "ResponseMetadata" not in meta.raw
        assert meta.raw["ContentLength"] == 10


class TestConcurrency:
    """Tests for concurrent use of one facade."""

    @pytest.mark.asyncio
    async def test_concurrent_writes_to_distinct_keys(self, s3_facade: S3Facade) -> None:
        """Many operations may run against one facade at once."""
        keys = [f"concurrent/{i:03d}.txt" for i in range(20)]

        await asyncio.gather(*(s3_facade.write(k, k.encode()) for k in keys))
        contents = await asyncio.gather(*(s3_facade.read(k) for k in keys))

        assert contents == [k.encode() for k in keys]
        assert await s3_facade.list("concurrent/") == keys

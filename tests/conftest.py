"""Pytest configuration and fixtures for fallible tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest
import pytest_asyncio

from fallible.storage.facade import StorageFacade
from fallible.storage.local_facade import LocalFacade
from fallible.storage.s3_facade import S3Facade
from tests.fixtures.fake_s3 import TEST_BUCKET_NAME, TEST_PAGE_SIZE, FakeS3Client

_ENV_VARS = [
    "FALLIBLE_STORAGE_BACKEND",
    "FALLIBLE_LOCAL_ROOT",
    "FALLIBLE_S3_REGION",
    "FALLIBLE_S3_ENDPOINT_URL",
    "FALLIBLE_S3_PAGE_SIZE",
    "FALLIBLE_OTEL_ENABLED",
    "FALLIBLE_OTEL_TEST_CAPTURE",
]


@pytest.fixture(autouse=True)
def clean_fallible_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear FALLIBLE_* variables so host settings never leak into tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def temp_storage_dir() -> Iterator[Path]:
    """Create a temporary directory for local store tests."""
    with tempfile.TemporaryDirectory(prefix="fallible_test_storage_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_s3() -> FakeS3Client:
    """Return a fake S3 client with the test bucket already created."""
    return FakeS3Client([TEST_BUCKET_NAME])


@pytest_asyncio.fixture
async def s3_facade(fake_s3: FakeS3Client) -> S3Facade:
    """Create an S3Facade bound to the fake test bucket."""
    return await S3Facade.create(
        TEST_BUCKET_NAME,
        "Integration tests for the S3 facade",
        client=fake_s3,
        page_size=TEST_PAGE_SIZE,
    )


@pytest_asyncio.fixture
async def local_facade(temp_storage_dir: Path) -> LocalFacade:
    """Create a LocalFacade bound to a temporary directory."""
    return await LocalFacade.create(temp_storage_dir, "Integration tests for the local facade")


@pytest_asyncio.fixture(params=["s3", "local"])
async def facade(request: pytest.FixtureRequest, temp_storage_dir: Path) -> StorageFacade:
    """Create each backend in turn for contract tests."""
    if request.param == "s3":
        return await S3Facade.create(
            TEST_BUCKET_NAME,
            "Contract tests against the S3 facade",
            client=FakeS3Client([TEST_BUCKET_NAME]),
            page_size=TEST_PAGE_SIZE,
        )
    return await LocalFacade.create(temp_storage_dir, "Contract tests against the local facade")


# tests/conftest.py
"""
Pytest configuration and fixtures for the cold-mirror unit tests.

This module provides:
- An in-memory, asynchronous fake of the aiobotocore S3 client surface used
  by the engine (listing, get/head/put, multipart upload, buckets), with
  hooks for injecting failures and delays.
- A fake session so `run()` can be exercised without a network.
- Configuration fixtures pointing at two fake buckets.
"""

import asyncio
import hashlib
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
)

import pytest
from botocore.exceptions import ClientError

from cold_mirror.config import AppConfig, Config, S3Config

SOURCE_BUCKET: str = "source-bucket"
ARCHIVE_BUCKET: str = "archive-bucket"

_METADATA_PARAMS: Tuple[str, ...] = (
    "ContentType",
    "ContentEncoding",
    "ContentDisposition",
    "ContentLanguage",
    "CacheControl",
    "Metadata",
)


def _client_error(code: str, operation: str, message: str = "") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": message or code}}, operation
    )


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


@dataclass
class StoredObject:
    """An object held by `FakeS3Client`."""

    body: bytes
    etag: str
    params: Dict[str, Any] = field(default_factory=dict)


class FakeStreamingBody:
    """
    Minimal stand-in for `aiobotocore.response.StreamingBody`.

    Attributes:
        max_read (int, optional): Cap on bytes returned per read, to mimic
            short network reads.
        fail_after (int, optional): Raise `OSError` once this many bytes have
            been returned.
    """

    def __init__(
        self,
        data: bytes,
        max_read: Optional[int] = None,
        fail_after: Optional[int] = None,
    ) -> None:
        self._data: bytes = data
        self._offset: int = 0
        self._max_read: Optional[int] = max_read
        self._fail_after: Optional[int] = fail_after
        self.closed: bool = False

    async def read(self, amt: Optional[int] = None) -> bytes:
        await asyncio.sleep(0)
        if self._fail_after is not None and self._offset >= self._fail_after:
            raise OSError("Connection reset while reading body")
        remaining: int = len(self._data) - self._offset
        size: int = remaining if amt is None else min(amt, remaining)
        if self._max_read is not None:
            size = min(size, self._max_read)
        if self._fail_after is not None:
            size = min(size, max(self._fail_after - self._offset, 0))
        chunk: bytes = self._data[self._offset : self._offset + size]
        self._offset += size
        return chunk

    def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> "FakeStreamingBody":
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.close()


class FakePaginator:
    """Paginates `list_objects_v2` over a `FakeS3Client` bucket."""

    def __init__(self, client: "FakeS3Client") -> None:
        self._client: FakeS3Client = client

    def paginate(
        self, Bucket: str, PaginationConfig: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        page_size: int = (PaginationConfig or {}).get("PageSize", 1000)
        return self._pages(Bucket, page_size)

    async def _pages(
        self, bucket: str, page_size: int
    ) -> AsyncIterator[Dict[str, Any]]:
        keys: List[str] = sorted(self._client.bucket(bucket, "ListObjectsV2"))
        self._client.list_requests += 1
        if not keys:
            yield {"KeyCount": 0, "IsTruncated": False}
            return
        for index, start in enumerate(range(0, len(keys), page_size)):
            if (
                self._client.fail_list_at_page is not None
                and index >= self._client.fail_list_at_page
            ):
                raise _client_error("InternalError", "ListObjectsV2")
            await asyncio.sleep(0)
            page_keys: List[str] = keys[start : start + page_size]
            yield {
                "Contents": [{"Key": key} for key in page_keys],
                "KeyCount": len(page_keys),
                "IsTruncated": start + page_size < len(keys),
            }


class FakeS3Client:
    """
    In-memory asynchronous fake of the S3 client operations the engine uses.

    Failure hooks are plain sets of keys so tests can target single objects.
    Every mutating or reading call is appended to `calls` as ``(op, key)``.
    """

    def __init__(self, *buckets: str) -> None:
        self.buckets: Dict[str, Dict[str, StoredObject]] = {b: {} for b in buckets}
        self.uploads: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_get: Set[str] = set()
        self.fail_read: Set[str] = set()
        self.fail_put: Set[str] = set()
        self.fail_head: Set[str] = set()
        self.fail_list_at_page: Optional[int] = None
        self.max_read: Optional[int] = None
        self.get_delay_s: float = 0.0
        self.head_delay_s: float = 0.0
        self.opened: List[FakeStreamingBody] = []
        self.list_requests: int = 0

    # --- Test helpers ---
    def bucket(
        self, name: str, operation: str = "Operation"
    ) -> Dict[str, StoredObject]:
        if name not in self.buckets:
            raise _client_error("NoSuchBucket", operation)
        return self.buckets[name]

    def seed(self, bucket: str, key: str, body: bytes, **params: Any) -> None:
        """Stores an object directly, as a single PUT would."""
        self.bucket(bucket)[key] = StoredObject(
            body=body, etag=f'"{md5_hex(body)}"', params=dict(params)
        )

    def body_of(self, bucket: str, key: str) -> bytes:
        return self.bucket(bucket)[key].body

    def count(self, operation: str, key: Optional[str] = None) -> int:
        return sum(
            1 for op, k in self.calls if op == operation and (key is None or k == key)
        )

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self)

    # --- Buckets ---
    async def head_bucket(self, Bucket: str) -> Dict[str, Any]:
        if Bucket not in self.buckets:
            raise _client_error("404", "HeadBucket", "Not Found")
        return {}

    async def create_bucket(self, Bucket: str, **kwargs: Any) -> Dict[str, Any]:
        if Bucket in self.buckets:
            raise _client_error("BucketAlreadyOwnedByYou", "CreateBucket")
        self.buckets[Bucket] = {}
        return {"Location": f"/{Bucket}"}

    # --- Objects ---
    async def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self.calls.append(("get_object", Key))
        if self.get_delay_s:
            await asyncio.sleep(self.get_delay_s)
        if Key in self.fail_get:
            raise _client_error("InternalError", "GetObject", "Simulated failure")
        objects: Dict[str, StoredObject] = self.bucket(Bucket, "GetObject")
        if Key not in objects:
            raise _client_error("NoSuchKey", "GetObject")
        stored: StoredObject = objects[Key]
        body: FakeStreamingBody = FakeStreamingBody(
            stored.body,
            max_read=self.max_read,
            fail_after=0 if Key in self.fail_read else None,
        )
        self.opened.append(body)
        response: Dict[str, Any] = {
            "Body": body,
            "ContentLength": len(stored.body),
            "ETag": stored.etag,
            "Metadata": {},
        }
        response.update(stored.params)
        return response

    async def head_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self.calls.append(("head_object", Key))
        if self.head_delay_s:
            await asyncio.sleep(self.head_delay_s)
        if Key in self.fail_head:
            raise _client_error("403", "HeadObject", "Forbidden")
        objects: Dict[str, StoredObject] = self.bucket(Bucket, "HeadObject")
        if Key not in objects:
            raise _client_error("404", "HeadObject", "Not Found")
        stored: StoredObject = objects[Key]
        response: Dict[str, Any] = {
            "ContentLength": len(stored.body),
            "ETag": stored.etag,
            "Metadata": {},
        }
        response.update(stored.params)
        return response

    def _params(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in kwargs.items() if k in _METADATA_PARAMS}

    async def put_object(
        self, Bucket: str, Key: str, Body: bytes, **kwargs: Any
    ) -> Dict[str, Any]:
        self.calls.append(("put_object", Key))
        if Key in self.fail_put:
            raise _client_error("InternalError", "PutObject", "Simulated failure")
        etag: str = f'"{md5_hex(Body)}"'
        self.bucket(Bucket, "PutObject")[Key] = StoredObject(
            body=bytes(Body), etag=etag, params=self._params(kwargs)
        )
        return {"ETag": etag}

    async def create_multipart_upload(
        self, Bucket: str, Key: str, **kwargs: Any
    ) -> Dict[str, Any]:
        self.calls.append(("create_multipart_upload", Key))
        self.bucket(Bucket, "CreateMultipartUpload")
        upload_id: str = uuid.uuid4().hex
        self.uploads[upload_id] = {
            "Bucket": Bucket,
            "Key": Key,
            "params": self._params(kwargs),
            "parts": {},
        }
        return {"UploadId": upload_id}

    async def upload_part(
        self, Bucket: str, Key: str, UploadId: str, PartNumber: int, Body: bytes
    ) -> Dict[str, Any]:
        self.calls.append(("upload_part", Key))
        if Key in self.fail_put:
            raise _client_error("InternalError", "UploadPart", "Simulated failure")
        if UploadId not in self.uploads:
            raise _client_error("NoSuchUpload", "UploadPart")
        self.uploads[UploadId]["parts"][PartNumber] = bytes(Body)
        return {"ETag": f'"{md5_hex(Body)}"'}

    async def complete_multipart_upload(
        self,
        Bucket: str,
        Key: str,
        UploadId: str,
        MultipartUpload: Dict[str, Any],
    ) -> Dict[str, Any]:
        self.calls.append(("complete_multipart_upload", Key))
        upload: Optional[Dict[str, Any]] = self.uploads.pop(UploadId, None)
        if upload is None:
            raise _client_error("NoSuchUpload", "CompleteMultipartUpload")
        numbers: List[int] = [p["PartNumber"] for p in MultipartUpload["Parts"]]
        parts: List[bytes] = [upload["parts"][n] for n in numbers]
        digests: bytes = b"".join(hashlib.md5(p).digest() for p in parts)
        etag: str = f'"{hashlib.md5(digests).hexdigest()}-{len(parts)}"'
        self.bucket(Bucket)[Key] = StoredObject(
            body=b"".join(parts), etag=etag, params=upload["params"]
        )
        return {"ETag": etag}

    async def abort_multipart_upload(
        self, Bucket: str, Key: str, UploadId: str
    ) -> Dict[str, Any]:
        self.calls.append(("abort_multipart_upload", Key))
        self.uploads.pop(UploadId, None)
        return {}


class FakeSession:
    """Hands out pre-built fake clients keyed by endpoint URL."""

    def __init__(self, clients: Dict[str, FakeS3Client]) -> None:
        self._clients: Dict[str, FakeS3Client] = clients
        self.created: List[Dict[str, Any]] = []

    @asynccontextmanager
    async def create_client(
        self, service: str, **kwargs: Any
    ) -> AsyncIterator[FakeS3Client]:
        self.created.append(kwargs)
        yield self._clients[kwargs["endpoint_url"]]


# --- Fixtures ---
@pytest.fixture(scope="function")
def source_client() -> FakeS3Client:
    """A fake primary store holding an empty source bucket."""
    return FakeS3Client(SOURCE_BUCKET)


@pytest.fixture(scope="function")
def archive_client() -> FakeS3Client:
    """A fake archive store holding an empty archive bucket."""
    return FakeS3Client(ARCHIVE_BUCKET)


@pytest.fixture(scope="function")
def fake_client_factory() -> Callable[..., FakeS3Client]:
    """The `FakeS3Client` class, for tests that need extra stores."""
    return FakeS3Client


@pytest.fixture(scope="function")
def fake_session_factory() -> Callable[..., FakeSession]:
    """The `FakeSession` class, mapping endpoint URLs to fake clients."""
    return FakeSession


@pytest.fixture(scope="function")
def make_config() -> Callable[..., Config]:
    """
    Provide a factory for configurations pointing at the fake buckets.

    Keyword arguments are forwarded to `AppConfig`.
    """

    def _factory(**app_overrides: Any) -> Config:
        return Config(
            source=S3Config(
                endpoint_url="http://source.test",
                access_key_id="source-key",
                secret_access_key="source-secret",
                bucket=SOURCE_BUCKET,
            ),
            archive=S3Config(
                endpoint_url="http://archive.test",
                access_key_id="archive-key",
                secret_access_key="archive-secret",
                bucket=ARCHIVE_BUCKET,
                force_path_style=True,
            ),
            app=AppConfig(**app_overrides),
            webhook=None,
        )

    return _factory


@pytest.fixture(scope="function")
def test_config(make_config: Callable[..., Config]) -> Config:
    """A configuration with a concurrency budget of 2."""
    return make_config(concurrency=2)

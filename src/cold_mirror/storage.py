# src/cold_mirror/storage.py
"""
Thin helpers over the aiobotocore S3 client surface used by the engine.

This covers object metadata propagation, paginated key listing, attribute
lookup, bucket preparation, and `ObjectWriter`, a buffered writer whose object
only becomes visible once `ObjectWriter.close` succeeds.
"""

import logging
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Tuple,
)

from botocore.exceptions import BotoCoreError, ClientError

from cold_mirror.exceptions import ListingError, StorageSetupError

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.type_defs import HeadObjectOutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)

_NOT_FOUND_CODES: FrozenSet[str] = frozenset(
    {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
)

# (response/request field, attribute name) pairs copied field-by-field.
_METADATA_FIELDS: List[Tuple[str, str]] = [
    ("ContentType", "content_type"),
    ("ContentEncoding", "content_encoding"),
    ("ContentDisposition", "content_disposition"),
    ("ContentLanguage", "content_language"),
    ("CacheControl", "cache_control"),
]


def is_not_found(error: ClientError) -> bool:
    """Returns True when a `ClientError` means the object or bucket is absent."""
    code: str = str(error.response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES


@dataclass(frozen=True)
class ObjectMetadata:
    """
    Standard HTTP attributes plus user metadata of an object.

    Every attribute is optional. Absent attributes are never sent, so they
    stay unset on the written object rather than being cleared.

    Attributes:
        content_type (str, optional): The Content-Type header.
        content_encoding (str, optional): The Content-Encoding header.
        content_disposition (str, optional): The Content-Disposition header.
        content_language (str, optional): The Content-Language header.
        cache_control (str, optional): The Cache-Control header.
        user (Dict[str, str]): Arbitrary user metadata key/value pairs.
    """

    content_type: Optional[str] = None
    content_encoding: Optional[str] = None
    content_disposition: Optional[str] = None
    content_language: Optional[str] = None
    cache_control: Optional[str] = None
    user: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_response(cls, response: Mapping[str, Any]) -> "ObjectMetadata":
        """
        Builds metadata from a GetObject or HeadObject response.

        Args:
            response (Mapping[str, Any]): The aiobotocore response mapping.

        Returns:
            ObjectMetadata: The attributes the response provides.
        """
        values: Dict[str, Any] = {
            attr: response[name]
            for name, attr in _METADATA_FIELDS
            if response.get(name) is not None
        }
        return cls(user=dict(response.get("Metadata") or {}), **values)

    def as_request_kwargs(self) -> Dict[str, Any]:
        """
        Renders the metadata as PutObject / CreateMultipartUpload parameters.

        Returns:
            Dict[str, Any]: Only the attributes that are present.
        """
        kwargs: Dict[str, Any] = {
            name: getattr(self, attr)
            for name, attr in _METADATA_FIELDS
            if getattr(self, attr) is not None
        }
        if self.user:
            kwargs["Metadata"] = dict(self.user)
        return kwargs


async def iter_key_pages(
    client: "S3Client", bucket: str, page_size: Optional[int] = None
) -> AsyncIterator[List[str]]:
    """
    Lists a bucket one page at a time.

    Args:
        client (S3Client): The client for the listed store.
        bucket (str): The bucket to list.
        page_size (int, optional): Requested keys per page.

    Yields:
        List[str]: The object keys of the next page, in listing order.

    Raises:
        ListingError: If any page cannot be fetched.
    """
    paginate_kwargs: Dict[str, Any] = {"Bucket": bucket}
    if page_size is not None:
        paginate_kwargs["PaginationConfig"] = {"PageSize": page_size}
    pages: AsyncIterator[Dict[str, Any]] = client.get_paginator(
        "list_objects_v2"
    ).paginate(**paginate_kwargs)
    try:
        async for page in pages:
            yield [obj["Key"] for obj in page.get("Contents", [])]
    except (ClientError, BotoCoreError) as e:
        raise ListingError(f"Failed to list objects in '{bucket}': {e}") from e


async def stat_object(
    client: "S3Client", bucket: str, key: str
) -> Optional["HeadObjectOutputTypeDef"]:
    """
    Looks up an object's stored attributes.

    Args:
        client (S3Client): The client for the store holding the object.
        bucket (str): The bucket name.
        key (str): The object key.

    Returns:
        HeadObjectOutputTypeDef, optional: The HeadObject response, or None if
            the object does not exist or the lookup failed.
    """
    try:
        return await client.head_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if not is_not_found(e):
            logger.warning(f"Attribute lookup failed for '{bucket}/{key}': {e}")
        return None
    except BotoCoreError as e:
        logger.warning(f"Attribute lookup failed for '{bucket}/{key}': {e}")
        return None


async def ensure_bucket(client: "S3Client", bucket: str, create: bool) -> bool:
    """
    Verifies that a bucket exists, optionally creating it.

    Args:
        client (S3Client): The client for the store.
        bucket (str): The bucket name.
        create (bool): Create the bucket when it is missing.

    Returns:
        bool: True if the bucket was created by this call.

    Raises:
        StorageSetupError: If the bucket is missing and may not be created,
            or if the store cannot be reached.
    """
    try:
        await client.head_bucket(Bucket=bucket)
        logger.info(f"Using existing bucket '{bucket}'.")
        return False
    except ClientError as e:
        if not is_not_found(e):
            raise StorageSetupError(f"Cannot access bucket '{bucket}': {e}") from e
    except BotoCoreError as e:
        raise StorageSetupError(f"Cannot reach store for '{bucket}': {e}") from e

    if not create:
        raise StorageSetupError(f"Bucket '{bucket}' does not exist.")
    try:
        await client.create_bucket(Bucket=bucket)
    except (ClientError, BotoCoreError) as e:
        raise StorageSetupError(f"Failed to create bucket '{bucket}': {e}") from e
    logger.info(f"Created bucket '{bucket}'.")
    return True


class ObjectWriter:
    """
    Buffered, commit-on-close writer for a single object.

    Output that fits in one part is sent with one PutObject on `close`, so the
    stored ETag is the MD5 of the stored bytes. Larger output switches to a
    multipart upload that is completed on `close`. In both modes nothing is
    visible in the bucket until `close` returns.
    """

    def __init__(
        self,
        client: "S3Client",
        bucket: str,
        key: str,
        metadata: ObjectMetadata,
        part_size: int,
    ) -> None:
        """
        Initializes the writer. No request is made until data is written.

        Args:
            client (S3Client): The client for the destination store.
            bucket (str): The destination bucket.
            key (str): The destination key.
            metadata (ObjectMetadata): Attributes applied to the new object.
            part_size (int): Multipart part size in bytes.
        """
        self._client: "S3Client" = client
        self._bucket: str = bucket
        self._key: str = key
        self._metadata: ObjectMetadata = metadata
        self._part_size: int = part_size
        self._buffer: bytearray = bytearray()
        self._upload_id: Optional[str] = None
        self._parts: List[Dict[str, Any]] = []
        self._closed: bool = False
        self.bytes_written: int = 0

    @property
    def is_multipart(self) -> bool:
        return self._upload_id is not None

    async def write(self, data: bytes) -> None:
        """
        Appends data, uploading full parts once the buffer exceeds one part.

        Args:
            data (bytes): The bytes to append.
        """
        if self._closed:
            raise ValueError(f"Writer for '{self._key}' is already closed.")
        self._buffer += data
        self.bytes_written += len(data)
        # Keep at least one byte buffered so close() never sends an empty part.
        while len(self._buffer) > self._part_size:
            await self._upload_part(bytes(self._buffer[: self._part_size]))
            del self._buffer[: self._part_size]

    async def _upload_part(self, body: bytes) -> None:
        if self._upload_id is None:
            response: Dict[str, Any] = await self._client.create_multipart_upload(
                Bucket=self._bucket,
                Key=self._key,
                **self._metadata.as_request_kwargs(),
            )
            self._upload_id = response["UploadId"]
            logger.debug(f"Started multipart upload for '{self._key}'.")
        part_number: int = len(self._parts) + 1
        part: Dict[str, Any] = await self._client.upload_part(
            Bucket=self._bucket,
            Key=self._key,
            UploadId=self._upload_id,
            PartNumber=part_number,
            Body=body,
        )
        self._parts.append({"ETag": part["ETag"], "PartNumber": part_number})

    async def close(self) -> str:
        """
        Commits the object.

        Returns:
            str: The ETag reported by the store, without quotes.
        """
        if self._closed:
            raise ValueError(f"Writer for '{self._key}' is already closed.")
        self._closed = True
        response: Dict[str, Any]
        if self._upload_id is None:
            body: bytes = bytes(self._buffer)
            response = await self._client.put_object(
                Bucket=self._bucket,
                Key=self._key,
                Body=body,
                ContentLength=len(body),
                **self._metadata.as_request_kwargs(),
            )
        else:
            if self._buffer:
                await self._upload_part(bytes(self._buffer))
            response = await self._client.complete_multipart_upload(
                Bucket=self._bucket,
                Key=self._key,
                UploadId=self._upload_id,
                MultipartUpload={"Parts": self._parts},
            )
        self._buffer.clear()
        return str(response.get("ETag", "")).strip('"')

    async def abort(self) -> None:
        """
        Discards everything written so far.

        An unfinished multipart upload is aborted; a single-PUT object was
        never sent. Failures to abort are logged, not raised.
        """
        self._closed = True
        self._buffer.clear()
        if self._upload_id is None:
            return
        try:
            await self._client.abort_multipart_upload(
                Bucket=self._bucket, Key=self._key, UploadId=self._upload_id
            )
            logger.debug(f"Aborted multipart upload for '{self._key}'.")
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Failed to abort multipart upload for '{self._key}': {e}")
        finally:
            self._upload_id = None

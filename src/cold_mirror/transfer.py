# src/cold_mirror/transfer.py
"""
Transfer units: copy one object between the stores with an inline codec.

Backup reads from the source store, compresses, and writes to the archive;
restore reads from the archive, decompresses, and writes back to the source
store. Both propagate object metadata and both convert every per-object
failure into a `TransferOutcome` instead of raising.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple, Type

from botocore.exceptions import BotoCoreError, ClientError

from cold_mirror.codec import FrameCompressor, FrameDecompressor
from cold_mirror.config import AppConfig
from cold_mirror.exceptions import CodecError, TransferError
from cold_mirror.skip import destination_digest, should_skip
from cold_mirror.storage import ObjectMetadata, ObjectWriter, stat_object
from cold_mirror.summary import TransferOutcome

if TYPE_CHECKING:
    from aiobotocore.response import StreamingBody
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)

_EXPECTED_ERRORS: Tuple[Type[Exception], ...] = (
    ClientError,
    BotoCoreError,
    CodecError,
    TransferError,
    OSError,
)


@dataclass(frozen=True)
class TransferTask:
    """
    One object to move from one bucket to another.

    Attributes:
        source_bucket (str): The bucket the object is read from.
        destination_bucket (str): The bucket the object is written to.
        key (str): The object key, identical on both sides.
    """

    source_bucket: str
    destination_bucket: str
    key: str


def _failed(
    task: TransferTask, action: str, cause: BaseException
) -> TransferOutcome:
    error: TransferError = TransferError(
        f"Failed to {action} '{task.key}': {type(cause).__name__} - {cause}"
    )
    error.__cause__ = cause
    return TransferOutcome.failed(task.key, error)


async def _copy_through(
    stream: "StreamingBody",
    writer: ObjectWriter,
    transform: Callable[[bytes], bytes],
    chunk_size: int,
) -> None:
    """Pumps a stream through a codec's incremental method into a writer."""
    while True:
        chunk: bytes = await stream.read(chunk_size)
        if not chunk:
            break
        output: bytes = transform(chunk)
        if output:
            await writer.write(output)


def _open_writer(
    client: "S3Client", task: TransferTask, response: Dict[str, Any], app: AppConfig
) -> ObjectWriter:
    return ObjectWriter(
        client,
        task.destination_bucket,
        task.key,
        ObjectMetadata.from_response(response),
        app.part_size,
    )


async def _compress_into(
    stream: "StreamingBody", writer: ObjectWriter, chunk_size: int
) -> None:
    compressor: FrameCompressor = FrameCompressor()
    await _copy_through(stream, writer, compressor.compress, chunk_size)
    await writer.write(compressor.flush())


async def backup_object(
    task: TransferTask,
    source_client: "S3Client",
    archive_client: "S3Client",
    app: AppConfig,
) -> TransferOutcome:
    """
    Backs up a single object into the archive, compressed.

    In incremental mode an archived copy with the same compressed digest is
    left untouched. Otherwise the object is streamed through the compressor
    into an `ObjectWriter`, and committed only after the compressor has been
    flushed. Every source body is read inside its own context so it is
    released however the task ends.

    Args:
        task (TransferTask): Source bucket is the primary store, destination
            bucket is the archive.
        source_client (S3Client): Client for the primary store.
        archive_client (S3Client): Client for the archive store.
        app (AppConfig): Operational settings.

    Returns:
        TransferOutcome: Succeeded, Skipped or Failed.
    """
    writer: Optional[ObjectWriter] = None
    try:
        response: Dict[str, Any] = await source_client.get_object(
            Bucket=task.source_bucket, Key=task.key
        )
        async with response["Body"] as stream:
            expected: Optional[str] = None
            if not app.full_backup:
                attributes: Optional[Dict[str, Any]] = await stat_object(
                    archive_client, task.destination_bucket, task.key
                )
                if attributes is not None:
                    expected = destination_digest(attributes)
            if expected is None:
                writer = _open_writer(archive_client, task, response, app)
                await _compress_into(stream, writer, app.read_chunk_size)
            elif await should_skip(task.key, stream, expected, app.read_chunk_size):
                return TransferOutcome.skipped(task.key)

        if writer is None:
            # The fingerprint consumed the stream; read the object again.
            response = await source_client.get_object(
                Bucket=task.source_bucket, Key=task.key
            )
            async with response["Body"] as stream:
                writer = _open_writer(archive_client, task, response, app)
                await _compress_into(stream, writer, app.read_chunk_size)
        await writer.close()

        logger.debug(
            f"Backed up '{task.source_bucket}/{task.key}' -> "
            f"'{task.destination_bucket}/{task.key}' ({writer.bytes_written} bytes)."
        )
        return TransferOutcome.succeeded(task.key)

    except asyncio.CancelledError:
        if writer is not None:
            await writer.abort()
        raise
    except _EXPECTED_ERRORS as e:
        logger.error(f"Failed to back up '{task.key}': {type(e).__name__} - {e}")
        if writer is not None:
            await writer.abort()
        return _failed(task, "back up", e)
    except Exception as e:
        logger.exception(f"An unexpected error occurred backing up '{task.key}'")
        if writer is not None:
            await writer.abort()
        return _failed(task, "back up", e)


async def restore_object(
    task: TransferTask,
    archive_client: "S3Client",
    source_client: "S3Client",
    app: AppConfig,
) -> TransferOutcome:
    """
    Restores a single archived object into the primary store, decompressed.

    Every object is written unconditionally, with the metadata stored on the
    archived copy.

    Args:
        task (TransferTask): Source bucket is the archive, destination bucket
            is the primary store.
        archive_client (S3Client): Client for the archive store.
        source_client (S3Client): Client for the primary store.
        app (AppConfig): Operational settings.

    Returns:
        TransferOutcome: Succeeded or Failed.
    """
    writer: Optional[ObjectWriter] = None
    try:
        response: Dict[str, Any] = await archive_client.get_object(
            Bucket=task.source_bucket, Key=task.key
        )
        async with response["Body"] as stream:
            writer = _open_writer(source_client, task, response, app)
            decompressor: FrameDecompressor = FrameDecompressor()
            await _copy_through(
                stream, writer, decompressor.decompress, app.read_chunk_size
            )
            decompressor.flush()
        await writer.close()

        logger.debug(
            f"Restored '{task.source_bucket}/{task.key}' -> "
            f"'{task.destination_bucket}/{task.key}' ({writer.bytes_written} bytes)."
        )
        return TransferOutcome.succeeded(task.key)

    except asyncio.CancelledError:
        if writer is not None:
            await writer.abort()
        raise
    except _EXPECTED_ERRORS as e:
        logger.error(f"Failed to restore '{task.key}': {type(e).__name__} - {e}")
        if writer is not None:
            await writer.abort()
        return _failed(task, "restore", e)
    except Exception as e:
        logger.exception(f"An unexpected error occurred restoring '{task.key}'")
        if writer is not None:
            await writer.abort()
        return _failed(task, "restore", e)

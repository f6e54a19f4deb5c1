# src/cold_mirror/skip.py
"""
Conditional-skip policy for incremental backups.

An object is skipped when the archive already stores exactly the bytes the
backup would write. The archive's digest is its ETag, which for a single-PUT
object is the MD5 of the stored (compressed) bytes, so the source is
fingerprinted by streaming it through the same compressor into an MD5.
"""

import hashlib
import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional

from cold_mirror.codec import FrameCompressor

if TYPE_CHECKING:
    from aiobotocore.response import StreamingBody

logger: logging.Logger = logging.getLogger(__name__)


async def compressed_fingerprint(stream: "StreamingBody", chunk_size: int) -> str:
    """
    Computes the MD5 of a stream's compressed form.

    The stream is consumed; the object must be read again before writing it.

    Args:
        stream (StreamingBody): The raw source byte stream.
        chunk_size (int): Bytes requested per read.

    Returns:
        str: The lowercase hex digest of the compressed bytes.
    """
    digest: Any = hashlib.md5(usedforsecurity=False)
    compressor: FrameCompressor = FrameCompressor()
    while True:
        chunk: bytes = await stream.read(chunk_size)
        if not chunk:
            break
        digest.update(compressor.compress(chunk))
    digest.update(compressor.flush())
    return digest.hexdigest()


def destination_digest(attributes: Mapping[str, Any]) -> Optional[str]:
    """
    Extracts a comparable content digest from HeadObject attributes.

    Args:
        attributes (Mapping[str, Any]): The archive object's HeadObject response.

    Returns:
        str, optional: The lowercase hex MD5, or None when the ETag is not a
            plain MD5 (for example a multipart ETag such as ``<hex>-3``).
    """
    etag: str = str(attributes.get("ETag") or "").strip('"').lower()
    if len(etag) != 32 or "-" in etag:
        return None
    return etag


async def should_skip(
    key: str,
    stream: "StreamingBody",
    expected_digest: str,
    chunk_size: int,
) -> bool:
    """
    Decides whether the archive already holds this object's content.

    The stream is always consumed.

    Args:
        key (str): The object key, for logging.
        stream (StreamingBody): The open source stream.
        expected_digest (str): The archive object's digest, as returned by
            `destination_digest`.
        chunk_size (int): Bytes requested per read.

    Returns:
        bool: True if the write can be skipped.
    """
    actual: str = await compressed_fingerprint(stream, chunk_size)
    if actual == expected_digest:
        logger.debug(f"Skipping unchanged object '{key}'.")
        return True
    logger.debug(f"Content of '{key}' changed ({expected_digest} != {actual}).")
    return False

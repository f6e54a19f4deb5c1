# src/cold_mirror/codec.py
"""
Streaming Snappy codec used on the transfer path.

Objects are stored in the archive in the Snappy framing format. The
compressor re-blocks its input into fixed-size frames before handing it to
``snappy.StreamCompressor``, so the compressed output depends only on the raw
bytes and never on how a network stream happened to chunk its reads. The
incremental-backup fingerprint relies on that.
"""

import logging
from pathlib import Path
from typing import BinaryIO, Optional

import snappy

from cold_mirror.exceptions import CodecError

logger: logging.Logger = logging.getLogger(__name__)

# Largest uncompressed payload of a single Snappy frame.
FRAME_SIZE: int = 65536
# One type byte followed by a 24-bit little-endian length.
FRAME_HEADER_SIZE: int = 4
STREAM_IDENTIFIER: bytes = b"\xff\x06\x00\x00sNaPpY"


class FrameCompressor:
    """
    Incremental Snappy framing compressor with deterministic frame boundaries.

    Call `compress` for every chunk of input and `flush` exactly once at the
    end of the stream. The concatenated return values form a complete framed
    stream.
    """

    def __init__(self) -> None:
        self._compressor: snappy.StreamCompressor = snappy.StreamCompressor()
        self._pending: bytearray = bytearray()
        self._started: bool = False
        self._finished: bool = False

    def compress(self, data: bytes) -> bytes:
        """
        Buffers `data` and returns the frames for every complete block.

        Args:
            data (bytes): The next slice of the raw stream.

        Returns:
            bytes: Compressed output, possibly empty.
        """
        if self._finished:
            raise CodecError("Compressor has already been flushed.")
        self._pending += data
        complete: int = len(self._pending) - len(self._pending) % FRAME_SIZE
        if not complete:
            return b""
        block: bytes = bytes(self._pending[:complete])
        del self._pending[:complete]
        self._started = True
        return self._compressor.add_chunk(block)

    def flush(self) -> bytes:
        """
        Emits the trailing partial frame and closes the stream.

        Returns:
            bytes: The remaining compressed output.
        """
        if self._finished:
            return b""
        self._finished = True
        if not self._pending and self._started:
            return b""
        block: bytes = bytes(self._pending)
        self._pending.clear()
        output: bytes = self._compressor.add_chunk(block)
        # An empty stream still carries its identifier.
        return output if output or self._started else STREAM_IDENTIFIER


class FrameDecompressor:
    """
    Incremental Snappy framing decompressor.

    Input is split on frame boundaries here and only whole frames are handed
    to ``snappy.StreamDecompressor``, so callers may feed arbitrarily sized
    slices of the compressed stream.
    """

    def __init__(self) -> None:
        self._pending: bytearray = bytearray()
        self._seen_identifier: bool = False

    def _take_complete_frames(self) -> bytes:
        offset: int = 0
        while len(self._pending) - offset >= FRAME_HEADER_SIZE:
            length: int = int.from_bytes(
                self._pending[offset + 1 : offset + FRAME_HEADER_SIZE], "little"
            )
            end: int = offset + FRAME_HEADER_SIZE + length
            if end > len(self._pending):
                break
            offset = end
        frames: bytes = bytes(self._pending[:offset])
        del self._pending[:offset]
        return frames

    def decompress(self, data: bytes) -> bytes:
        """
        Feeds compressed bytes and returns whatever raw data is now complete.

        Args:
            data (bytes): The next slice of the compressed stream.

        Returns:
            bytes: Decompressed output, possibly empty.
        """
        self._pending += data
        frames: bytes = self._take_complete_frames()
        if not frames:
            return b""
        if not self._seen_identifier:
            if not frames.startswith(STREAM_IDENTIFIER):
                raise CodecError("Corrupt Snappy stream: missing stream identifier.")
            self._seen_identifier = True
        else:
            # Repeated identifier frames are legal; each batch decodes standalone.
            frames = STREAM_IDENTIFIER + frames
        decoder: snappy.StreamDecompressor = snappy.StreamDecompressor()
        try:
            return decoder.decompress(frames) + decoder.flush()
        except Exception as e:
            raise CodecError(f"Corrupt Snappy stream: {e}") from e

    def flush(self) -> bytes:
        """Verifies the stream was complete and no partial frame is left over."""
        if not self._pending and not self._seen_identifier:
            raise CodecError("Corrupt Snappy stream: missing stream identifier.")
        if self._pending:
            raise CodecError(
                f"Truncated Snappy stream: {len(self._pending)} trailing bytes."
            )
        return b""


def decompress_stream(
    source: BinaryIO, target: BinaryIO, chunk_size: int = FRAME_SIZE
) -> int:
    """
    Decompresses a framed Snappy stream from one file object into another.

    Args:
        source (BinaryIO): Readable binary stream of compressed data.
        target (BinaryIO): Writable binary stream for the raw data.
        chunk_size (int): Bytes read from `source` per iteration.

    Returns:
        int: Number of raw bytes written.
    """
    decompressor: FrameDecompressor = FrameDecompressor()
    written: int = 0
    while True:
        chunk: bytes = source.read(chunk_size)
        if not chunk:
            break
        raw: bytes = decompressor.decompress(chunk)
        target.write(raw)
        written += len(raw)
    decompressor.flush()
    return written


def decompress_file(path: Path, output: Optional[Path] = None) -> Path:
    """
    Decompresses one archived object that was downloaded to a local file.

    Args:
        path (Path): The compressed file.
        output (Path, optional): Destination file. Defaults to
            ``<basename>_decompressed`` in the current directory.

    Returns:
        Path: The path of the decompressed file.
    """
    target_path: Path = (
        output if output is not None else Path(f"{path.name}_decompressed")
    )
    with path.open("rb") as source, target_path.open("wb") as target:
        size: int = decompress_stream(source, target)
    logger.info(f"Decompressed '{path}' to '{target_path}' ({size} bytes).")
    return target_path

"""
Chunk reader

Turns a sequential byte source into bounded buffers suitable as multipart
upload parts. The reader never owns the source: it does not seek or close it.
"""

import io
import logging
from typing import BinaryIO, Iterator

from s3repro.errors import SourceReadError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10 * 1024 * 1024  # 10 MiB
READ_SIZE = 4096


def read_chunk(
    source: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    read_size: int = READ_SIZE,
) -> io.BytesIO:
    """
    Read the next chunk from source

    Reads at most read_size bytes at a time until the source is exhausted
    or chunk_size bytes have accumulated; a chunk never holds more than
    chunk_size bytes. The returned buffer is
    positioned at its start. An empty buffer means the source is exhausted.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if read_size <= 0:
        raise ValueError(f"read_size must be positive, got {read_size}")

    result = io.BytesIO()
    written = 0

    while written < chunk_size:
        try:
            data = source.read(min(read_size, chunk_size - written))
        except OSError as e:
            raise SourceReadError(f"reading source failed after {written} bytes: {e}") from e

        if not data:
            break

        result.write(data)
        written += len(data)

    result.seek(0)
    return result


def iter_chunks(
    source: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    read_size: int = READ_SIZE,
) -> Iterator[io.BytesIO]:
    """Yield non-empty chunks until the source is exhausted"""
    while True:
        chunk = read_chunk(source, chunk_size, read_size)
        size = chunk_length(chunk)
        if size == 0:
            return
        logger.debug("Read chunk of %d bytes", size)
        yield chunk


def chunk_length(chunk: io.BytesIO) -> int:
    with chunk.getbuffer() as view:
        return view.nbytes

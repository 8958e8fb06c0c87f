"""Stream adapters used by the transform chain.

This module provides:
- SourceReader: chunked source reads with cancellation and optional gzip
- HashingWriter / HashingReader: feed the checksum with wire bytes
- IterReader: file-like view over an iterator of byte chunks
- DecompressingWriter: gunzip on the way to the sink
- ProgressReader / ProgressWriter: byte counting for progress bars
- TransferStats: counters shared by the adapters of one transfer
"""

from __future__ import annotations

import zlib
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from datamanager.core.cancel import CancellationToken
from datamanager.core.checksum import ChecksumState
from datamanager.core.errors import ProtocolError

# gzip container, as produced by `gzip` and the server
GZIP_WBITS = 31
# accept gzip or zlib headers when decompressing
AUTO_WBITS = 47


@dataclass
class TransferStats:
    """Counters of one transfer.

    Attributes:
        chunks: Source chunks read (including the final short one).
        bytes_read: Bytes read from the source.
        bytes_written: Bytes handed to the wire (upload) or read from it (download).
    """

    chunks: int = 0
    bytes_read: int = 0
    bytes_written: int = 0


class SourceReader:
    """Reads the local source in chunks of buffer_size.

    Checks the cancellation token before every chunk and optionally
    gzip-compresses the data, so the cipher stage always sees the
    compressed stream.
    """

    def __init__(
        self,
        source: Any,
        buffer_size: int,
        cancel: CancellationToken | None = None,
        compress: bool = False,
        stats: TransferStats | None = None,
    ) -> None:
        self._source = source
        self._buffer_size = buffer_size
        self._cancel = cancel
        self._compressor = (
            zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, GZIP_WBITS)
            if compress
            else None
        )
        self._stats = stats if stats is not None else TransferStats()
        self._pending = b""
        self._eof = False

    def _next_chunk(self) -> bytes:
        if self._cancel is not None:
            self._cancel.raise_if_cancelled()
        data = self._source.read(self._buffer_size)
        if data:
            self._stats.chunks += 1
            self._stats.bytes_read += len(data)
        return bytes(data) if data else b""

    def _fill(self) -> None:
        while not self._pending and not self._eof:
            data = self._next_chunk()
            if self._compressor is None:
                if not data:
                    self._eof = True
                self._pending = data
            elif data:
                self._pending = self._compressor.compress(data)
            else:
                self._pending = self._compressor.flush()
                self._eof = True

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes of the (possibly compressed) source."""
        if size is None or size < 0:
            parts = []
            while True:
                data = self.read(self._buffer_size)
                if not data:
                    return b"".join(parts)
                parts.append(data)
        self._fill()
        data, self._pending = self._pending[:size], self._pending[size:]
        return data


class HashingWriter:
    """Feeds every written byte to the checksum, then forwards it."""

    def __init__(
        self,
        writer: Any,
        checksum: ChecksumState,
        stats: TransferStats | None = None,
    ) -> None:
        self._writer = writer
        self._checksum = checksum
        self._stats = stats if stats is not None else TransferStats()

    def write(self, data: bytes | bytearray | memoryview) -> int:
        data = bytes(data)
        self._checksum.update(data)
        self._writer.write(data)
        self._stats.bytes_written += len(data)
        return len(data)

    def flush(self) -> None:
        flush = getattr(self._writer, "flush", None)
        if flush is not None:
            flush()


class HashingReader:
    """Feeds every byte handed to the caller to the checksum.

    Checks the cancellation token before every read from the wire.
    """

    def __init__(
        self,
        reader: Any,
        checksum: ChecksumState,
        cancel: CancellationToken | None = None,
        stats: TransferStats | None = None,
    ) -> None:
        self._reader = reader
        self._checksum = checksum
        self._cancel = cancel
        self._stats = stats if stats is not None else TransferStats()

    def read(self, size: int = -1) -> bytes:
        if self._cancel is not None:
            self._cancel.raise_if_cancelled()
        data = self._reader.read(size)
        if data:
            data = bytes(data)
            self._checksum.update(data)
            self._stats.chunks += 1
            self._stats.bytes_written += len(data)
        return data or b""

    def drain(self, buffer_size: int) -> int:
        """Read (and hash) whatever is left of the stream.

        Returns:
            Number of trailing bytes consumed.
        """
        total = 0
        while True:
            data = self.read(buffer_size)
            if not data:
                return total
            total += len(data)


class IterReader:
    """File-like reader over an iterable of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks: Iterator[bytes] = iter(chunks)
        self._pending = b""
        self._eof = False

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data = self._pending + b"".join(self._chunks)
            self._pending = b""
            self._eof = True
            return data
        while not self._pending and not self._eof:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                self._eof = True
        data, self._pending = self._pending[:size], self._pending[size:]
        return data


class DecompressingWriter:
    """Decompresses a gzip stream on its way to the underlying writer."""

    def __init__(self, writer: Any) -> None:
        self._writer = writer
        self._decompressor = zlib.decompressobj(AUTO_WBITS)

    def write(self, data: bytes | bytearray | memoryview) -> int:
        try:
            out = self._decompressor.decompress(bytes(data))
        except zlib.error as e:
            raise ProtocolError(f"Invalid compressed stream: {e}") from e
        if out:
            self._writer.write(out)
        return len(data)

    def flush(self) -> None:
        flush = getattr(self._writer, "flush", None)
        if flush is not None:
            flush()

    def finish(self) -> None:
        """Flush the decompressor and check the stream was complete."""
        out = self._decompressor.flush()
        if out:
            self._writer.write(out)
        if not self._decompressor.eof:
            raise ProtocolError("Compressed stream ended unexpectedly")


class ProgressReader:
    """Reader proxy reporting the size of every chunk read."""

    def __init__(self, reader: Any, on_progress: Callable[[int], None]) -> None:
        self._reader = reader
        self._on_progress = on_progress

    def read(self, size: int = -1) -> bytes:
        data = self._reader.read(size)
        if data:
            self._on_progress(len(data))
        return data


class ProgressWriter:
    """Writer proxy reporting the size of every chunk written."""

    def __init__(self, writer: Any, on_progress: Callable[[int], None]) -> None:
        self._writer = writer
        self._on_progress = on_progress

    def write(self, data: bytes | bytearray | memoryview) -> int:
        self._writer.write(data)
        self._on_progress(len(data))
        return len(data)

    def flush(self) -> None:
        flush = getattr(self._writer, "flush", None)
        if flush is not None:
            flush()

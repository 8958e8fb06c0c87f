"""Transform chain: compression, encryption and checksum in one path.

Upload (encode):

    source -> [gzip] -> [encrypt] -> checksum -> sink

Download (decode):

    body -> checksum -> [decrypt] -> [gunzip] -> sink

The checksum always covers the bytes on the wire: after every transform
on upload, before any transform on download. The server hashes the
bytes it receives and stores, so the digest must be taken at that same
point on both ends. Hashing plaintext would never match once compression
or encryption is active.
"""

from __future__ import annotations

import logging
from typing import Any

from datamanager.core.cancel import CancellationToken
from datamanager.core.checksum import ChecksumState
from datamanager.core.crypto import StreamCipher
from datamanager.transfer.descriptor import ReaderProxy, WriterProxy, no_proxy
from datamanager.transfer.stream import (
    DecompressingWriter,
    HashingReader,
    HashingWriter,
    SourceReader,
    TransferStats,
)

logger = logging.getLogger(__name__)


class TransformChain:
    """Applies the configured transforms between a reader and a writer."""

    def __init__(
        self,
        cipher: StreamCipher,
        buffer_size: int,
        compress: bool = False,
        reader_proxy: ReaderProxy = no_proxy,
        writer_proxy: WriterProxy = no_proxy,
    ) -> None:
        """Initialize the chain.

        Args:
            cipher: Cipher strategy (PlainCipher for no encryption).
            buffer_size: Chunk size for reads.
            compress: gzip on encode, gunzip on decode.
            reader_proxy: Wraps the reader the chain consumes.
            writer_proxy: Wraps the writer the chain produces into.
        """
        self._cipher = cipher
        self._buffer_size = buffer_size
        self._compress = compress
        self._reader_proxy = reader_proxy
        self._writer_proxy = writer_proxy

    @property
    def cipher(self) -> StreamCipher:
        return self._cipher

    def encode(
        self,
        source: Any,
        sink: Any,
        cancel: CancellationToken | None = None,
        stats: TransferStats | None = None,
    ) -> str:
        """Transform source into its wire form and write it to sink.

        Returns:
            Hex checksum of everything written to sink.
        """
        stats = stats if stats is not None else TransferStats()
        checksum = ChecksumState()
        reader = SourceReader(
            self._reader_proxy(source),
            self._buffer_size,
            cancel=cancel,
            compress=self._compress,
            stats=stats,
        )
        writer = HashingWriter(self._writer_proxy(sink), checksum, stats)
        self._cipher.encrypt_stream(reader, writer, self._buffer_size, cancel)
        digest = checksum.hexdigest()
        logger.debug(
            f"Encoded {stats.bytes_read} bytes in {stats.chunks} chunks "
            f"into {stats.bytes_written} wire bytes (checksum {digest})"
        )
        return digest

    def decode(
        self,
        body: Any,
        sink: Any,
        cancel: CancellationToken | None = None,
        stats: TransferStats | None = None,
    ) -> str:
        """Reverse the wire form read from body into sink.

        Returns:
            Hex checksum of everything read from body.
        """
        stats = stats if stats is not None else TransferStats()
        checksum = ChecksumState()
        reader = HashingReader(self._reader_proxy(body), checksum, cancel, stats)
        writer = self._writer_proxy(sink)
        decompressor = DecompressingWriter(writer) if self._compress else None
        self._cipher.decrypt_stream(
            reader, decompressor or writer, self._buffer_size, cancel
        )
        # the server hashed the whole body, including anything after the
        # cipher's own end of stream
        trailing = reader.drain(self._buffer_size)
        if trailing:
            logger.debug(f"Consumed {trailing} trailing bytes after end of stream")
        if decompressor is not None:
            decompressor.finish()
        digest = checksum.hexdigest()
        logger.debug(
            f"Decoded {stats.bytes_written} wire bytes (checksum {digest})"
        )
        return digest

"""Immutable per-transfer configuration.

A descriptor is built once per operation and never changes after the
pipeline has started. Proxies let callers observe bytes in flight.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from datamanager.core.protocol import FileAttributes, UploadEnvelope
from datamanager.core.types import CipherType, UploadType

ReaderProxy = Callable[[Any], Any]
WriterProxy = Callable[[Any], Any]
FileSizeCallback = Callable[[int | None], None]


def no_proxy(stream: Any) -> Any:
    """Identity proxy."""
    return stream


@dataclass(frozen=True, kw_only=True)
class TransferDescriptor:
    """Configuration shared by uploads and downloads.

    Attributes:
        name: Remote file name.
        file_id: Remote file id (0 if unknown).
        namespace: Remote namespace.
        cipher: Selected cipher.
        key: Key material for the cipher. Never persisted by the pipeline.
        compressed: Whether the stream is gzip compressed.
        buffer_size: Chunk size, 0 uses the TransferConfig default.
        reader_proxy: Wraps the reader the pipeline consumes.
        writer_proxy: Wraps the writer the pipeline produces into.
    """

    name: str = ""
    file_id: int = 0
    namespace: str = "default"
    cipher: CipherType = CipherType.NONE
    key: bytes | None = field(default=None, repr=False)
    compressed: bool = False
    buffer_size: int = 0
    reader_proxy: ReaderProxy = no_proxy
    writer_proxy: WriterProxy = no_proxy

    def get_buffer_size(self, default: int) -> int:
        """Return the buffer size, falling back to default if unset."""
        return self.buffer_size if self.buffer_size > 0 else default


@dataclass(frozen=True, kw_only=True)
class UploadDescriptor(TransferDescriptor):
    """Upload specific options."""

    tags: tuple[str, ...] = ()
    groups: tuple[str, ...] = ()
    public: bool = False
    public_name: str = ""
    replace_file_id: int = 0
    replace_equal_names: bool = False
    all_files: bool = False
    archived: bool = False
    multipart: bool = False

    @property
    def attributes(self) -> FileAttributes:
        return FileAttributes(
            namespace=self.namespace or "default",
            tags=self.tags,
            groups=self.groups,
        )

    def envelope(self, upload_type: UploadType, url: str = "") -> UploadEnvelope:
        """Build the side-channel metadata for this upload."""
        return UploadEnvelope(
            upload_type=upload_type,
            name=self.name,
            attributes=self.attributes,
            cipher=self.cipher,
            compressed=self.compressed,
            archived=self.archived,
            replace_file_id=self.replace_file_id,
            replace_equal_names=self.replace_equal_names,
            all_files=self.all_files,
            public=self.public,
            public_name=self.public_name,
            url=url,
        )


@dataclass(frozen=True, kw_only=True)
class DownloadDescriptor(TransferDescriptor):
    """Download specific options.

    Attributes:
        decrypt: Decrypt the stream if the server declares encryption.
        ignore_checksum: Don't verify against the server's checksum.
        extract: Gunzip the stream after decryption.
    """

    decrypt: bool = True
    ignore_checksum: bool = False
    extract: bool = False


@dataclass
class TransferResult:
    """Final outcome of a transfer.

    Attributes:
        bytes_transferred: Bytes sent or received on the wire.
        local_checksum: Hex checksum computed locally.
        remote_checksum: Checksum declared by the server ("" if none).
        verified: True if both checksums matched.
        chunks: Chunks processed.
        error: Failure that ended the transfer, None on success.
    """

    bytes_transferred: int
    local_checksum: str
    remote_checksum: str = ""
    verified: bool = False
    chunks: int = 0
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

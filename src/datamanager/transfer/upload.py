"""Upload pipeline.

This module provides:
- FileUploader: streams a local source to the server through the
  transform chain, with the metadata envelope in a request header
- predict_size: expected wire size when the source size is known
- UploadResult: server answer plus the local transfer outcome
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from datamanager.core.cancel import CancellationToken
from datamanager.core.config import TransferConfig
from datamanager.core.crypto import get_cipher
from datamanager.core.errors import (
    ChecksumMismatchError,
    TransferCancelled,
    TransportError,
    UnsupportedSchemeError,
)
from datamanager.core.protocol import (
    EP_FILE_UPLOAD,
    HEADER_REQUEST,
    JSON_CONTENT_TYPE,
    OCTET_STREAM,
    UploadResponse,
)
from datamanager.core.types import UploadType
from datamanager.transfer.archive import ArchiveSource
from datamanager.transfer.chain import TransformChain
from datamanager.transfer.descriptor import (
    FileSizeCallback,
    TransferResult,
    UploadDescriptor,
)
from datamanager.transfer.pipe import PipeReader
from datamanager.transfer.producer import Completion, StreamProducer

if TYPE_CHECKING:
    from datamanager.client.api import HTTPClient

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """Result of an upload.

    Attributes:
        response: File metadata returned by the server.
        transfer: Local outcome (wire bytes, checksums, chunks).
    """

    response: UploadResponse
    transfer: TransferResult

    @property
    def file_id(self) -> int:
        return self.response.file_id

    @property
    def checksum(self) -> str:
        return self.transfer.local_checksum


def predict_size(size: int | None, overhead: int) -> int | None:
    """Expected wire size of a source, None if the size isn't known.

    Args:
        size: Source size in bytes (None or <= 0 if unknown).
        overhead: Fixed bytes added by the cipher (e.g. the AES IV).
    """
    if size is None or size <= 0:
        return None
    return size + overhead


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class FileUploader:
    """Uploads files, readers, folders and URLs."""

    def __init__(
        self,
        client: HTTPClient,
        config: TransferConfig | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            client: HTTP transport.
            config: Transfer settings (defaults if omitted).
        """
        self._client = client
        self._config = config if config is not None else TransferConfig()

    @property
    def config(self) -> TransferConfig:
        return self._config

    def upload_file(
        self,
        local_path: Path,
        descriptor: UploadDescriptor,
        cancel: CancellationToken | None = None,
        on_size: FileSizeCallback | None = None,
    ) -> UploadResult:
        """Upload a local file. Its size is known from stat().

        Raises:
            ConfigurationError: Invalid cipher/key, before any network I/O.
            TransportError: Request failed.
            TransferCancelled: cancel was fired.
            ChecksumMismatchError: Server checksum differs.
        """
        local_path = Path(local_path)
        size = local_path.stat().st_size
        if not descriptor.name:
            descriptor = replace(descriptor, name=local_path.name)
        with open(local_path, "rb") as f:
            return self.upload_from_reader(f, descriptor, size, cancel, on_size)

    def upload_archived_folder(
        self,
        folder: Path,
        descriptor: UploadDescriptor,
        cancel: CancellationToken | None = None,
        on_size: FileSizeCallback | None = None,
    ) -> UploadResult:
        """Upload a folder as a tar stream built on the fly.

        The archive size isn't known up front, so no size is predicted.
        """
        folder = Path(folder)
        if not descriptor.name:
            descriptor = replace(descriptor, name=f"{folder.name}.tar")
        descriptor = replace(descriptor, archived=True)
        with ArchiveSource(folder) as archive:
            return self.upload_from_reader(
                archive.start(), descriptor, None, cancel, on_size
            )

    def upload_from_reader(
        self,
        reader: Any,
        descriptor: UploadDescriptor,
        size: int | None = None,
        cancel: CancellationToken | None = None,
        on_size: FileSizeCallback | None = None,
    ) -> UploadResult:
        """Upload everything readable from reader.

        Args:
            reader: Source with a read(n) method.
            descriptor: Upload options.
            size: Source size if known.
            cancel: Cancellation token for this transfer.
            on_size: Called once with the predicted wire size (None if unknown)
                before the first byte is sent.
        """
        cancel = cancel if cancel is not None else CancellationToken()
        # configuration errors surface before any network I/O
        cipher = get_cipher(
            self._config.ciphers.resolve(descriptor.cipher), descriptor.key
        )
        envelope = descriptor.envelope(UploadType.FILE)
        buffer_size = descriptor.get_buffer_size(self._config.buffer_size)

        predicted = predict_size(size, cipher.overhead)
        if on_size is not None:
            on_size(predicted)

        chain = TransformChain(
            cipher,
            buffer_size,
            compress=descriptor.compressed,
            reader_proxy=descriptor.reader_proxy,
            writer_proxy=descriptor.writer_proxy,
        )
        producer = StreamProducer(reader, chain, cancel, name=descriptor.name)

        logger.info(
            f"Uploading {descriptor.name} "
            f"(cipher={cipher.cipher_type.name.lower()}, "
            f"compressed={descriptor.compressed}, size={predicted})"
        )

        headers = {HEADER_REQUEST: envelope.encode()}
        pipe_reader = producer.start()
        body: Iterable[bytes] = pipe_reader
        if descriptor.multipart:
            body = self._multipart(pipe_reader, descriptor.name)
            headers["Content-Type"] = (
                f"multipart/form-data; boundary={self._config.multipart_boundary}"
            )
        else:
            headers["Content-Type"] = OCTET_STREAM

        try:
            response = self._client.send(
                EP_FILE_UPLOAD, body=body, headers=headers, method="PUT"
            )
        except BaseException as e:
            pipe_reader.close()
            completion = producer.wait()
            self._raise_for_completion(completion, e)
            raise
        pipe_reader.close()
        completion = producer.wait()
        self._raise_for_completion(completion, None)

        result = UploadResponse.from_dict(response.json())
        transfer = TransferResult(
            bytes_transferred=completion.bytes_written,
            local_checksum=completion.checksum,
            remote_checksum=result.checksum,
            verified=bool(result.checksum) and result.checksum == completion.checksum,
            chunks=completion.chunks,
        )
        if result.checksum and not transfer.verified:
            logger.warning(
                f"Checksum mismatch for {descriptor.name}: "
                f"local {completion.checksum}, server {result.checksum}"
            )
            raise ChecksumMismatchError(completion.checksum, result.checksum)

        logger.info(
            f"Uploaded {descriptor.name}: {completion.bytes_written} bytes, "
            f"{completion.chunks} chunks, file id {result.file_id}"
        )
        return UploadResult(response=result, transfer=transfer)

    def upload_url(self, url: str, descriptor: UploadDescriptor) -> UploadResponse:
        """Let the server fetch a http(s) URL itself.

        Raises:
            UnsupportedSchemeError: If the URL isn't http or https.
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise UnsupportedSchemeError(f"Unsupported scheme: {parsed.scheme!r}")
        if not descriptor.name:
            descriptor = replace(descriptor, name=parsed.hostname or url)
        envelope = descriptor.envelope(UploadType.URL, url=url)
        response = self._client.send(
            EP_FILE_UPLOAD,
            headers={
                HEADER_REQUEST: envelope.encode(),
                "Content-Type": JSON_CONTENT_TYPE,
            },
            method="PUT",
        )
        return UploadResponse.from_dict(response.json())

    def _multipart(self, reader: PipeReader, filename: str) -> Iterator[bytes]:
        """Frame the stream as a single form-file part."""
        boundary = self._config.multipart_boundary
        yield (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="fakefield"; '
            f'filename="{_quote(filename)}"\r\n'
            f"Content-Type: {OCTET_STREAM}\r\n\r\n"
        ).encode()
        yield from reader
        yield f"\r\n--{boundary}--\r\n".encode()

    def _raise_for_completion(
        self,
        completion: Completion,
        send_error: Exception | None,
    ) -> None:
        """Raise the error that best explains an unsuccessful upload."""
        if completion.cancelled:
            logger.warning("Upload cancelled")
            if isinstance(send_error, TransferCancelled):
                raise send_error
            raise TransferCancelled() from send_error
        if completion.failed and not isinstance(completion.error, BrokenPipeError):
            error = completion.error
            if error is send_error:
                raise error
            if isinstance(error, Exception):
                raise error from send_error
        if send_error is not None:
            return
        if completion.failed:
            # server answered before the whole body was sent
            raise TransportError(
                "Server closed the upload stream early"
            ) from completion.error
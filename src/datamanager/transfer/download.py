"""Download pipeline with checksum verification.

This module provides:
- FileDownloader: requests files and saves them locally
- DownloadResponse: one download, from validated headers to verification
- DownloadResult: outcome of download_to_file
- verification_state: terminal state for a pair of checksums

States: REQUESTED -> HEADERS_VALIDATED -> STREAMING ->
VERIFIED | MISMATCHED | UNVERIFIED | CANCELLED | FAILED.

The body is copied on the caller's thread. Partial output is never
removed here, that is up to the caller.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import httpx

from datamanager.client.api import HTTPClient, iter_body
from datamanager.core.cancel import CancellationToken
from datamanager.core.config import TransferConfig
from datamanager.core.crypto import PlainCipher, StreamCipher, get_cipher
from datamanager.core.errors import (
    ChecksumMismatchError,
    FileEncryptedError,
    MissingHeaderError,
    TransferCancelled,
    UnknownCipherError,
    UnsupportedCipherError,
)
from datamanager.core.protocol import (
    EP_FILE_GET,
    HEADER_CHECKSUM,
    HEADER_CONTENT_LENGTH,
    HEADER_ENCRYPTION,
    HEADER_FILE_ID,
    HEADER_FILENAME,
)
from datamanager.core.types import CipherType, DownloadState
from datamanager.transfer.chain import TransformChain
from datamanager.transfer.descriptor import DownloadDescriptor, TransferResult
from datamanager.transfer.stream import IterReader, TransferStats

logger = logging.getLogger(__name__)

DEFAULT_FILE_MODE = 0o644


def verification_state(local: str, remote: str, ignore: bool = False) -> DownloadState:
    """Terminal state for a finished stream.

    An empty local checksum never verifies: it means hashing was skipped.
    """
    if ignore or not remote:
        return DownloadState.UNVERIFIED
    if local and local == remote:
        return DownloadState.VERIFIED
    return DownloadState.MISMATCHED


def _parse_int(value: str | None) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        return 0


class DownloadResponse:
    """A file response whose headers were validated.

    Created by FileDownloader.request(). The body is consumed by save_to().
    """

    def __init__(
        self,
        response: httpx.Response,
        descriptor: DownloadDescriptor,
        config: TransferConfig,
        body: Iterator[bytes] | None = None,
    ) -> None:
        self._response = response
        self._descriptor = descriptor
        self._config = config
        self._body = body
        self.state = DownloadState.REQUESTED
        self.local_checksum = ""
        self.bytes_received = 0
        self.chunks = 0

        headers = response.headers
        self.server_filename = headers.get(HEADER_FILENAME, "").strip()
        if not self.server_filename:
            self.state = DownloadState.FAILED
            raise MissingHeaderError(HEADER_FILENAME)
        self.server_checksum = headers.get(HEADER_CHECKSUM, "").strip().lower()
        self.encryption = headers.get(HEADER_ENCRYPTION, "").strip().lower()
        self.size = _parse_int(headers.get(HEADER_CONTENT_LENGTH))
        self.file_id = _parse_int(headers.get(HEADER_FILE_ID))
        self.state = DownloadState.HEADERS_VALIDATED

    @property
    def descriptor(self) -> DownloadDescriptor:
        return self._descriptor

    def no_decrypt(self) -> DownloadResponse:
        """Save the body as received, even if it is encrypted."""
        self._descriptor = replace(self._descriptor, decrypt=False)
        return self

    def decrypt_with(self, key: bytes | None) -> DownloadResponse:
        """Decrypt with key. None behaves like no_decrypt()."""
        if key is None:
            return self.no_decrypt()
        self._descriptor = replace(self._descriptor, key=key, decrypt=True)
        return self

    def ignore_checksum(self) -> DownloadResponse:
        """Don't compare checksums, the download ends UNVERIFIED."""
        self._descriptor = replace(self._descriptor, ignore_checksum=True)
        return self

    @property
    def cipher_type(self) -> CipherType:
        """Cipher declared by the server.

        Raises:
            UnsupportedCipherError: If the declared cipher is unknown.
        """
        try:
            return self._config.ciphers.from_name(self.encryption)
        except UnknownCipherError:
            raise UnsupportedCipherError(self.encryption) from None

    def check_decryptable(self) -> StreamCipher:
        """Return the cipher for the body, before any byte is written.

        Raises:
            FileEncryptedError: Encrypted file but no key was given.
            UnsupportedCipherError: Server declared an unknown cipher.
        """
        if not self._descriptor.decrypt or not self.encryption:
            return PlainCipher()
        cipher_type = self.cipher_type
        if not self._descriptor.key:
            raise FileEncryptedError(self.encryption)
        return get_cipher(cipher_type, self._descriptor.key)

    def verify_checksum(self) -> bool:
        """Return True if both checksums are equal and not empty."""
        return bool(self.local_checksum) and self.local_checksum == self.server_checksum

    def save_to(self, writer: Any, cancel: CancellationToken | None = None) -> None:
        """Copy the body into writer, decrypting if required.

        Sets local_checksum and moves to a terminal state. A checksum
        mismatch is reported through the state, not raised.

        Raises:
            FileEncryptedError: Encrypted file but no key was given.
            TransferCancelled: cancel was fired.
        """
        if self.state != DownloadState.HEADERS_VALIDATED:
            raise RuntimeError(f"Can't save a download in state {self.state.value}")
        try:
            cipher = self.check_decryptable()
        except Exception:
            self.state = DownloadState.FAILED
            self.close()
            raise

        buffer_size = self._descriptor.get_buffer_size(self._config.buffer_size)
        chain = TransformChain(
            cipher,
            buffer_size,
            compress=self._descriptor.extract,
            reader_proxy=self._descriptor.reader_proxy,
            writer_proxy=self._descriptor.writer_proxy,
        )
        body = self._body
        if body is None:
            body = self._response.iter_bytes(buffer_size)
        stats = TransferStats()

        self.state = DownloadState.STREAMING
        logger.info(
            f"Downloading {self.server_filename} "
            f"(cipher={self.encryption or 'none'}, size={self.size})"
        )
        try:
            self.local_checksum = chain.decode(IterReader(body), writer, cancel, stats)
        except TransferCancelled:
            self.state = DownloadState.CANCELLED
            logger.warning(f"Download of {self.server_filename} cancelled")
            raise
        except Exception:
            self.state = DownloadState.FAILED
            raise
        finally:
            self.bytes_received = stats.bytes_written
            self.chunks = stats.chunks
            self.close()

        self.state = verification_state(
            self.local_checksum,
            self.server_checksum,
            self._descriptor.ignore_checksum,
        )
        if self.state == DownloadState.MISMATCHED:
            logger.warning(
                f"Checksum mismatch for {self.server_filename}: "
                f"local {self.local_checksum}, server {self.server_checksum}"
            )
        else:
            logger.info(
                f"Downloaded {self.server_filename}: {self.bytes_received} bytes "
                f"({self.state.value})"
            )

    def write_to_file(
        self,
        local_path: Path,
        mode: int = DEFAULT_FILE_MODE,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Save the body to a local file, truncating it.

        The file is left on disk if verification fails.

        Raises:
            ChecksumMismatchError: If the checksums don't match.
        """
        try:
            self.check_decryptable()
        except Exception:
            self.state = DownloadState.FAILED
            raise
        fd = os.open(local_path, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, mode)
        with open(fd, "wb") as f:
            self.save_to(f, cancel)
        if self.state == DownloadState.MISMATCHED:
            raise ChecksumMismatchError(self.local_checksum, self.server_checksum)

    def result(self) -> TransferResult:
        """Outcome of the transfer so far."""
        error = None
        if self.state == DownloadState.MISMATCHED:
            error = ChecksumMismatchError(self.local_checksum, self.server_checksum)
        elif self.state == DownloadState.CANCELLED:
            error = TransferCancelled()
        return TransferResult(
            bytes_transferred=self.bytes_received,
            local_checksum=self.local_checksum,
            remote_checksum=self.server_checksum,
            verified=self.state == DownloadState.VERIFIED,
            chunks=self.chunks,
            error=error,
        )

    def close(self) -> None:
        """Release the underlying HTTP response."""
        self._response.close()


@dataclass
class DownloadResult:
    """Result of a download to a local file."""

    local_path: Path
    server_filename: str
    file_id: int
    size: int
    state: DownloadState
    transfer: TransferResult


class FileDownloader:
    """Requests files from the server and saves them."""

    def __init__(
        self,
        client: HTTPClient,
        config: TransferConfig | None = None,
    ) -> None:
        """Initialize the downloader.

        Args:
            client: HTTP transport.
            config: Transfer settings (defaults if omitted).
        """
        self._client = client
        self._config = config if config is not None else TransferConfig()

    @contextlib.contextmanager
    def request(self, descriptor: DownloadDescriptor) -> Iterator[DownloadResponse]:
        """Request a file and yield the validated response.

        Raises:
            TransportError: Request failed or server returned an error.
            MissingHeaderError: Response has no filename header.
        """
        payload = {
            "fid": descriptor.file_id,
            "all": False,
            "attributes": {"ns": descriptor.namespace or "default"},
        }
        if descriptor.name:
            payload["name"] = descriptor.name

        buffer_size = descriptor.get_buffer_size(self._config.buffer_size)
        with self._client.stream(EP_FILE_GET, json=payload) as response:
            yield DownloadResponse(
                response,
                descriptor,
                self._config,
                body=iter_body(response, buffer_size),
            )

    def download_to_file(
        self,
        descriptor: DownloadDescriptor,
        local_path: Path,
        append_filename: bool = False,
        mode: int = DEFAULT_FILE_MODE,
        cancel: CancellationToken | None = None,
    ) -> DownloadResult:
        """Download a file, overwriting local_path if it exists.

        Args:
            descriptor: Which file and how to decode it.
            local_path: Target file, or target folder if append_filename.
            append_filename: Append the server's filename to local_path.
            mode: Permissions for a newly created file.
            cancel: Cancellation token for this transfer.

        Raises:
            FileEncryptedError: Encrypted file but no key was given.
            ChecksumMismatchError: If the checksums don't match (file kept).
            TransferCancelled: cancel was fired.
        """
        with self.request(descriptor) as response:
            target = Path(local_path)
            if append_filename:
                target = target / Path(response.server_filename).name
            response.write_to_file(target, mode, cancel)
            return DownloadResult(
                local_path=target,
                server_filename=response.server_filename,
                file_id=response.file_id,
                size=response.size,
                state=response.state,
                transfer=response.result(),
            )

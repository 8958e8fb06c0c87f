"""Cipher strategies for streaming encryption.

This module provides:
- AESCipher: AES in counter mode, a fresh 16 byte IV prefixed to every stream
- AgeCipher: age (X25519) envelope encryption, framing handled by the library
- PlainCipher: passthrough used when no encryption is selected
- get_cipher: cipher factory keyed by CipherType
- generate_key: fresh key material for a cipher

All strategies move bytes from a reader to a writer in bounded chunks.
Readers only need read(n), writers only need write(b).
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, BinaryIO

import pyrage
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from pyrage import x25519

from datamanager.core.cancel import CancellationToken
from datamanager.core.errors import (
    CipherError,
    InvalidKeyError,
    TransferCancelled,
    TruncatedIVError,
    UnknownCipherError,
)
from datamanager.core.types import CipherType

# AES-CTR constants
IV_SIZE = 16  # one AES block
AES_KEY_SIZES = (16, 24, 32)
AES_DEFAULT_KEY_SIZE = 32


def _check_cancel(cancel: CancellationToken | None) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled()


def read_exact(reader: Any, size: int) -> bytes:
    """Read exactly size bytes unless the stream ends first."""
    buf = bytearray()
    while len(buf) < size:
        data = reader.read(size - len(buf))
        if not data:
            break
        buf += data
    return bytes(buf)


@dataclass
class CipherContext:
    """Per-stream AES-CTR state.

    Lives for exactly one stream. The IV is sent in the clear as the
    stream prefix.
    """

    key: bytes = field(repr=False)
    iv: bytes
    _transform: Any = field(repr=False)

    @classmethod
    def create(cls, key: bytes, iv: bytes | None = None) -> CipherContext:
        """Create a context, drawing a fresh random IV unless one is given."""
        if len(key) not in AES_KEY_SIZES:
            raise InvalidKeyError(
                f"Invalid AES key: must be 16, 24 or 32 bytes, got {len(key)}"
            )
        if iv is None:
            iv = os.urandom(IV_SIZE)
        elif len(iv) != IV_SIZE:
            raise TruncatedIVError(f"AES IV must be {IV_SIZE} bytes, got {len(iv)}")
        # CTR encryption and decryption are the same keystream XOR
        transform = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
        return cls(key=key, iv=iv, _transform=transform)

    def update(self, data: bytes) -> bytes:
        """XOR the next bytes of the stream with the keystream."""
        return self._transform.update(data)


class StreamCipher(ABC):
    """Pluggable stream transform for one cipher."""

    cipher_type: CipherType = CipherType.NONE

    @property
    def overhead(self) -> int:
        """Fixed number of bytes the cipher adds to a stream, if known."""
        return 0

    @abstractmethod
    def encrypt_stream(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        buffer_size: int,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Encrypt everything readable from reader into writer."""

    @abstractmethod
    def decrypt_stream(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        buffer_size: int,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Decrypt everything readable from reader into writer."""


class PlainCipher(StreamCipher):
    """Copies bytes unchanged."""

    cipher_type = CipherType.NONE

    def encrypt_stream(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        buffer_size: int,
        cancel: CancellationToken | None = None,
    ) -> None:
        copy_stream(reader, writer, buffer_size, cancel)

    def decrypt_stream(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        buffer_size: int,
        cancel: CancellationToken | None = None,
    ) -> None:
        copy_stream(reader, writer, buffer_size, cancel)


class AESCipher(StreamCipher):
    """AES-CTR with the IV as the first 16 bytes of the stream.

    The format is fixed and versionless, a change requires a new cipher id.
    """

    cipher_type = CipherType.AES

    def __init__(self, key: bytes) -> None:
        if len(key) not in AES_KEY_SIZES:
            raise InvalidKeyError(
                f"Invalid AES key: must be 16, 24 or 32 bytes, got {len(key)}"
            )
        self._key = key

    @property
    def overhead(self) -> int:
        return IV_SIZE

    def encrypt_stream(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        buffer_size: int,
        cancel: CancellationToken | None = None,
    ) -> None:
        ctx = CipherContext.create(self._key)
        writer.write(ctx.iv)
        while True:
            _check_cancel(cancel)
            data = reader.read(buffer_size)
            if not data:
                break
            writer.write(ctx.update(data))

    def decrypt_stream(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        buffer_size: int,
        cancel: CancellationToken | None = None,
    ) -> None:
        iv = read_exact(reader, IV_SIZE)
        if len(iv) != IV_SIZE:
            raise TruncatedIVError(
                f"Reading AES IV: expected {IV_SIZE} bytes, got {len(iv)}"
            )
        ctx = CipherContext.create(self._key, iv)
        while True:
            _check_cancel(cancel)
            data = reader.read(buffer_size)
            if not data:
                break
            writer.write(ctx.update(data))


class AgeCipher(StreamCipher):
    """age encryption to the recipient of an identity file.

    The key is the content of an age identity file. The age library
    writes and reads its own header and framing.
    """

    cipher_type = CipherType.AGE

    def __init__(self, key: bytes) -> None:
        self._key = key

    def recipients(self) -> list[x25519.Recipient]:
        """Recipients to encrypt to, taken from the key file.

        Uses a "# public key:" comment or an "age1..." line, and falls
        back to the public half of the contained identities.
        """
        text = self._text()
        try:
            for line in text.splitlines():
                line = line.strip()
                if "public key:" in line:
                    return [x25519.Recipient.from_str(line.split(":", 1)[1].strip())]
                if line.startswith("age1"):
                    return [x25519.Recipient.from_str(line)]
        except Exception as e:
            raise InvalidKeyError(f"Invalid age recipient: {e}") from e
        return [identity.to_public() for identity in self.identities()]

    def identities(self) -> list[x25519.Identity]:
        """Identities used for decryption."""
        lines = [
            line.strip()
            for line in self._text().splitlines()
            if line.strip().startswith("AGE-SECRET-KEY-")
        ]
        if not lines:
            raise InvalidKeyError("No age identity found in key")
        try:
            return [x25519.Identity.from_str(line) for line in lines]
        except Exception as e:
            raise InvalidKeyError(f"Invalid age identity: {e}") from e

    def encrypt_stream(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        buffer_size: int,
        cancel: CancellationToken | None = None,
    ) -> None:
        recipients = self.recipients()
        _check_cancel(cancel)
        try:
            pyrage.encrypt_io(reader, writer, recipients)
        except Exception as e:
            # errors raised by our own reader/writer come back wrapped
            if cancel is not None and cancel.cancelled:
                raise TransferCancelled() from e
            raise CipherError(f"age encryption failed: {e}") from e

    def decrypt_stream(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        buffer_size: int,
        cancel: CancellationToken | None = None,
    ) -> None:
        identities = self.identities()
        _check_cancel(cancel)
        try:
            pyrage.decrypt_io(reader, writer, identities)
        except Exception as e:
            if cancel is not None and cancel.cancelled:
                raise TransferCancelled() from e
            raise CipherError(f"age decryption failed: {e}") from e

    def _text(self) -> str:
        try:
            return self._key.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidKeyError("age key must be a text identity file") from e


def copy_stream(
    reader: BinaryIO,
    writer: BinaryIO,
    buffer_size: int,
    cancel: CancellationToken | None = None,
) -> int:
    """Copy reader into writer chunk by chunk, honoring cancellation.

    Returns:
        Number of bytes copied.
    """
    total = 0
    while True:
        _check_cancel(cancel)
        data = reader.read(buffer_size)
        if not data:
            return total
        writer.write(data)
        total += len(data)


def get_cipher(cipher: CipherType, key: bytes | None) -> StreamCipher:
    """Return the stream cipher for a cipher type.

    Args:
        cipher: Selected cipher.
        key: Key material, ignored for CipherType.NONE.

    Raises:
        InvalidKeyError: If encryption is selected without a key.
        UnknownCipherError: If no strategy exists for the cipher.
    """
    if cipher == CipherType.NONE:
        return PlainCipher()
    if not key:
        raise InvalidKeyError(f"Cipher {cipher.name.lower()} requires a key")
    if cipher == CipherType.AES:
        return AESCipher(key)
    if cipher == CipherType.AGE:
        return AgeCipher(key)
    raise UnknownCipherError(cipher)


def generate_key(cipher: CipherType) -> bytes:
    """Generate fresh key material for a cipher.

    Returns:
        32 random bytes for AES, an age identity file for age.
    """
    if cipher == CipherType.AES:
        return os.urandom(AES_DEFAULT_KEY_SIZE)
    if cipher == CipherType.AGE:
        identity = x25519.Identity.generate()
        created = datetime.now(UTC).replace(microsecond=0).isoformat()
        return (
            f"# created: {created}\n"
            f"# public key: {identity.to_public()}\n"
            f"{identity}\n"
        ).encode()
    raise UnknownCipherError(cipher)

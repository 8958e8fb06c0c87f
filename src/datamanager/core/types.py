"""Shared types for datamanager.

This module defines the cipher identifiers, the table mapping them to
their wire names, and the states of a download.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum

from datamanager.core.errors import UnknownCipherError


class CipherType(IntEnum):
    """Encryption method of a stream.

    The integer value is sent in the upload envelope, the lowercase name
    in download response headers.
    """

    NONE = 0
    AES = 1
    AGE = 2


def _default_cipher_names() -> dict[int, str]:
    return {CipherType.AES: "aes", CipherType.AGE: "age"}


@dataclass(frozen=True)
class CipherTable:
    """Bidirectional mapping between cipher ids and their wire names.

    Matching on input is case-insensitive, output is always lowercase.
    """

    names: Mapping[int, str] = field(default_factory=_default_cipher_names)

    def name(self, cipher: int) -> str:
        """Return the wire name for a cipher id ("" for no encryption)."""
        if cipher == CipherType.NONE:
            return ""
        try:
            return self.names[cipher].lower()
        except KeyError:
            raise UnknownCipherError(cipher) from None

    def from_name(self, name: str) -> CipherType:
        """Return the cipher for a wire name.

        An empty name means no encryption.

        Raises:
            UnknownCipherError: If the name isn't in the table.
        """
        wanted = name.strip().lower()
        if not wanted:
            return CipherType.NONE
        for cipher_id, cipher_name in self.names.items():
            if cipher_name.lower() == wanted:
                return CipherType(cipher_id)
        raise UnknownCipherError(name)

    def is_valid(self, name: str) -> bool:
        """Check whether a (non-empty) name refers to a known cipher."""
        wanted = name.strip().lower()
        return any(n.lower() == wanted for n in self.names.values())

    def resolve(self, cipher: CipherType | int | str | None) -> CipherType:
        """Normalize any cipher selection to a CipherType."""
        if cipher is None:
            return CipherType.NONE
        if isinstance(cipher, str):
            return self.from_name(cipher)
        if cipher != CipherType.NONE and cipher not in self.names:
            raise UnknownCipherError(cipher)
        try:
            return CipherType(cipher)
        except ValueError:
            raise UnknownCipherError(cipher) from None


class DownloadState(str, Enum):
    """Lifecycle of a download.

    REQUESTED -> HEADERS_VALIDATED -> STREAMING -> one terminal state.
    """

    REQUESTED = "requested"
    HEADERS_VALIDATED = "headers_validated"
    STREAMING = "streaming"
    VERIFIED = "verified"
    MISMATCHED = "mismatched"
    UNVERIFIED = "unverified"
    CANCELLED = "cancelled"
    FAILED = "failed"


class UploadType(IntEnum):
    """Kind of upload announced in the request envelope."""

    FILE = 0
    URL = 1

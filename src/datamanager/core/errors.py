"""Exception hierarchy for DataManager transfers.

This module provides:
- ConfigurationError and subclasses: raised before any network I/O
- TransportError and subclasses: remote status/message carried along
- ProtocolError and subclasses: both ends disagree on the wire contract
- CipherError: failures reported by the cipher implementations
- IntegrityError / ChecksumMismatchError: digest verification failures
- TransferCancelled: the caller stopped the transfer
"""

from __future__ import annotations


class DataManagerError(Exception):
    """Base exception for all DataManager errors."""


# === Configuration errors ===


class ConfigurationError(DataManagerError):
    """Invalid local configuration. Never retried."""


class UnknownCipherError(ConfigurationError):
    """Cipher name or id is not known locally."""

    def __init__(self, cipher: object) -> None:
        super().__init__(f"Unknown cipher: {cipher!r}")
        self.cipher = cipher


class InvalidKeyError(ConfigurationError):
    """Key material doesn't fit the selected cipher."""


class FileEncryptedError(ConfigurationError):
    """File is encrypted but no key was given."""

    def __init__(self, cipher: str) -> None:
        super().__init__(f"File is encrypted ({cipher}) but no key was given")
        self.cipher = cipher


class UnsupportedSchemeError(ConfigurationError):
    """URL scheme can't be uploaded."""


# === Transport errors ===


class TransportError(DataManagerError):
    """Request failed or the server answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"HTTPCode: {self.status_code}; Status: {self.message}"


class AuthenticationError(TransportError):
    """Authentication failed."""


class NotFoundError(TransportError):
    """Resource not found."""


# === Protocol violations ===


class ProtocolError(DataManagerError):
    """The remote side doesn't speak the expected contract."""


class MissingHeaderError(ProtocolError):
    """A required response header is missing or empty."""

    def __init__(self, header: str) -> None:
        super().__init__(f"Missing or empty response header: {header}")
        self.header = header


class TruncatedIVError(ProtocolError):
    """Encrypted stream ended before a full IV could be read."""


class UnsupportedCipherError(ProtocolError):
    """Remote declared an encryption scheme this client can't decode."""

    def __init__(self, cipher: str) -> None:
        super().__init__(f"Cipher not supported: {cipher!r}")
        self.cipher = cipher


# === Cipher errors ===


class CipherError(DataManagerError):
    """Encryption or decryption failed inside the cipher implementation."""


# === Integrity errors ===


class IntegrityError(DataManagerError):
    """Transferred content failed verification."""


class ChecksumMismatchError(IntegrityError):
    """Local checksum doesn't match the checksum declared by the server."""

    def __init__(self, local: str, remote: str) -> None:
        super().__init__(
            f"Generated checksum doesn't match: local {local or '<none>'}, "
            f"remote {remote or '<none>'}"
        )
        self.local = local
        self.remote = remote


# === Cancellation ===


class TransferCancelled(DataManagerError):
    """Transfer was cancelled by the caller."""

    def __init__(self, message: str = "Transfer cancelled") -> None:
        super().__init__(message)

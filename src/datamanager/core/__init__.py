"""Core module - Ciphers, checksums, wire protocol and shared types."""

from datamanager.core.cancel import CancellationToken
from datamanager.core.checksum import ChecksumState, checksum_bytes
from datamanager.core.config import ServerConfig, TransferConfig
from datamanager.core.crypto import (
    AESCipher,
    AgeCipher,
    PlainCipher,
    StreamCipher,
    generate_key,
    get_cipher,
)
from datamanager.core.types import CipherTable, CipherType, DownloadState, UploadType

__all__ = [
    # Cancellation
    "CancellationToken",
    # Checksum
    "ChecksumState",
    "checksum_bytes",
    # Config
    "ServerConfig",
    "TransferConfig",
    # Crypto
    "AESCipher",
    "AgeCipher",
    "PlainCipher",
    "StreamCipher",
    "generate_key",
    "get_cipher",
    # Types
    "CipherTable",
    "CipherType",
    "DownloadState",
    "UploadType",
]

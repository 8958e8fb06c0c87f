"""Shared configuration classes for datamanager.

This module defines the server connection settings used by the HTTP
transport and the transfer settings injected into every pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from datamanager.core.types import CipherTable

DEFAULT_BUFFER_SIZE = 10 * 1024
DEFAULT_BOUNDARY = "MachliJalKiRaniHaiJeevanUskaPaaniHai"


@dataclass
class ServerConfig:
    """Configuration for connecting to a DataManager server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://dm.example.com").
        token: Session token sent as bearer authorization.
        timeout: Connect/read timeout in seconds. None disables it.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float | None = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass(frozen=True)
class TransferConfig:
    """Settings shared by the upload and download pipelines.

    Attributes:
        buffer_size: Bytes read from a source per chunk.
        multipart_boundary: Fixed boundary for multipart upload bodies.
            Client and server share it, it must not vary per request.
        ciphers: Cipher id <-> wire name table.
    """

    buffer_size: int = DEFAULT_BUFFER_SIZE
    multipart_boundary: str = DEFAULT_BOUNDARY
    ciphers: CipherTable = field(default_factory=CipherTable)

    def __post_init__(self) -> None:
        if self.buffer_size <= 0:
            # frozen dataclass, same fallback as an unset buffer size
            object.__setattr__(self, "buffer_size", DEFAULT_BUFFER_SIZE)

"""Incremental integrity digest.

The digest is a CRC-32 (IEEE) rendered as 8 lowercase hex characters,
the same value the server computes over the bytes it stores.
"""

from __future__ import annotations

import zlib


class ChecksumState:
    """Accumulates a CRC-32 over a byte stream, in order."""

    def __init__(self) -> None:
        self._crc = 0
        self._size = 0
        self._digest: str | None = None

    @property
    def finalized(self) -> bool:
        """Whether hexdigest() has sealed the state."""
        return self._digest is not None

    @property
    def size(self) -> int:
        """Number of bytes fed so far."""
        return self._size

    def update(self, data: bytes | bytearray | memoryview) -> None:
        """Feed the next bytes of the stream.

        Raises:
            RuntimeError: If the checksum was already finalized.
        """
        if self._digest is not None:
            raise RuntimeError("Checksum already finalized")
        self._crc = zlib.crc32(data, self._crc)
        self._size += len(data)

    def hexdigest(self) -> str:
        """Finalize and return the hex encoded digest."""
        if self._digest is None:
            self._digest = f"{self._crc & 0xFFFFFFFF:08x}"
        return self._digest


def checksum_bytes(data: bytes) -> str:
    """Compute the checksum of an in-memory byte string."""
    state = ChecksumState()
    state.update(data)
    return state.hexdigest()

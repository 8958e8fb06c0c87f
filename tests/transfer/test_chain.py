"""Tests for the transform chain."""

from __future__ import annotations

import gzip
import io
import os

import pytest

from datamanager.core.checksum import checksum_bytes
from datamanager.core.crypto import IV_SIZE, AESCipher, AgeCipher, PlainCipher, generate_key
from datamanager.core.types import CipherType
from datamanager.transfer.chain import TransformChain
from datamanager.transfer.stream import ProgressWriter, TransferStats

BUFFER = 10 * 1024


class TestEncode:
    """Tests for the upload direction."""

    def test_plain_checksum_is_plaintext_checksum(self) -> None:
        """Without transforms the wire bytes are the source bytes."""
        data = os.urandom(BUFFER * 2 + 1)
        sink = io.BytesIO()
        digest = TransformChain(PlainCipher(), BUFFER).encode(io.BytesIO(data), sink)
        assert sink.getvalue() == data
        assert digest == checksum_bytes(data)

    def test_checksum_covers_ciphertext(self) -> None:
        """With encryption the digest covers IV and ciphertext."""
        data = os.urandom(BUFFER)
        sink = io.BytesIO()
        digest = TransformChain(AESCipher(os.urandom(32)), BUFFER).encode(
            io.BytesIO(data), sink
        )
        wire = sink.getvalue()
        assert len(wire) == len(data) + IV_SIZE
        assert digest == checksum_bytes(wire)
        assert digest != checksum_bytes(data)

    def test_checksum_covers_compressed_ciphertext(self) -> None:
        """Compression runs before encryption, the digest after both."""
        key = os.urandom(32)
        data = b"a highly compressible line\n" * 2000
        sink = io.BytesIO()
        digest = TransformChain(AESCipher(key), BUFFER, compress=True).encode(
            io.BytesIO(data), sink
        )
        wire = sink.getvalue()
        assert len(wire) < len(data)
        assert digest == checksum_bytes(wire)

        plain = io.BytesIO()
        AESCipher(key).decrypt_stream(io.BytesIO(wire), plain, BUFFER)
        assert gzip.decompress(plain.getvalue()) == data

    def test_stats(self) -> None:
        """Should count source chunks and wire bytes."""
        stats = TransferStats()
        TransformChain(AESCipher(os.urandom(32)), BUFFER).encode(
            io.BytesIO(b"x" * (25 * 1024)), io.BytesIO(), stats=stats
        )
        assert stats.chunks == 3
        assert stats.bytes_read == 25 * 1024
        assert stats.bytes_written == 25 * 1024 + IV_SIZE

    def test_writer_proxy_sees_wire_bytes(self) -> None:
        """The writer proxy should wrap the outbound sink."""
        seen: list[int] = []
        chain = TransformChain(
            AESCipher(os.urandom(32)),
            BUFFER,
            writer_proxy=lambda writer: ProgressWriter(writer, seen.append),
        )
        chain.encode(io.BytesIO(b"x" * 100), io.BytesIO())
        assert sum(seen) == 100 + IV_SIZE


class TestDecode:
    """Tests for the download direction."""

    @pytest.mark.parametrize("compress", [False, True])
    def test_aes_round_trip_same_checksum(self, compress: bool) -> None:
        """Both directions should agree on the wire checksum."""
        key = os.urandom(32)
        data = os.urandom(BUFFER * 3) + b"tail" * 100
        wire = io.BytesIO()
        sent = TransformChain(AESCipher(key), BUFFER, compress=compress).encode(
            io.BytesIO(data), wire
        )
        out = io.BytesIO()
        received = TransformChain(AESCipher(key), BUFFER, compress=compress).decode(
            io.BytesIO(wire.getvalue()), out
        )
        assert out.getvalue() == data
        assert received == sent

    def test_age_round_trip_same_checksum(self) -> None:
        """age streams should verify the same way."""
        key = generate_key(CipherType.AGE)
        data = os.urandom(BUFFER + 123)
        wire = io.BytesIO()
        sent = TransformChain(AgeCipher(key), BUFFER).encode(io.BytesIO(data), wire)
        out = io.BytesIO()
        received = TransformChain(AgeCipher(key), BUFFER).decode(
            io.BytesIO(wire.getvalue()), out
        )
        assert out.getvalue() == data
        assert received == sent == checksum_bytes(wire.getvalue())

    def test_plain_checksum(self) -> None:
        """Without transforms the digest is the body's checksum."""
        out = io.BytesIO()
        digest = TransformChain(PlainCipher(), 4).decode(io.BytesIO(b"hello world"), out)
        assert out.getvalue() == b"hello world"
        assert digest == checksum_bytes(b"hello world")

"""Tests for crypto module - stream ciphers and key handling."""

from __future__ import annotations

import io
import os

import pytest

from datamanager.core.cancel import CancellationToken
from datamanager.core.crypto import (
    IV_SIZE,
    AESCipher,
    AgeCipher,
    CipherContext,
    PlainCipher,
    StreamCipher,
    generate_key,
    get_cipher,
)
from datamanager.core.errors import (
    CipherError,
    InvalidKeyError,
    TransferCancelled,
    TruncatedIVError,
    UnknownCipherError,
)
from datamanager.core.types import CipherType

BUFFER = 10 * 1024


def encrypt(cipher: StreamCipher, data: bytes) -> bytes:
    out = io.BytesIO()
    cipher.encrypt_stream(io.BytesIO(data), out, BUFFER)
    return out.getvalue()


def decrypt(cipher: StreamCipher, data: bytes) -> bytes:
    out = io.BytesIO()
    cipher.decrypt_stream(io.BytesIO(data), out, BUFFER)
    return out.getvalue()


class TestAESCipher:
    """Tests for AES-CTR with IV prefix."""

    @pytest.mark.parametrize("key_size", [16, 24, 32])
    def test_round_trip(self, key_size: int) -> None:
        """Decrypting should return the original data."""
        cipher = AESCipher(os.urandom(key_size))
        data = os.urandom(3 * BUFFER + 17)
        assert decrypt(cipher, encrypt(cipher, data)) == data

    def test_iv_prefix(self) -> None:
        """Ciphertext should be the 16 byte IV followed by len(data) bytes."""
        cipher = AESCipher(os.urandom(32))
        data = b"hello world"
        encrypted = encrypt(cipher, data)
        assert len(encrypted) == IV_SIZE + len(data)
        assert cipher.overhead == IV_SIZE

    def test_fresh_iv_per_stream(self) -> None:
        """Two encryptions of the same data should use different IVs."""
        cipher = AESCipher(os.urandom(32))
        first = encrypt(cipher, b"same data")
        second = encrypt(cipher, b"same data")
        assert first[:IV_SIZE] != second[:IV_SIZE]
        assert first != second

    def test_empty_stream(self) -> None:
        """An empty source should still produce the IV."""
        cipher = AESCipher(os.urandom(16))
        encrypted = encrypt(cipher, b"")
        assert len(encrypted) == IV_SIZE
        assert decrypt(cipher, encrypted) == b""

    def test_truncated_iv(self) -> None:
        """A stream shorter than the IV should fail."""
        cipher = AESCipher(os.urandom(32))
        with pytest.raises(TruncatedIVError):
            decrypt(cipher, b"short")

    @pytest.mark.parametrize("key_size", [0, 15, 33])
    def test_invalid_key_length(self, key_size: int) -> None:
        """Keys must be 16, 24 or 32 bytes."""
        with pytest.raises(InvalidKeyError):
            AESCipher(b"k" * key_size)

    def test_wrong_key_gives_garbage(self) -> None:
        """CTR has no authentication: a wrong key decrypts to other bytes."""
        data = b"secret payload"
        encrypted = encrypt(AESCipher(os.urandom(32)), data)
        assert decrypt(AESCipher(os.urandom(32)), encrypted) != data

    def test_cancelled(self) -> None:
        """Should stop between chunks once cancelled."""
        cancel = CancellationToken()
        cancel.cancel()
        with pytest.raises(TransferCancelled):
            AESCipher(os.urandom(32)).encrypt_stream(
                io.BytesIO(b"data"), io.BytesIO(), BUFFER, cancel
            )


class TestCipherContext:
    """Tests for CipherContext."""

    def test_given_iv(self) -> None:
        """Should keep a given IV."""
        iv = os.urandom(IV_SIZE)
        ctx = CipherContext.create(os.urandom(32), iv)
        assert ctx.iv == iv

    def test_bad_iv_length(self) -> None:
        """Should reject IVs that aren't one block long."""
        with pytest.raises(TruncatedIVError):
            CipherContext.create(os.urandom(32), b"\x00" * 8)


class TestAgeCipher:
    """Tests for age encryption."""

    def test_round_trip(self) -> None:
        """Decrypting should return the original data."""
        cipher = AgeCipher(generate_key(CipherType.AGE))
        data = os.urandom(2 * BUFFER + 5)
        assert decrypt(cipher, encrypt(cipher, data)) == data

    def test_recipient_from_public_key_comment(self) -> None:
        """Should encrypt to the public key written in the key file."""
        key = generate_key(CipherType.AGE)
        cipher = AgeCipher(key)
        public = [
            line.split(":", 1)[1].strip()
            for line in key.decode().splitlines()
            if "public key:" in line
        ][0]
        assert str(cipher.recipients()[0]) == public

    def test_recipient_derived_from_identity(self) -> None:
        """A bare identity file should still be usable for encryption."""
        key = generate_key(CipherType.AGE)
        identity_only = b"\n".join(
            line for line in key.splitlines() if line.startswith(b"AGE-SECRET-KEY-")
        )
        cipher = AgeCipher(identity_only)
        assert decrypt(AgeCipher(key), encrypt(cipher, b"data")) == b"data"

    def test_no_identity(self) -> None:
        """Decryption needs an identity line."""
        with pytest.raises(InvalidKeyError):
            AgeCipher(b"# nothing here\n").identities()

    def test_wrong_identity(self) -> None:
        """Decrypting with another identity should fail."""
        encrypted = encrypt(AgeCipher(generate_key(CipherType.AGE)), b"data")
        with pytest.raises(CipherError):
            decrypt(AgeCipher(generate_key(CipherType.AGE)), encrypted)

    def test_binary_key_rejected(self) -> None:
        """Keys must be text identity files."""
        with pytest.raises(InvalidKeyError):
            AgeCipher(b"\xff\xfe\x00").identities()


class TestGetCipher:
    """Tests for the cipher factory."""

    def test_none_is_plain(self) -> None:
        """No encryption should copy bytes unchanged."""
        cipher = get_cipher(CipherType.NONE, None)
        assert isinstance(cipher, PlainCipher)
        assert encrypt(cipher, b"data") == b"data"

    def test_aes(self) -> None:
        """Should build an AES cipher."""
        assert isinstance(get_cipher(CipherType.AES, os.urandom(32)), AESCipher)

    def test_age(self) -> None:
        """Should build an age cipher."""
        key = generate_key(CipherType.AGE)
        assert isinstance(get_cipher(CipherType.AGE, key), AgeCipher)

    def test_missing_key(self) -> None:
        """Encryption without key should fail before any I/O."""
        with pytest.raises(InvalidKeyError):
            get_cipher(CipherType.AES, None)


class TestGenerateKey:
    """Tests for key generation."""

    def test_aes_key(self) -> None:
        """AES keys should be 32 random bytes."""
        key = generate_key(CipherType.AES)
        assert len(key) == 32
        assert key != generate_key(CipherType.AES)

    def test_age_key(self) -> None:
        """age keys should be identity files."""
        key = generate_key(CipherType.AGE).decode()
        assert "# public key: age1" in key
        assert "AGE-SECRET-KEY-" in key

    def test_none(self) -> None:
        """There's no key for no encryption."""
        with pytest.raises(UnknownCipherError):
            generate_key(CipherType.NONE)

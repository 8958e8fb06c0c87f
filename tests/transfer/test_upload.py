"""Tests for the upload pipeline."""

from __future__ import annotations

import base64
import io
import json
import os
import tarfile
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest
from pytest_httpx import HTTPXMock

from datamanager.client.api import HTTPClient
from datamanager.core.cancel import CancellationToken
from datamanager.core.checksum import checksum_bytes
from datamanager.core.config import DEFAULT_BOUNDARY, ServerConfig
from datamanager.core.crypto import IV_SIZE, AESCipher
from datamanager.core.errors import (
    AuthenticationError,
    ChecksumMismatchError,
    InvalidKeyError,
    TransferCancelled,
    UnsupportedSchemeError,
)
from datamanager.core.types import CipherType
from datamanager.transfer.descriptor import UploadDescriptor
from datamanager.transfer.upload import FileUploader, predict_size

UPLOAD_URL = "http://test/upload/file"


@pytest.fixture
def client() -> Iterator[HTTPClient]:
    """Create an HTTP client for the mocked server."""
    with HTTPClient(ServerConfig(server_url="http://test", token="token123")) as c:
        yield c


class Server:
    """Records uploads and answers like the DataManager server."""

    def __init__(self, checksum: str | None = None) -> None:
        self.checksum = checksum
        self.body = b""
        self.headers: httpx.Headers | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.body = request.read()
        self.headers = request.headers
        envelope = json.loads(base64.b64decode(request.headers["Request"]))
        payload = self.body
        if request.headers.get("Content-Type", "").startswith("multipart/"):
            # the server hashes the file part only
            payload = payload.partition(b"\r\n\r\n")[2]
            payload = payload.removesuffix(f"\r\n--{DEFAULT_BOUNDARY}--\r\n".encode())
        checksum = self.checksum if self.checksum is not None else checksum_bytes(payload)
        return httpx.Response(
            200,
            json={
                "fileID": 7,
                "filename": envelope["name"],
                "checksum": checksum,
                "size": len(self.body),
                "ns": envelope["attr"]["ns"],
            },
        )

    @property
    def envelope(self) -> dict:
        assert self.headers is not None
        return json.loads(base64.b64decode(self.headers["Request"]))


class TestPredictSize:
    """Tests for predict_size."""

    def test_known(self) -> None:
        """Known sizes grow by the cipher overhead."""
        assert predict_size(100, IV_SIZE) == 116

    def test_unknown(self) -> None:
        """Unknown sizes stay unknown."""
        assert predict_size(None, IV_SIZE) is None


class TestUploadFile:
    """Tests for FileUploader.upload_file."""

    def test_plain_upload(
        self, client: HTTPClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """Should send the file as-is with its envelope."""
        server = Server()
        httpx_mock.add_callback(server, url=UPLOAD_URL, method="PUT")
        path = tmp_path / "notes.txt"
        path.write_bytes(b"hello world")

        result = FileUploader(client).upload_file(path, UploadDescriptor())

        assert server.body == b"hello world"
        assert server.headers is not None
        assert server.headers["Content-Type"] == "application/octet-stream"
        assert server.headers["Authorization"] == "Bearer token123"
        assert server.envelope["type"] == 0
        assert server.envelope["name"] == "notes.txt"
        assert result.file_id == 7
        assert result.checksum == checksum_bytes(b"hello world")
        assert result.transfer.verified

    def test_encrypted_upload(
        self, client: HTTPClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """Encrypted body should be IV + ciphertext and the size callback exact."""
        server = Server()
        httpx_mock.add_callback(server, url=UPLOAD_URL, method="PUT")
        key = os.urandom(32)
        data = os.urandom(25 * 1024)
        path = tmp_path / "data.bin"
        path.write_bytes(data)
        sizes: list[int | None] = []

        result = FileUploader(client).upload_file(
            path,
            UploadDescriptor(name="remote.bin", cipher=CipherType.AES, key=key),
            on_size=sizes.append,
        )

        assert sizes == [len(data) + IV_SIZE]
        assert len(server.body) == len(data) + IV_SIZE
        assert server.envelope["e"] == 1
        assert server.envelope["name"] == "remote.bin"
        assert result.transfer.chunks == 3
        assert result.checksum == checksum_bytes(server.body)

        plain = io.BytesIO()
        AESCipher(key).decrypt_stream(io.BytesIO(server.body), plain, 1024)
        assert plain.getvalue() == data

    def test_envelope_options(
        self, client: HTTPClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """Should carry attributes and upload options in the envelope."""
        server = Server()
        httpx_mock.add_callback(server, url=UPLOAD_URL, method="PUT")
        path = tmp_path / "a.txt"
        path.write_bytes(b"a")

        FileUploader(client).upload_file(
            path,
            UploadDescriptor(
                namespace="work",
                tags=("t1", "t2"),
                groups=("g",),
                public=True,
                public_name="shared",
                replace_file_id=3,
                compressed=True,
            ),
        )

        envelope = server.envelope
        assert envelope["attr"] == {"ns": "work", "tags": ["t1", "t2"], "groups": ["g"]}
        assert envelope["pb"] is True
        assert envelope["pbname"] == "shared"
        assert envelope["r"] == 3
        assert envelope["compr"] is True

    def test_checksum_mismatch(
        self, client: HTTPClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """A different server checksum should fail the upload."""
        httpx_mock.add_callback(Server(checksum="deadbeef"), url=UPLOAD_URL, method="PUT")
        path = tmp_path / "a.txt"
        path.write_bytes(b"some content")

        with pytest.raises(ChecksumMismatchError) as exc_info:
            FileUploader(client).upload_file(path, UploadDescriptor())
        assert exc_info.value.remote == "deadbeef"
        assert exc_info.value.local == checksum_bytes(b"some content")

    def test_missing_server_checksum(
        self, client: HTTPClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """No server checksum means the upload isn't verified, not failed."""
        httpx_mock.add_callback(Server(checksum=""), url=UPLOAD_URL, method="PUT")
        path = tmp_path / "a.txt"
        path.write_bytes(b"some content")

        result = FileUploader(client).upload_file(path, UploadDescriptor())
        assert not result.transfer.verified
        assert result.transfer.succeeded

    def test_invalid_key_before_request(
        self, client: HTTPClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """Key errors should surface before anything is sent."""
        path = tmp_path / "a.txt"
        path.write_bytes(b"a")
        with pytest.raises(InvalidKeyError):
            FileUploader(client).upload_file(
                path, UploadDescriptor(cipher=CipherType.AES, key=b"short")
            )
        assert httpx_mock.get_requests() == []

    def test_server_error(
        self, client: HTTPClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """Error statuses should raise the mapped transport error."""
        httpx_mock.add_response(
            url=UPLOAD_URL,
            method="PUT",
            status_code=401,
            headers={"X-Response-Message": "invalid token"},
        )
        path = tmp_path / "a.txt"
        path.write_bytes(b"a" * 50_000)

        with pytest.raises(AuthenticationError, match="invalid token"):
            FileUploader(client).upload_file(path, UploadDescriptor())

    @pytest.mark.httpx_mock(assert_all_responses_were_requested=False)
    def test_cancelled(
        self, client: HTTPClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """A fired token should cancel the upload."""
        httpx_mock.add_callback(Server(), url=UPLOAD_URL, method="PUT")
        path = tmp_path / "a.txt"
        path.write_bytes(b"a" * 50_000)
        cancel = CancellationToken()
        cancel.cancel()

        with pytest.raises(TransferCancelled):
            FileUploader(client).upload_file(path, UploadDescriptor(), cancel)


class TestUploadFromReader:
    """Tests for FileUploader.upload_from_reader."""

    def test_unknown_size(self, client: HTTPClient, httpx_mock: HTTPXMock) -> None:
        """The size callback should fire once with None."""
        server = Server()
        httpx_mock.add_callback(server, url=UPLOAD_URL, method="PUT")
        sizes: list[int | None] = []

        FileUploader(client).upload_from_reader(
            io.BytesIO(b"streamed"),
            UploadDescriptor(name="stream.txt"),
            on_size=sizes.append,
        )

        assert sizes == [None]
        assert server.body == b"streamed"

    def test_multipart(self, client: HTTPClient, httpx_mock: HTTPXMock) -> None:
        """Multipart bodies should frame the stream in one form-file part."""
        server = Server()
        httpx_mock.add_callback(server, url=UPLOAD_URL, method="PUT")

        result = FileUploader(client).upload_from_reader(
            io.BytesIO(b"payload"),
            UploadDescriptor(name="a.txt", multipart=True),
        )

        assert server.headers is not None
        assert server.headers["Content-Type"] == (
            f"multipart/form-data; boundary={DEFAULT_BOUNDARY}"
        )
        head, _, rest = server.body.partition(b"\r\n\r\n")
        assert head.startswith(f"--{DEFAULT_BOUNDARY}\r\n".encode())
        assert b'name="fakefield"; filename="a.txt"' in head
        assert rest == b"payload" + f"\r\n--{DEFAULT_BOUNDARY}--\r\n".encode()
        # only the part payload is hashed
        assert result.checksum == checksum_bytes(b"payload")

    @pytest.mark.httpx_mock(assert_all_responses_were_requested=False)
    def test_source_failure(self, client: HTTPClient, httpx_mock: HTTPXMock) -> None:
        """A failing source should raise its own error."""

        class BrokenSource:
            def read(self, size: int = -1) -> bytes:
                raise OSError("device lost")

        httpx_mock.add_callback(Server(), url=UPLOAD_URL, method="PUT")
        with pytest.raises(OSError, match="device lost"):
            FileUploader(client).upload_from_reader(
                BrokenSource(), UploadDescriptor(name="x")
            )


class TestUploadArchivedFolder:
    """Tests for FileUploader.upload_archived_folder."""

    def test_folder_as_tar(
        self, client: HTTPClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """The folder should arrive as a tar stream flagged as archived."""
        server = Server()
        httpx_mock.add_callback(server, url=UPLOAD_URL, method="PUT")
        folder = tmp_path / "photos"
        folder.mkdir()
        (folder / "a.txt").write_text("A")
        (folder / "b.txt").write_text("B")
        sizes: list[int | None] = []

        FileUploader(client).upload_archived_folder(
            folder, UploadDescriptor(), on_size=sizes.append
        )

        assert sizes == [None]
        assert server.envelope["arved"] is True
        assert server.envelope["name"] == "photos.tar"
        with tarfile.open(fileobj=io.BytesIO(server.body)) as tar:
            names = sorted(tar.getnames())
        assert names == ["photos", "photos/a.txt", "photos/b.txt"]


class TestUploadURL:
    """Tests for FileUploader.upload_url."""

    def test_http_url(self, client: HTTPClient, httpx_mock: HTTPXMock) -> None:
        """Should send only the envelope with the URL."""
        server = Server()
        httpx_mock.add_callback(server, url=UPLOAD_URL, method="PUT")

        response = FileUploader(client).upload_url(
            "https://example.com/file.zip", UploadDescriptor(name="file.zip")
        )

        assert server.body == b""
        assert server.envelope["type"] == 1
        assert server.envelope["url"] == "https://example.com/file.zip"
        assert response.file_id == 7

    @pytest.mark.parametrize("url", ["ftp://example.com/f", "file:///etc/passwd"])
    def test_unsupported_scheme(self, client: HTTPClient, url: str) -> None:
        """Only http and https can be uploaded by reference."""
        with pytest.raises(UnsupportedSchemeError):
            FileUploader(client).upload_url(url, UploadDescriptor())

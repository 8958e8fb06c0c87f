"""Tests for the wire contract: envelope and upload response."""

from __future__ import annotations

import base64
import json

from datamanager.core.protocol import FileAttributes, UploadEnvelope, UploadResponse
from datamanager.core.types import CipherType, UploadType


class TestUploadEnvelope:
    """Tests for UploadEnvelope."""

    def test_minimal_payload(self) -> None:
        """Empty optional fields should be omitted."""
        envelope = UploadEnvelope(upload_type=UploadType.FILE, name="a.txt")
        assert envelope.to_dict() == {
            "type": 0,
            "name": "a.txt",
            "attr": {"ns": "default"},
            "ren": False,
            "a": False,
        }

    def test_full_payload(self) -> None:
        """Should use the server's field names."""
        envelope = UploadEnvelope(
            upload_type=UploadType.FILE,
            name="a.txt",
            attributes=FileAttributes("work", ("t1",), ("g1", "g2")),
            cipher=CipherType.AES,
            compressed=True,
            archived=True,
            replace_file_id=12,
            public=True,
            public_name="pub",
        )
        data = envelope.to_dict()
        assert data["attr"] == {"ns": "work", "tags": ["t1"], "groups": ["g1", "g2"]}
        assert data["e"] == 1
        assert data["compr"] is True
        assert data["arved"] is True
        assert data["r"] == 12
        assert data["pb"] is True
        assert data["pbname"] == "pub"

    def test_encode_is_base64_json(self) -> None:
        """Header value should be base64 of the JSON payload."""
        envelope = UploadEnvelope(
            upload_type=UploadType.URL, name="page", url="https://example.com"
        )
        decoded = json.loads(base64.b64decode(envelope.encode()))
        assert decoded["type"] == 1
        assert decoded["url"] == "https://example.com"
        assert UploadEnvelope.decode(envelope.encode()) == decoded


class TestUploadResponse:
    """Tests for UploadResponse."""

    def test_from_dict(self) -> None:
        """Should map the server's field names."""
        response = UploadResponse.from_dict(
            {
                "fileID": 42,
                "filename": "a.txt",
                "checksum": "deadbeef",
                "size": 10,
                "ns": "default",
                "publicFilename": "",
            }
        )
        assert response.file_id == 42
        assert response.checksum == "deadbeef"
        assert response.namespace == "default"

    def test_from_dict_missing_fields(self) -> None:
        """Missing fields should fall back to empty values."""
        response = UploadResponse.from_dict({})
        assert response.file_id == 0
        assert response.checksum == ""

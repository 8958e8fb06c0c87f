"""Wire contract shared with the DataManager server.

Endpoints, header names and the upload request envelope.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any

from datamanager.core.types import CipherType, UploadType

# Endpoints
EP_PING = "/ping"
EP_FILE_UPLOAD = "/upload/file"
EP_FILE_GET = "/download/file"

# Request headers
HEADER_REQUEST = "Request"

# Response headers
HEADER_STATUS = "X-Response-Status"
HEADER_STATUS_MESSAGE = "X-Response-Message"
HEADER_FILENAME = "X-Filename"
HEADER_CHECKSUM = "Checksum"
HEADER_ENCRYPTION = "X-Encryption"
HEADER_CONTENT_LENGTH = "ContentLength"
HEADER_FILE_ID = "X-FileID"

# Value of HEADER_STATUS for failed requests
RESPONSE_ERROR = "0"

OCTET_STREAM = "application/octet-stream"
JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class FileAttributes:
    """Namespace, tags and groups of a remote file."""

    namespace: str = "default"
    tags: tuple[str, ...] = ()
    groups: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ns": self.namespace or "default"}
        if self.tags:
            data["tags"] = list(self.tags)
        if self.groups:
            data["groups"] = list(self.groups)
        return data


@dataclass(frozen=True)
class UploadEnvelope:
    """Metadata sent alongside the upload body in the Request header.

    Travels as base64 encoded JSON, never interleaved with the stream.
    """

    upload_type: UploadType
    name: str
    attributes: FileAttributes = field(default_factory=FileAttributes)
    cipher: CipherType = CipherType.NONE
    compressed: bool = False
    archived: bool = False
    replace_file_id: int = 0
    replace_equal_names: bool = False
    all_files: bool = False
    public: bool = False
    public_name: str = ""
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        """JSON payload using the server's field names."""
        data: dict[str, Any] = {
            "type": int(self.upload_type),
            "name": self.name,
            "attr": self.attributes.to_dict(),
            "ren": self.replace_equal_names,
            "a": self.all_files,
        }
        # omitted when empty, like the server's own encoder
        optional: dict[str, Any] = {
            "url": self.url,
            "pb": self.public,
            "pbname": self.public_name,
            "e": int(self.cipher),
            "compr": self.compressed,
            "arved": self.archived,
            "r": self.replace_file_id,
        }
        data.update({k: v for k, v in optional.items() if v})
        return data

    def encode(self) -> str:
        """Header value: base64 of the JSON payload."""
        payload = json.dumps(self.to_dict(), separators=(",", ":"))
        return base64.b64encode(payload.encode()).decode()

    @classmethod
    def decode(cls, value: str) -> dict[str, Any]:
        """Decode a header value back into its JSON payload."""
        result: dict[str, Any] = json.loads(base64.b64decode(value))
        return result


@dataclass
class UploadResponse:
    """Server answer to a successful upload."""

    file_id: int
    filename: str
    checksum: str
    size: int
    namespace: str
    public_filename: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UploadResponse:
        """Create from API response dictionary."""
        return cls(
            file_id=int(data.get("fileID", 0)),
            filename=data.get("filename", ""),
            checksum=data.get("checksum", ""),
            size=int(data.get("size", 0)),
            namespace=data.get("ns", ""),
            public_filename=data.get("publicFilename", ""),
        )

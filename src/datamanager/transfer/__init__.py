"""Streaming transfer pipelines.

Architecture:
    source → SourceReader → cipher → HashingWriter → Pipe → HTTP body

- **TransformChain**: compress/encrypt/hash on upload, the reverse on download
- **StreamProducer**: runs the upload chain on a background thread
- **Pipe**: bounded handoff between the producer and the HTTP request
- **FileUploader / FileDownloader**: upload and download entry points
"""

from datamanager.transfer.archive import ArchiveSource
from datamanager.transfer.chain import TransformChain
from datamanager.transfer.descriptor import (
    DownloadDescriptor,
    FileSizeCallback,
    ReaderProxy,
    TransferDescriptor,
    TransferResult,
    UploadDescriptor,
    WriterProxy,
)
from datamanager.transfer.download import (
    DownloadResponse,
    DownloadResult,
    FileDownloader,
    verification_state,
)
from datamanager.transfer.pipe import Pipe, PipeReader, PipeWriter
from datamanager.transfer.producer import Completion, CompletionStatus, StreamProducer
from datamanager.transfer.stream import ProgressReader, ProgressWriter, TransferStats
from datamanager.transfer.upload import FileUploader, UploadResult, predict_size

__all__ = [
    # Descriptors
    "DownloadDescriptor",
    "FileSizeCallback",
    "ReaderProxy",
    "TransferDescriptor",
    "TransferResult",
    "UploadDescriptor",
    "WriterProxy",
    # Pipeline
    "ArchiveSource",
    "Completion",
    "CompletionStatus",
    "Pipe",
    "PipeReader",
    "PipeWriter",
    "StreamProducer",
    "TransformChain",
    "TransferStats",
    # Progress
    "ProgressReader",
    "ProgressWriter",
    # Upload / download
    "DownloadResponse",
    "DownloadResult",
    "FileDownloader",
    "FileUploader",
    "UploadResult",
    "predict_size",
    "verification_state",
]

"""Tar stream of a folder, built on a background thread."""

from __future__ import annotations

import logging
import tarfile
import threading
from pathlib import Path

from datamanager.core.errors import ConfigurationError
from datamanager.transfer.pipe import Pipe, PipeReader

logger = logging.getLogger(__name__)


class ArchiveSource:
    """Streams a folder as an uncompressed tar archive.

    The archive is written into a Pipe by a worker thread, so its size
    is never known in advance.

    Usage:
        with ArchiveSource(folder) as archive:
            reader = archive.start()
            ...
    """

    def __init__(self, folder: Path) -> None:
        self._folder = Path(folder)
        if not self._folder.is_dir():
            raise ConfigurationError(f"Not a directory: {self._folder}")
        self._pipe = Pipe()
        self._thread: threading.Thread | None = None

    def start(self) -> PipeReader:
        """Start writing the archive and return its reader."""
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._run,
                name=f"archive-{self._folder.name}",
                daemon=True,
            )
            self._thread.start()
        return self._pipe.reader

    def close(self) -> None:
        """Stop the archive thread if it's still writing."""
        self._pipe.reader.close()
        if self._thread is not None:
            self._thread.join()

    def __enter__(self) -> ArchiveSource:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _run(self) -> None:
        writer = self._pipe.writer
        try:
            with tarfile.open(fileobj=writer, mode="w|") as tar:
                tar.add(self._folder, arcname=self._folder.name)
        except BrokenPipeError:
            logger.debug(f"Archive of {self._folder} abandoned by reader")
            writer.close()
        except Exception as e:
            logger.debug(f"Archiving {self._folder} failed: {e!r}")
            writer.close_with_error(e)
        else:
            writer.close()

"""In-memory pipe with synchronous handoff.

A write blocks until the reader has taken the chunk, which keeps the
producer at most one chunk ahead of the consumer. The pipe is the only
object shared between the producer thread and the consumer.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator


class Pipe:
    """Unidirectional pipe between one writer thread and one reader thread."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._slot: bytes | None = None
        self._writer_closed = False
        self._reader_closed = False
        self._error: BaseException | None = None
        self.reader = PipeReader(self)
        self.writer = PipeWriter(self)

    # === Writer side ===

    def _put(self, data: bytes) -> None:
        with self._cond:
            if self._writer_closed:
                raise ValueError("write to closed pipe")
            while self._slot is not None and not self._reader_closed:
                self._cond.wait()
            if self._reader_closed:
                raise BrokenPipeError("pipe reader closed")
            self._slot = data
            self._cond.notify_all()
            # wait for the paired read
            while self._slot is not None and not self._reader_closed:
                self._cond.wait()
            if self._slot is not None:
                self._slot = None
                raise BrokenPipeError("pipe reader closed")

    def _close_writer(self, error: BaseException | None) -> None:
        with self._cond:
            if self._writer_closed:
                return
            self._writer_closed = True
            self._error = error
            self._cond.notify_all()

    # === Reader side ===

    def _take(self) -> bytes:
        """Next chunk, b"" on clean EOF. Raises the writer's error."""
        with self._cond:
            while self._slot is None and not self._writer_closed:
                if self._reader_closed:
                    return b""
                self._cond.wait()
            if self._slot is not None:
                data = self._slot
                self._slot = None
                self._cond.notify_all()
                return data
            if self._error is not None:
                raise self._error
            return b""

    def _close_reader(self) -> None:
        with self._cond:
            self._reader_closed = True
            self._cond.notify_all()


class PipeWriter:
    """Write half of a Pipe."""

    def __init__(self, pipe: Pipe) -> None:
        self._pipe = pipe

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Hand data to the reader, blocking until it was taken.

        Raises:
            BrokenPipeError: If the reader was closed.
        """
        if not data:
            return 0
        self._pipe._put(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        """Signal a clean EOF to the reader."""
        self._pipe._close_writer(None)

    def close_with_error(self, error: BaseException) -> None:
        """Close the pipe so that the reader raises error."""
        self._pipe._close_writer(error)


class PipeReader:
    """Read half of a Pipe.

    Usable as a file-like object (read) or as an iterator of chunks,
    which is what the HTTP transport consumes as request content.
    """

    def __init__(self, pipe: Pipe) -> None:
        self._pipe = pipe
        self._pending = b""
        self._eof = False

    def __iter__(self) -> Iterator[bytes]:
        if self._pending:
            data, self._pending = self._pending, b""
            yield data
        while not self._eof:
            data = self._pipe._take()
            if not data:
                self._eof = True
                return
            yield data

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes (everything if size < 0)."""
        if size is None or size < 0:
            return b"".join(self)
        while not self._pending and not self._eof:
            self._pending = self._pipe._take()
            if not self._pending:
                self._eof = True
        data, self._pending = self._pending[:size], self._pending[size:]
        return data

    def close(self) -> None:
        """Stop reading. A blocked writer gets BrokenPipeError."""
        self._eof = True
        self._pending = b""
        self._pipe._close_reader()

"""Background producer feeding an upload body.

The producer thread reads the source through the transform chain into
a Pipe. The HTTP transport reads the other end of the pipe on its own
thread. The two only share the pipe and the completion result.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from datamanager.core.cancel import CancellationToken
from datamanager.core.errors import TransferCancelled
from datamanager.transfer.chain import TransformChain
from datamanager.transfer.pipe import Pipe, PipeReader
from datamanager.transfer.stream import TransferStats

logger = logging.getLogger(__name__)


class CompletionStatus(Enum):
    """How the producer finished."""

    SUCCEEDED = auto()
    CANCELLED = auto()
    FAILED = auto()


@dataclass(frozen=True)
class Completion:
    """Result published once by the producer.

    Attributes:
        status: How the producer finished.
        checksum: Hex checksum of the wire bytes (only on success).
        error: The error that ended the producer (cancellation or failure).
        chunks: Source chunks processed.
        bytes_written: Wire bytes handed to the pipe.
    """

    status: CompletionStatus
    checksum: str = ""
    error: BaseException | None = None
    chunks: int = 0
    bytes_written: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == CompletionStatus.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return self.status == CompletionStatus.CANCELLED

    @property
    def failed(self) -> bool:
        return self.status == CompletionStatus.FAILED


class StreamProducer:
    """Pumps a source through a TransformChain into a pipe.

    Exactly one producer thread runs per transfer. Usage:

        producer = StreamProducer(source, chain, cancel)
        reader = producer.start()
        client.send(..., content=reader)
        completion = producer.wait()
    """

    def __init__(
        self,
        source: Any,
        chain: TransformChain,
        cancel: CancellationToken | None = None,
        name: str = "upload",
    ) -> None:
        self._source = source
        self._chain = chain
        self._cancel = cancel if cancel is not None else CancellationToken()
        self._name = name
        self._pipe = Pipe()
        self._stats = TransferStats()
        self._done: queue.Queue[Completion] = queue.Queue(maxsize=1)
        self._completion: Completion | None = None
        self._thread: threading.Thread | None = None

    @property
    def reader(self) -> PipeReader:
        """Consumer side of the pipe."""
        return self._pipe.reader

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel

    @property
    def stats(self) -> TransferStats:
        return self._stats

    def start(self) -> PipeReader:
        """Start the producer thread.

        Returns:
            The reader to hand to the transport.
        """
        if self._thread is not None:
            raise RuntimeError("Producer already started")
        self._thread = threading.Thread(
            target=self._run,
            name=f"producer-{self._name}",
            daemon=True,
        )
        self._thread.start()
        return self._pipe.reader

    def wait(self, timeout: float | None = None) -> Completion:
        """Block until the producer published its completion.

        Raises:
            TimeoutError: If timeout expires first.
        """
        if self._completion is None:
            try:
                self._completion = self._done.get(timeout=timeout)
            except queue.Empty:
                raise TimeoutError(
                    f"Producer {self._name} didn't finish in {timeout}s"
                ) from None
        return self._completion

    def _run(self) -> None:
        writer = self._pipe.writer
        try:
            checksum = self._chain.encode(
                self._source, writer, self._cancel, self._stats
            )
        except TransferCancelled as e:
            logger.warning(
                f"Producer {self._name} cancelled after {self._stats.chunks} chunks"
            )
            writer.close_with_error(e)
            completion = self._completion_for(CompletionStatus.CANCELLED, error=e)
        except Exception as e:
            logger.debug(f"Producer {self._name} failed: {e!r}")
            writer.close_with_error(e)
            completion = self._completion_for(CompletionStatus.FAILED, error=e)
        else:
            writer.close()
            completion = self._completion_for(
                CompletionStatus.SUCCEEDED, checksum=checksum
            )
        self._done.put(completion)

    def _completion_for(
        self,
        status: CompletionStatus,
        checksum: str = "",
        error: BaseException | None = None,
    ) -> Completion:
        return Completion(
            status=status,
            checksum=checksum,
            error=error,
            chunks=self._stats.chunks,
            bytes_written=self._stats.bytes_written,
        )

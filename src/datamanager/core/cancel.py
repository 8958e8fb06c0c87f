"""Cooperative cancellation for transfers."""

from __future__ import annotations

import threading

from datamanager.core.errors import TransferCancelled


class CancellationToken:
    """Single-use, broadcast-once cancellation signal.

    Every stage of a transfer polls the token between chunks. Once
    cancelled it stays cancelled.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Fire the signal. Calling it again has no effect."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Check (without blocking) whether the signal was fired."""
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise TransferCancelled if the signal was fired."""
        if self._event.is_set():
            raise TransferCancelled()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or until timeout expires."""
        return self._event.wait(timeout)

"""Cooperative cancellation token shared by every blocking call in the service."""

import threading
from typing import Optional

from timed_rx_lib.errors import Cancelled


class CancellationToken:
    """Explicit stop signal passed into each suspension point.

    Queue pops, clock-sync sleeps, lock-sensor polling and the streaming
    receive loop all observe the same token, so a single ``cancel()`` call
    unwinds the data-plane thread without process-wide state.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation (idempotent, safe from signal handlers)."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to timeout seconds, returning early on cancellation.

        Returns:
            True if the token was cancelled, False if the timeout elapsed
        """
        if timeout is not None and timeout <= 0:
            return self._event.is_set()
        return self._event.wait(timeout=timeout)

    def raise_if_cancelled(self) -> None:
        """Raise Cancelled if cancellation has been requested."""
        if self._event.is_set():
            raise Cancelled("Operation cancelled")

"""Thread-safe unbounded FIFO with blocking pop, shared by the control and data planes."""

import logging
import threading
from collections import deque
from typing import Deque, Generic, Optional, TypeVar

from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.errors import Cancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueueEmpty(Exception):
    """Raised by pop_nowait() when the queue holds no items."""

    pass


class BlockingQueue(Generic[T]):
    """Unbounded FIFO queue whose pop blocks until an item is available.

    The only synchronization point between the control-plane thread (MQTT
    callbacks) and the data-plane thread (acquisition worker). Each queue is
    used in one direction: one side only pushes, the other only pops.
    """

    def __init__(self, name: str = "queue") -> None:
        """Initialize empty queue.

        Args:
            name: Label used in log messages.
        """
        self._items: Deque[T] = deque()
        self._cond = threading.Condition(threading.Lock())
        self._name = name

    def push(self, item: T) -> None:
        """Append item to the tail and wake one blocked waiter."""
        with self._cond:
            self._items.append(item)
            self._cond.notify()
        logger.debug(f"[{self._name}] pushed item, depth={len(self)}")

    def pop(
        self,
        cancel: Optional[CancellationToken] = None,
        poll_interval_s: float = 0.1,
    ) -> T:
        """Remove and return the head item, blocking until one is available.

        Args:
            cancel: Optional token observed while waiting.
            poll_interval_s: How often the token is re-checked while idle.

        Returns:
            The oldest item in the queue

        Raises:
            Cancelled: If the token fires before an item arrives
        """
        with self._cond:
            while not self._items:
                if cancel is None:
                    self._cond.wait()
                    continue
                if cancel.is_cancelled:
                    raise Cancelled(f"pop from {self._name} cancelled")
                self._cond.wait(timeout=poll_interval_s)
            return self._items.popleft()

    def pop_nowait(self) -> T:
        """Remove and return the head item without blocking.

        Raises:
            QueueEmpty: If the queue is empty
        """
        with self._cond:
            if not self._items:
                raise QueueEmpty(f"{self._name} is empty")
            return self._items.popleft()

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    @property
    def name(self) -> str:
        return self._name

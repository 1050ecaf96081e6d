"""Tests for BlockingQueue and CancellationToken."""

import threading
import time

import pytest

from timed_rx_lib.blocking_queue import BlockingQueue, QueueEmpty
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.errors import Cancelled


def test_fifo_order_single_producer() -> None:
    """Test that items pop in push order."""
    q: BlockingQueue[str] = BlockingQueue("test")
    for i in range(5):
        q.push(f"msg{i}")

    assert len(q) == 5
    assert [q.pop() for _ in range(5)] == [f"msg{i}" for i in range(5)]
    assert len(q) == 0


def test_pop_nowait_empty_raises() -> None:
    """Test that pop_nowait raises QueueEmpty on an empty queue."""
    q: BlockingQueue[int] = BlockingQueue()
    with pytest.raises(QueueEmpty):
        q.pop_nowait()

    q.push(7)
    assert q.pop_nowait() == 7


def test_pop_blocks_until_push() -> None:
    """Test that pop waits for an item pushed later from another thread."""
    q: BlockingQueue[str] = BlockingQueue()
    result = []

    def consumer():
        result.append(q.pop())

    t = threading.Thread(target=consumer, daemon=True)
    t.start()

    time.sleep(0.1)
    assert t.is_alive(), "pop() should still be blocked"

    q.push("hello")
    t.join(timeout=2.0)
    assert not t.is_alive()
    assert result == ["hello"]


def test_concurrent_pushers_preserve_per_producer_order() -> None:
    """Test that every pushed item is popped exactly once, each producer in order."""
    q: BlockingQueue[tuple] = BlockingQueue()
    per_producer = 200

    def producer(pid):
        for i in range(per_producer):
            q.push((pid, i))

    threads = [threading.Thread(target=producer, args=(p,)) for p in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    items = [q.pop() for _ in range(4 * per_producer)]
    assert len(set(items)) == 4 * per_producer

    for pid in range(4):
        seq = [i for p, i in items if p == pid]
        assert seq == list(range(per_producer))


def test_concurrent_pushers_global_fifo() -> None:
    """Test that pops follow the global push order across producers."""
    q: BlockingQueue[int] = BlockingQueue()
    order_lock = threading.Lock()
    counter = [0]

    def producer():
        for _ in range(200):
            # Sequence number and push are one step, so seq order is push order
            with order_lock:
                q.push(counter[0])
                counter[0] += 1

    threads = [threading.Thread(target=producer) for _ in range(4)]
    for t in threads:
        t.start()

    popped = [q.pop() for _ in range(800)]
    for t in threads:
        t.join()

    assert popped == list(range(800))


def test_pop_cancelled_while_waiting() -> None:
    """Test that a blocked pop raises Cancelled once the token fires."""
    q: BlockingQueue[str] = BlockingQueue()
    cancel = CancellationToken()
    errors = []

    def consumer():
        try:
            q.pop(cancel, poll_interval_s=0.02)
        except Cancelled as e:
            errors.append(e)

    t = threading.Thread(target=consumer, daemon=True)
    t.start()
    time.sleep(0.05)
    cancel.cancel()
    t.join(timeout=2.0)

    assert not t.is_alive()
    assert len(errors) == 1


def test_pop_returns_available_item_even_if_cancelled() -> None:
    """Test that an already queued item is returned regardless of the token."""
    q: BlockingQueue[str] = BlockingQueue()
    q.push("ready")
    cancel = CancellationToken()
    cancel.cancel()

    assert q.pop(cancel) == "ready"


# ============================================================================
# CancellationToken
# ============================================================================


def test_token_wait_and_raise() -> None:
    """Test wait() timeout/early-return semantics and raise_if_cancelled()."""
    token = CancellationToken()
    assert not token.is_cancelled
    assert token.wait(0.01) is False
    assert token.wait(0) is False
    token.raise_if_cancelled()

    token.cancel()
    token.cancel()  # Idempotent
    assert token.is_cancelled
    assert token.wait(10.0) is True
    with pytest.raises(Cancelled):
        token.raise_if_cancelled()

"""Tests for AcquisitionWorker: ordering, outcome mapping and thread lifecycle."""

import time
from pathlib import Path
from typing import Callable, List

import pytest

from fakes.fake_radio import FakeRadio, SimulatedClock
from timed_rx_lib.blocking_queue import BlockingQueue
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.clock_sync import ClockSyncSupervisor
from timed_rx_lib.deadline import DeadlineGuard
from timed_rx_lib.executor import AcquisitionExecutor
from timed_rx_lib.models import AcquisitionOutcome, OutcomeStatus, WorkerState
from timed_rx_lib.worker import AcquisitionWorker


def wait_for(condition: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def trigger(t0: float, n: int = 20000, ant: str = "RX2") -> str:
    return f"fc=915e6,lo=0,sps=1e6,bw=1e6,g=10,t0={t0:.6f},n={n},ant={ant}"


class Rig:
    """Worker wired to a simulated radio and clock."""

    def __init__(self, tmp_path: Path, offset_s: float = 0.0) -> None:
        self.clock = SimulatedClock(start=1700000000.25)
        self.radio = FakeRadio(self.clock, offset_s=offset_s)
        self.inbound: BlockingQueue[str] = BlockingQueue("inbound")
        self.outbound: BlockingQueue[str] = BlockingQueue("outbound")
        self.clock_sync = ClockSyncSupervisor(self.radio, threshold_s=0.1, clock=self.clock)
        self.worker = AcquisitionWorker(
            self.inbound,
            self.outbound,
            self.clock_sync,
            DeadlineGuard(clock_slack=0.1, setup_slack=0.5, clock=self.clock),
            AcquisitionExecutor(self.radio, progress_interval_s=None, clock=self.clock),
            client_id="rx1",
            file_prefix=str(tmp_path) + "/",
        )
        self.outcomes: List[AcquisitionOutcome] = []
        self.worker.add_listener(self.outcomes.append)

    def drain(self, count: int) -> List[str]:
        assert wait_for(lambda: len(self.outbound) >= count), f"expected {count} status messages"
        return [self.outbound.pop_nowait() for _ in range(count)]


@pytest.fixture
def rig(tmp_path: Path):
    r = Rig(tmp_path)
    yield r
    r.worker.stop()


# ============================================================================
# process_message
# ============================================================================


def test_parse_error_outcome(rig) -> None:
    """Test that a malformed message becomes PARSE_ERROR without a request."""
    outcome = rig.worker.process_message("not a trigger")

    assert outcome.status is OutcomeStatus.PARSE_ERROR
    assert outcome.request is None
    assert rig.radio.streams == []


def test_late_deadline_outcome(rig) -> None:
    """Test that a request inside the slack window is rejected before setup."""
    outcome = rig.worker.process_message(trigger(rig.clock.now() + 0.5))

    assert outcome.status is OutcomeStatus.LATE_DEADLINE
    assert rig.radio.streams == []


def test_executor_exception_becomes_other(rig) -> None:
    """Test that an unexpected device error is mapped to OTHER."""
    outcome = rig.worker.process_message(trigger(rig.clock.now() + 5, ant="J5"))

    assert outcome.status is OutcomeStatus.OTHER
    assert "Invalid antenna" in outcome.detail


# ============================================================================
# Run Loop
# ============================================================================


def test_one_status_per_message_in_order(rig, tmp_path) -> None:
    """Test that each popped message yields exactly one status, in input order."""
    t_start = rig.clock.now()
    rig.inbound.push(trigger(t_start + 5))
    rig.inbound.push("garbage")
    rig.inbound.push(trigger(t_start + 1))  # Late once the first capture ran

    rig.worker.start()
    saved, invalid, late = rig.drain(3)

    assert saved.startswith("<rx1 req saved " + str(tmp_path))
    assert saved.endswith(".dat>")
    assert invalid == "<rx1 invalid msg>"
    assert late == f"<rx1 host late command @ {t_start + 1:.6f}>"

    # Listeners run right after the status is queued
    assert wait_for(lambda: len(rig.outcomes) == 3)
    assert [o.status for o in rig.outcomes] == [
        OutcomeStatus.SUCCESS,
        OutcomeStatus.PARSE_ERROR,
        OutcomeStatus.LATE_DEADLINE,
    ]
    assert rig.worker.processed_count == 3
    assert rig.worker.last_outcome.status is OutcomeStatus.LATE_DEADLINE
    assert Path(rig.outcomes[0].file_path).stat().st_size == 20000 * 4

    assert wait_for(lambda: rig.worker.state is WorkerState.WAITING)
    assert len(rig.outbound) == 0


def test_loop_survives_executor_exception(rig) -> None:
    """Test that an OTHER outcome does not stop later requests."""
    t_start = rig.clock.now()
    rig.inbound.push(trigger(t_start + 5, ant="J5"))
    rig.inbound.push(trigger(t_start + 10))

    rig.worker.start()
    failed, saved = rig.drain(2)

    assert failed == f"<rx1 req failed @ {t_start + 5:.6f}>"
    assert saved.startswith("<rx1 req saved ")
    assert rig.worker.is_alive()


def test_unrepresentable_start_time_becomes_other(rig) -> None:
    """Test that a t0 past the datetime range fails the request, not the worker."""
    rig.inbound.push(trigger(1e12))
    rig.inbound.push(trigger(rig.clock.now() + 5))

    rig.worker.start()
    failed, saved = rig.drain(2)

    assert failed == f"<rx1 req failed @ {1e12:.6f}>"
    assert saved.startswith("<rx1 req saved ")
    assert rig.worker.is_alive()
    assert rig.worker.crash_error is None
    assert len(rig.inbound) == 0
    assert wait_for(lambda: len(rig.outcomes) == 2)
    assert rig.outcomes[0].status is OutcomeStatus.OTHER
    assert len(rig.radio.streams) == 1


def test_failing_listener_is_ignored(rig) -> None:
    """Test that a raising listener neither blocks status nor later listeners."""
    seen = []

    def bad_listener(outcome):
        raise ValueError("boom")

    rig.worker.add_listener(bad_listener)
    rig.worker.add_listener(seen.append)
    rig.inbound.push("garbage")

    rig.worker.start()
    assert rig.drain(1) == ["<rx1 invalid msg>"]
    assert wait_for(lambda: len(seen) == 1)


def test_resync_before_request_and_deadline_after_resync(tmp_path) -> None:
    """Test that the clock is re-aligned before each pop and the deadline uses post-sync time."""
    rig = Rig(tmp_path, offset_s=4.0)
    t_start = rig.clock.now()
    # Valid when queued, but resync takes several simulated seconds
    rig.inbound.push(trigger(t_start + 2))

    rig.worker.start()
    try:
        assert rig.drain(1) == [f"<rx1 host late command @ {t_start + 2:.6f}>"]
        assert rig.clock_sync.sync_count == 1
        assert abs(rig.worker.last_offset) <= 0.1
    finally:
        rig.worker.stop()


def test_clock_sync_failure_crashes_worker(rig) -> None:
    """Test that device errors outside a request propagate out of the loop."""
    rig.radio.time_read_error = RuntimeError("USB transfer failed")

    rig.worker.start()

    assert wait_for(lambda: not rig.worker.is_alive())
    assert isinstance(rig.worker.crash_error, RuntimeError)
    assert rig.worker.state is WorkerState.STOPPED
    assert len(rig.outbound) == 0


def test_stop_while_waiting(rig) -> None:
    """Test that stop() cancels a blocked pop and joins the thread."""
    cancel = CancellationToken()
    rig.worker.start(cancel)
    assert wait_for(lambda: rig.worker.state is WorkerState.WAITING)

    rig.worker.stop(timeout=2.0)

    assert cancel.is_cancelled
    assert not rig.worker.is_alive()
    assert rig.worker.state is WorkerState.STOPPED
    assert rig.worker.crash_error is None


def test_run_returns_on_cancel(rig) -> None:
    """Test that run() returns normally when the token is already cancelled."""
    cancel = CancellationToken()
    cancel.cancel()

    rig.worker.run(cancel)

    assert rig.worker.state is WorkerState.STOPPED


def test_start_twice_rejected(rig) -> None:
    rig.worker.start()
    with pytest.raises(RuntimeError):
        rig.worker.start()

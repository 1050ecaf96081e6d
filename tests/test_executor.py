"""Tests for AcquisitionExecutor against the simulated radio."""

from pathlib import Path

import numpy as np
import pytest

from fakes.fake_radio import FakeRadio, SimulatedClock
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.device import StreamMode
from timed_rx_lib.errors import Cancelled
from timed_rx_lib.executor import AcquisitionExecutor
from timed_rx_lib.models import AcquisitionRequest, OutcomeStatus, resolve_sample_format


@pytest.fixture
def clock() -> SimulatedClock:
    return SimulatedClock(start=1700000000.25)


@pytest.fixture
def radio(clock: SimulatedClock) -> FakeRadio:
    return FakeRadio(clock)


@pytest.fixture
def capture_path(tmp_path: Path) -> str:
    return str(tmp_path / "capture.dat")


def make_request(clock: SimulatedClock, delay_s: float = 2.0, **overrides) -> AcquisitionRequest:
    fields = dict(
        center_freq_hz=915e6,
        lo_offset_hz=5e6,
        sample_rate_hz=1e6,
        bandwidth_hz=2e6,
        gain_db=30.0,
        start_time=clock.now() + delay_s,
        num_samples=25000,
        antenna="RX2",
    )
    fields.update(overrides)
    return AcquisitionRequest(**fields)


def make_executor(radio: FakeRadio, clock: SimulatedClock, **kwargs) -> AcquisitionExecutor:
    kwargs.setdefault("samples_per_buffer", 10000)
    kwargs.setdefault("progress_interval_s", None)
    return AcquisitionExecutor(radio, clock=clock, **kwargs)


# ============================================================================
# Success Paths
# ============================================================================


def test_success_writes_exact_samples(radio, clock, capture_path) -> None:
    """Test a timed capture writes num_samples sc16 samples in order."""
    executor = make_executor(radio, clock)
    request = make_request(clock)

    outcome = executor.run(request, capture_path)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.file_path == capture_path
    assert outcome.samples_received == 25000
    assert outcome.elapsed_s == pytest.approx(0.025, abs=1e-4)

    data = np.fromfile(capture_path, dtype=executor.sample_format.dtype)
    assert len(data) == 25000
    assert Path(capture_path).stat().st_size == 25000 * 4
    assert np.array_equal(data["i"], np.arange(25000) % 32768)
    assert np.array_equal(data["q"], -(np.arange(25000) % 32768))


def test_success_configures_radio_and_issues_timed_command(radio, clock, capture_path) -> None:
    """Test that tuning is applied and the burst is timed then stopped."""
    executor = make_executor(radio, clock, integer_n=True)
    request = make_request(clock)

    executor.run(request, capture_path)

    assert radio.rx_rate == 1e6
    assert radio.rx_freq == 915e6
    assert radio.lo_offset == 5e6
    assert radio.integer_n is True
    assert radio.rx_gain == 30.0
    assert radio.rx_bandwidth == 2e6
    assert radio.rx_antenna == "RX2"

    first, last = radio.stream_commands[0], radio.stream_commands[-1]
    assert first.mode is StreamMode.NUM_SAMPS_AND_DONE
    assert first.num_samples == 25000
    assert first.start_time == request.start_time
    assert not first.stream_now
    assert last.mode is StreamMode.STOP_CONTINUOUS


def test_success_without_file_output(radio, clock, capture_path) -> None:
    """Test that disabling file output still receives but writes nothing."""
    executor = make_executor(radio, clock, save_to_file=False)

    outcome = executor.run(make_request(clock), capture_path)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.file_path is None
    assert outcome.samples_received == 25000
    assert not Path(capture_path).exists()


def test_success_complex_float_format(radio, clock, capture_path) -> None:
    """Test that the fc32 data format is written as complex64."""
    executor = make_executor(radio, clock, sample_format=resolve_sample_format("float", "sc16"))

    outcome = executor.run(make_request(clock, num_samples=1234), capture_path)

    assert outcome.status is OutcomeStatus.SUCCESS
    data = np.fromfile(capture_path, dtype="<c8")
    assert len(data) == 1234
    assert data[10] == 10 - 10j


def test_success_real_short_format(radio, clock, capture_path) -> None:
    """Test that a real-only wire format writes int16 samples."""
    executor = make_executor(radio, clock, sample_format=resolve_sample_format("short", "s16"))

    executor.run(make_request(clock, num_samples=500), capture_path)

    assert Path(capture_path).stat().st_size == 500 * 2


def test_waits_for_lo_lock(radio, clock, capture_path) -> None:
    """Test that a slow LO lock is polled until it asserts."""
    radio.lo_lock_delay_s = 0.3
    executor = make_executor(radio, clock)

    outcome = executor.run(make_request(clock), capture_path)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert clock.sleeps.count(0.1) >= 3


def test_missing_lo_sensor_is_skipped(clock, capture_path) -> None:
    """Test that a frontend without lo_locked does not block the capture."""
    radio = FakeRadio(clock, has_lo_sensor=False)
    executor = make_executor(radio, clock)

    assert executor.run(make_request(clock), capture_path).ok


# ============================================================================
# Failure Paths
# ============================================================================


def test_lock_timeout(radio, clock, capture_path) -> None:
    """Test that an LO that never locks yields LOCK_TIMEOUT without streaming."""
    radio.lo_lock_delay_s = None
    executor = make_executor(radio, clock, setup_timeout_s=0.5)

    outcome = executor.run(make_request(clock), capture_path)

    assert outcome.status is OutcomeStatus.LOCK_TIMEOUT
    assert radio.streams == []
    assert not Path(capture_path).exists()


def test_lock_check_disabled(radio, clock, capture_path) -> None:
    """Test that check_lock=False skips the LO sensor entirely."""
    radio.lo_lock_delay_s = None
    executor = make_executor(radio, clock, check_lock=False)

    assert executor.run(make_request(clock), capture_path).ok


@pytest.mark.parametrize(
    "fault, expected",
    [
        ("overflow_after", OutcomeStatus.STREAM_OVERFLOW),
        ("stall_after", OutcomeStatus.STREAM_TIMEOUT),
        ("error_after", OutcomeStatus.OTHER),
    ],
)
def test_stream_faults_remove_partial_file(radio, clock, capture_path, fault, expected) -> None:
    """Test that receive errors are classified and leave no partial file."""
    setattr(radio, fault, 15000)
    executor = make_executor(radio, clock)

    outcome = executor.run(make_request(clock), capture_path)

    assert outcome.status is expected
    assert outcome.samples_received == 15000
    assert outcome.detail
    assert not Path(capture_path).exists()
    assert radio.stream_commands[-1].mode is StreamMode.STOP_CONTINUOUS


def test_late_command(radio, clock, capture_path) -> None:
    """Test that a start time already past on the device yields LATE_COMMAND."""
    executor = make_executor(radio, clock)

    outcome = executor.run(make_request(clock, delay_s=-0.1), capture_path)

    assert outcome.status is OutcomeStatus.LATE_COMMAND
    assert not Path(capture_path).exists()


def test_exhausted_budget_is_stream_timeout(radio, clock, capture_path) -> None:
    """Test that a non-positive receive budget fails before calling recv."""
    executor = make_executor(radio, clock, timeout_slack_s=0.0)
    request = make_request(clock, delay_s=-0.5, num_samples=1000)

    outcome = executor.run(request, capture_path)

    assert outcome.status is OutcomeStatus.STREAM_TIMEOUT
    assert outcome.samples_received == 0
    assert radio.stream_commands[-1].mode is StreamMode.STOP_CONTINUOUS


def test_invalid_sample_rate(radio, clock, capture_path) -> None:
    """Test that a non-positive rate is rejected before touching the radio."""
    executor = make_executor(radio, clock)

    outcome = executor.run(make_request(clock, sample_rate_hz=0.0), capture_path)

    assert outcome.status is OutcomeStatus.OTHER
    assert radio.streams == []


def test_device_error_propagates(radio, clock, capture_path) -> None:
    """Test that unexpected configuration errors are raised to the caller."""
    executor = make_executor(radio, clock)

    with pytest.raises(RuntimeError, match="Invalid antenna"):
        executor.run(make_request(clock, antenna="J5"), capture_path)


def test_cancellation_removes_file_and_reraises(radio, clock, capture_path) -> None:
    """Test that cancellation mid-capture stops streaming and cleans up."""
    executor = make_executor(radio, clock)
    cancel = CancellationToken()
    cancel.cancel()

    with pytest.raises(Cancelled):
        executor.run(make_request(clock), capture_path, cancel=cancel)

    assert not Path(capture_path).exists()
    assert radio.stream_commands[-1].mode is StreamMode.STOP_CONTINUOUS


def test_invalid_buffer_size(radio) -> None:
    with pytest.raises(ValueError):
        AcquisitionExecutor(radio, samples_per_buffer=0)

"""Tests for the deadline guard."""

import pytest

from fakes.fake_radio import SimulatedClock
from timed_rx_lib.deadline import DeadlineGuard, check_deadline
from timed_rx_lib.errors import LateDeadlineError
from timed_rx_lib.models import AcquisitionRequest


def make_request(start_time: float) -> AcquisitionRequest:
    return AcquisitionRequest(
        center_freq_hz=1e9,
        lo_offset_hz=0.0,
        sample_rate_hz=1e6,
        bandwidth_hz=1e6,
        gain_db=0.0,
        start_time=start_time,
        num_samples=100,
        antenna="RX2",
    )


def test_future_request_passes_with_margin() -> None:
    """Test that a request far enough ahead returns the remaining margin."""
    margin = check_deadline(make_request(110.0), now=100.0, clock_slack=0.1, setup_slack=0.5)
    assert margin == pytest.approx(9.4)


def test_late_request_rejected() -> None:
    """Test that now + slacks beyond the start time is rejected."""
    with pytest.raises(LateDeadlineError) as exc_info:
        check_deadline(make_request(100.5), now=100.0, clock_slack=0.1, setup_slack=0.5)

    assert exc_info.value.margin_s == pytest.approx(-0.1)


def test_exact_equality_rejected() -> None:
    """Test that now + clock_slack + setup_slack == start_time is rejected."""
    with pytest.raises(LateDeadlineError):
        check_deadline(make_request(100.75), now=100.0, clock_slack=0.25, setup_slack=0.5)


def test_past_start_time_rejected_with_zero_slack() -> None:
    """Test that a start time in the past is late even with no slack."""
    with pytest.raises(LateDeadlineError):
        check_deadline(make_request(99.0), now=100.0, clock_slack=0.0, setup_slack=0.0)


def test_guard_uses_host_clock_by_default() -> None:
    """Test that DeadlineGuard samples now from its clock when not given."""
    clock = SimulatedClock(start=1000.0)
    guard = DeadlineGuard(clock_slack=0.1, setup_slack=0.5, clock=clock)

    assert guard.check(make_request(1001.0)) == pytest.approx(0.4)

    clock.advance(0.5)
    with pytest.raises(LateDeadlineError):
        guard.check(make_request(1001.0))

    # Explicit now overrides the clock
    assert guard.check(make_request(1001.0), now=990.0) == pytest.approx(10.4)

"""Tests for ClockSyncSupervisor using the simulated radio and clock."""

import math

import pytest

from fakes.fake_radio import FakeRadio, SimulatedClock
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.clock_sync import ClockSyncSupervisor, describe_offset
from timed_rx_lib.errors import Cancelled
from timed_rx_lib.timing import near_edge, next_edge


def test_already_synced_is_single_measurement() -> None:
    """Test that an in-threshold device costs one time read and no arming."""
    clock = SimulatedClock(start=1700000000.3)
    radio = FakeRadio(clock, offset_s=0.05)
    supervisor = ClockSyncSupervisor(radio, threshold_s=0.1, clock=clock)

    offset = supervisor.ensure_synced()

    assert offset == pytest.approx(0.05, abs=1e-6)
    assert radio.time_reads == 1
    assert radio.pps_arm_times == []
    assert supervisor.sync_count == 0
    assert clock.sleeps == []


def test_offset_at_threshold_counts_as_synced() -> None:
    """Test that |offset| == threshold is accepted."""
    clock = SimulatedClock(start=1700000000.5)
    radio = FakeRadio(clock, offset_s=-0.25)
    supervisor = ClockSyncSupervisor(radio, threshold_s=0.25, clock=clock)

    assert supervisor.is_synced()
    assert supervisor.last_offset == pytest.approx(-0.25)


def test_resync_arms_edge_after_next() -> None:
    """Test that an out-of-sync device is re-armed with floor(now) + 2 and converges."""
    clock = SimulatedClock(start=1700000000.3)
    radio = FakeRadio(clock, offset_s=3.7)
    supervisor = ClockSyncSupervisor(radio, threshold_s=0.1, clock=clock)

    offset = supervisor.ensure_synced()

    assert abs(offset) <= 0.1
    assert supervisor.sync_count == 1
    assert radio.pps_arm_times == [pytest.approx(1700000000.3)]
    assert radio.pps_latched_values == [1700000002.0]
    # Cooldown of 2.5 s follows the arming
    assert 2.5 in clock.sleeps


def test_arming_avoids_unsafe_window_before_edge() -> None:
    """Test that arming near the end of a second waits past the edge plus slack."""
    clock = SimulatedClock(start=1700000000.99)
    radio = FakeRadio(clock, offset_s=-5.0)
    supervisor = ClockSyncSupervisor(radio, threshold_s=0.1, clock=clock)

    supervisor.ensure_synced()

    armed_at = radio.pps_arm_times[0]
    assert not near_edge(armed_at, supervisor.edge_slack_s)
    assert armed_at == pytest.approx(1700000001.04)
    assert radio.pps_latched_values[0] == next_edge(armed_at, extra_s=1)


def test_arming_avoids_unsafe_window_after_edge() -> None:
    """Test that arming just after a whole second also waits for the safe window."""
    clock = SimulatedClock(start=1700000000.005)
    radio = FakeRadio(clock, offset_s=1.0)
    supervisor = ClockSyncSupervisor(radio, threshold_s=0.1, clock=clock)

    supervisor.ensure_synced()

    frac = radio.pps_arm_times[0] - math.floor(radio.pps_arm_times[0])
    assert supervisor.edge_slack_s < frac < 1 - supervisor.edge_slack_s


@pytest.mark.parametrize("offset", [-3600.0, -7.25, -0.5, -0.11, 0.11, 0.9, 42.6, 86400.0])
@pytest.mark.parametrize("start_frac", [0.0, 0.01, 0.25, 0.5, 0.97, 0.999])
def test_converges_within_bounded_cycles(offset, start_frac) -> None:
    """Test convergence for any out-of-threshold offset and any phase within the second."""
    clock = SimulatedClock(start=1700000000 + start_frac)
    radio = FakeRadio(clock, offset_s=offset)
    supervisor = ClockSyncSupervisor(radio, threshold_s=0.1, clock=clock)

    result = supervisor.ensure_synced()

    assert abs(result) <= 0.1
    assert 1 <= supervisor.sync_count <= 2
    for armed_at in radio.pps_arm_times:
        assert not near_edge(armed_at, supervisor.edge_slack_s)


def test_missed_edge_is_corrected_on_next_cycle() -> None:
    """Test that a latch landing one second off triggers another arming cycle."""
    clock = SimulatedClock(start=1700000000.95)
    radio = FakeRadio(clock, offset_s=2.0)
    # Device needs 60 ms before the edge but the supervisor only keeps 20 ms
    radio.late_arm_window_s = 0.06
    supervisor = ClockSyncSupervisor(radio, threshold_s=0.1, clock=clock)

    offset = supervisor.ensure_synced()

    assert abs(offset) <= 0.1
    assert supervisor.sync_count == 2


def test_ensure_synced_cancellable() -> None:
    """Test that a fired token stops the loop during the cooldown."""
    clock = SimulatedClock(start=1700000000.3)
    radio = FakeRadio(clock, offset_s=3.0)
    supervisor = ClockSyncSupervisor(radio, threshold_s=0.1, clock=clock)
    cancel = CancellationToken()
    cancel.cancel()

    with pytest.raises(Cancelled):
        supervisor.ensure_synced(cancel)


def test_device_errors_propagate() -> None:
    """Test that a failing device time read is not swallowed."""
    clock = SimulatedClock()
    radio = FakeRadio(clock)
    radio.time_read_error = RuntimeError("device gone")
    supervisor = ClockSyncSupervisor(radio, threshold_s=0.1, clock=clock)

    with pytest.raises(RuntimeError, match="device gone"):
        supervisor.ensure_synced()


def test_invalid_threshold() -> None:
    """Test that a non-positive threshold is rejected."""
    with pytest.raises(ValueError):
        ClockSyncSupervisor(FakeRadio(SimulatedClock()), threshold_s=0.0)


def test_describe_offset() -> None:
    assert describe_offset(0.25) == "device 0.250000s ahead of host"
    assert describe_offset(-1.5) == "device 1.500000s behind host"

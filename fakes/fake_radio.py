"""Simulated USRP and host clock for hardware-free tests.

The simulator follows the device behavior the service depends on:
- device time = host time + offset, settable immediately or on a PPS edge
- set_time_unknown_pps blocks until the next PPS edge and latches the value
  on the edge after it
- tuning calls return the (possibly coerced) actual value
- lo_locked / ref_locked sensors with configurable lock delay
- timed NUM_SAMPS_AND_DONE bursts that start at a device time and deliver
  deterministic samples at the configured rate

Time never advances on its own: SimulatedClock moves only when someone
sleeps on it or the fake streamer delivers samples, so tests are fast and
deterministic.
"""

import logging
import math
import threading
from typing import Dict, List, Optional, Tuple

import numpy as np

from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.device import RecvResult, RxErrorCode, StreamCommand, StreamMode
from timed_rx_lib.errors import Cancelled
from timed_rx_lib.models import SampleFormat

logger = logging.getLogger(__name__)


class SimulatedClock:
    """HostClock whose time only advances through sleep() or advance()."""

    def __init__(self, start: float = 1_700_000_000.25) -> None:
        self._t = start
        self._start = start
        self._lock = threading.Lock()
        self.sleeps: List[float] = []

    def now(self) -> float:
        with self._lock:
            return self._t

    def monotonic(self) -> float:
        with self._lock:
            return self._t - self._start

    def advance(self, seconds: float) -> None:
        if seconds <= 0:
            return
        with self._lock:
            self._t += seconds

    def sleep(self, seconds: float, cancel: Optional[CancellationToken] = None) -> None:
        if cancel is not None and cancel.is_cancelled:
            raise Cancelled("Sleep cancelled")
        self.sleeps.append(seconds)
        self.advance(seconds)

    def sleep_until(self, epoch_s: float, cancel: Optional[CancellationToken] = None) -> None:
        self.sleep(epoch_s - self.now(), cancel)


class FakeRadio:
    """Deterministic simulator of a single-channel USRP.

    Fault injection knobs (set as attributes before or between requests):
        lo_lock_delay_s: Seconds after tuning until lo_locked asserts (None = never)
        ref_locked: Value of the ref_locked motherboard sensor
        overflow_after: Report OVERFLOW once this many samples were delivered
        stall_after: Stop delivering (TIMEOUT) once this many samples were delivered
        error_after: Report a generic error once this many samples were delivered
        time_read_error: Exception raised by get_time_now()
        late_arm_window_s: Arming this close before an edge misses it by one second
    """

    PPS_EDGE_SETTLE_S = 0.001

    def __init__(
        self,
        clock: SimulatedClock,
        offset_s: float = 0.0,
        antennas: Tuple[str, ...] = ("TX/RX", "RX2"),
        has_lo_sensor: bool = True,
    ) -> None:
        """Initialize fake radio.

        Args:
            clock: Shared simulated host clock
            offset_s: Initial device-minus-host clock offset
            antennas: Valid antenna names
            has_lo_sensor: Whether the RX frontend exposes lo_locked
        """
        self.clock = clock
        self.offset_s = offset_s
        self.antennas = antennas
        self.has_lo_sensor = has_lo_sensor

        # Tuning state
        self.rx_rate = 1e6
        self.rx_freq = 0.0
        self.lo_offset = 0.0
        self.integer_n = False
        self.rx_gain = 0.0
        self.rx_bandwidth = 0.0
        self.rx_antenna = antennas[0]
        self._tuned_at = 0.0

        # Fault injection
        self.lo_lock_delay_s: Optional[float] = 0.0
        self.ref_locked = True
        self.overflow_after: Optional[int] = None
        self.stall_after: Optional[int] = None
        self.error_after: Optional[int] = None
        self.time_read_error: Optional[Exception] = None
        self.late_arm_window_s = 0.0

        # Records
        self.pps_arm_times: List[float] = []
        self.pps_latched_values: List[float] = []
        self.stream_commands: List[StreamCommand] = []
        self.streams: List["FakeRxStreamer"] = []
        self.time_reads = 0

        self._pending_latch: Optional[Tuple[float, float]] = None  # (host edge, value)

    # ========================================================================
    # Time
    # ========================================================================

    @property
    def pp_string(self) -> str:
        return "Single USRP:\n  Device: FakeRadio (simulated)\n  RX Channel: 0"

    def get_time_now(self) -> float:
        if self.time_read_error is not None:
            raise self.time_read_error
        self.time_reads += 1
        self._apply_pending_latch()
        return self.clock.now() + self.offset_s

    def set_time_now(self, seconds: float) -> None:
        self._pending_latch = None
        self.offset_s = seconds - self.clock.now()
        logger.debug(f"FakeRadio time set to {seconds:.6f}")

    def set_time_unknown_pps(self, seconds: float) -> None:
        """Block until the next PPS edge, latch seconds on the edge after it."""
        armed_at = self.clock.now()
        self.pps_arm_times.append(armed_at)
        self.pps_latched_values.append(seconds)

        first_edge = math.floor(armed_at) + 1
        latch_edge = first_edge + 1
        if first_edge - armed_at < self.late_arm_window_s:
            # Command reached the device after the edge it was waiting for
            latch_edge += 1

        self.clock.sleep_until(first_edge + self.PPS_EDGE_SETTLE_S)
        self._pending_latch = (float(latch_edge), seconds)
        logger.debug(f"FakeRadio armed at {armed_at:.6f}: {seconds:.1f} on edge {latch_edge}")

    def get_clock_source(self) -> str:
        return "external"

    # ========================================================================
    # Tuning
    # ========================================================================

    def set_rx_rate(self, rate: float, channel: int) -> float:
        self.rx_rate = rate
        return rate

    def set_rx_freq(self, freq: float, lo_offset: float, channel: int, integer_n: bool = False) -> float:
        self.rx_freq = freq
        self.lo_offset = lo_offset
        self.integer_n = integer_n
        self._tuned_at = self.clock.monotonic()
        return freq

    def set_rx_gain(self, gain: float, channel: int) -> float:
        # Simulated frontend range 0..76 dB
        self.rx_gain = min(max(gain, 0.0), 76.0)
        return self.rx_gain

    def set_rx_bandwidth(self, bandwidth: float, channel: int) -> float:
        self.rx_bandwidth = bandwidth
        return bandwidth

    def set_rx_antenna(self, antenna: str, channel: int) -> None:
        if antenna not in self.antennas:
            raise RuntimeError(f"Invalid antenna '{antenna}', valid: {self.antennas}")
        self.rx_antenna = antenna

    # ========================================================================
    # Sensors
    # ========================================================================

    def get_rx_sensor_names(self, channel: int) -> List[str]:
        return ["lo_locked"] if self.has_lo_sensor else []

    def get_rx_sensor(self, name: str, channel: int) -> bool:
        if name != "lo_locked" or not self.has_lo_sensor:
            raise KeyError(name)
        if self.lo_lock_delay_s is None:
            return False
        return self.clock.monotonic() - self._tuned_at >= self.lo_lock_delay_s

    def get_mboard_sensor_names(self) -> List[str]:
        return ["ref_locked"]

    def get_mboard_sensor(self, name: str) -> bool:
        sensors: Dict[str, bool] = {"ref_locked": self.ref_locked}
        return sensors[name]

    # ========================================================================
    # Streaming
    # ========================================================================

    def get_rx_stream(self, sample_format: SampleFormat, channel: int) -> "FakeRxStreamer":
        streamer = FakeRxStreamer(self, sample_format)
        self.streams.append(streamer)
        return streamer

    def _apply_pending_latch(self) -> None:
        if self._pending_latch is None:
            return
        edge, value = self._pending_latch
        if self.clock.now() >= edge:
            self.offset_s = value - edge
            self._pending_latch = None


class FakeRxStreamer:
    """Receive streamer of FakeRadio delivering a ramp of sample indices."""

    def __init__(self, radio: FakeRadio, sample_format: SampleFormat) -> None:
        self._radio = radio
        self.sample_format = sample_format
        self._remaining = 0
        self._delivered = 0
        self._start_device_time: Optional[float] = None
        self._late = False
        self.stopped = False

    def issue_stream_cmd(self, command: StreamCommand) -> None:
        self._radio.stream_commands.append(command)
        if command.mode is StreamMode.STOP_CONTINUOUS:
            self._remaining = 0
            self.stopped = True
            return

        self._remaining = command.num_samples
        self._delivered = 0
        self._start_device_time = command.start_time
        device_now = self._radio.get_time_now()
        self._late = command.start_time is not None and command.start_time < device_now

    def recv(self, buffer: np.ndarray, timeout: float) -> RecvResult:
        radio = self._radio
        clock = radio.clock

        if self._late:
            self._late = False
            self._remaining = 0
            return RecvResult(0, RxErrorCode.LATE_COMMAND, "late command")

        if self._remaining <= 0:
            clock.advance(timeout)
            return RecvResult(0, RxErrorCode.TIMEOUT, "timeout")

        for limit, code in (
            (radio.overflow_after, RxErrorCode.OVERFLOW),
            (radio.error_after, RxErrorCode.OTHER),
        ):
            if limit is not None and self._delivered >= limit:
                return RecvResult(0, code, code.value)

        if radio.stall_after is not None and self._delivered >= radio.stall_after:
            clock.advance(timeout)
            return RecvResult(0, RxErrorCode.TIMEOUT, "timeout")

        if self._start_device_time is not None and self._delivered == 0:
            wait_s = self._start_device_time - radio.get_time_now()
            if wait_s > timeout:
                clock.advance(timeout)
                return RecvResult(0, RxErrorCode.TIMEOUT, "timeout")
            clock.advance(wait_s)
            timeout -= max(wait_s, 0.0)

        n = min(buffer.shape[1], self._remaining)
        for limit in (radio.overflow_after, radio.stall_after, radio.error_after):
            if limit is not None and self._delivered < limit:
                n = min(n, limit - self._delivered)

        chunk_s = n / radio.rx_rate
        if chunk_s > timeout:
            clock.advance(timeout)
            return RecvResult(0, RxErrorCode.TIMEOUT, "timeout")

        _fill_ramp(buffer, self._delivered, n)
        clock.advance(chunk_s)
        self._delivered += n
        self._remaining -= n
        return RecvResult(n)


def _fill_ramp(buffer: np.ndarray, first_index: int, n: int) -> None:
    """Fill buffer[0, :n] with the sample indices first_index.. (I = index, Q = -index)."""
    idx = np.arange(first_index, first_index + n)
    row = buffer[0]
    if row.dtype.names:
        row[:n]["i"] = (idx % 32768).astype(np.int16)
        row[:n]["q"] = (-(idx % 32768)).astype(np.int16)
    elif np.iscomplexobj(row):
        row[:n] = idx - 1j * idx
    else:
        row[:n] = (idx % 32768).astype(row.dtype) if row.dtype.kind == "i" else idx

"""Radio device boundary for the timed RX trigger library.

The core only talks to the small RadioDevice / RxStreamer protocols defined
here. UsrpRadio adapts the UHD Python bindings to them; tests use the
simulator in fakes/fake_radio.py.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol

import numpy as np

from timed_rx_lib import protocol
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.errors import DeviceError, LockTimeoutError
from timed_rx_lib.models import SampleFormat
from timed_rx_lib.timing import HostClock, SystemClock

logger = logging.getLogger(__name__)


class RxErrorCode(Enum):
    """Receive metadata error codes the executor distinguishes."""

    NONE = "none"
    TIMEOUT = "timeout"
    OVERFLOW = "overflow"
    LATE_COMMAND = "late_command"
    OTHER = "other"


class StreamMode(Enum):
    NUM_SAMPS_AND_DONE = "num_samps_and_done"
    STOP_CONTINUOUS = "stop_continuous"


@dataclass(frozen=True)
class StreamCommand:
    """Streaming command: a bounded timed burst, or stop."""

    mode: StreamMode
    num_samples: int = 0
    start_time: Optional[float] = None

    @property
    def stream_now(self) -> bool:
        return self.start_time is None


@dataclass
class RecvResult:
    """Outcome of one receive call."""

    num_samples: int
    error_code: RxErrorCode = RxErrorCode.NONE
    message: str = ""


class RxStreamer(Protocol):
    """Protocol for a receive streamer bound to one channel."""

    def issue_stream_cmd(self, command: StreamCommand) -> None:
        """Start or stop streaming."""
        ...

    def recv(self, buffer: np.ndarray, timeout: float) -> RecvResult:
        """Block up to timeout seconds filling buffer[0, :n]; return n and status."""
        ...


class RadioDevice(Protocol):
    """Protocol for the radio operations the core relies on."""

    @property
    def pp_string(self) -> str:
        """Human-readable device description."""
        ...

    def get_time_now(self) -> float:
        """Device clock in epoch seconds."""
        ...

    def set_time_now(self, seconds: float) -> None:
        """Set the device clock immediately."""
        ...

    def set_time_unknown_pps(self, seconds: float) -> None:
        """Wait for a PPS edge, then latch seconds on the edge after it."""
        ...

    def get_clock_source(self) -> str:
        ...

    def set_rx_rate(self, rate: float, channel: int) -> float:
        """Set sample rate, return the actual rate."""
        ...

    def set_rx_freq(self, freq: float, lo_offset: float, channel: int, integer_n: bool = False) -> float:
        """Tune, return the actual center frequency."""
        ...

    def set_rx_gain(self, gain: float, channel: int) -> float:
        ...

    def set_rx_bandwidth(self, bandwidth: float, channel: int) -> float:
        ...

    def set_rx_antenna(self, antenna: str, channel: int) -> None:
        ...

    def get_rx_sensor_names(self, channel: int) -> List[str]:
        ...

    def get_rx_sensor(self, name: str, channel: int) -> bool:
        ...

    def get_mboard_sensor_names(self) -> List[str]:
        ...

    def get_mboard_sensor(self, name: str) -> bool:
        ...

    def get_rx_stream(self, sample_format: SampleFormat, channel: int) -> RxStreamer:
        ...


def wait_for_sensor_lock(
    sensor_names: List[str],
    sensor_name: str,
    read_sensor: Callable[[str], bool],
    timeout_s: float,
    clock: Optional[HostClock] = None,
    cancel: Optional[CancellationToken] = None,
) -> bool:
    """Poll a boolean lock sensor until it asserts or timeout_s elapses.

    Args:
        sensor_names: Sensors the device exposes
        sensor_name: Sensor to wait for (e.g. "lo_locked")
        read_sensor: Callable returning the sensor's boolean value
        timeout_s: Setup timeout in seconds
        clock: Host clock used for sleeping (defaults to SystemClock)
        cancel: Optional token observed between polls

    Returns:
        False if the device has no such sensor, True once it asserts

    Raises:
        LockTimeoutError: If the sensor does not assert within timeout_s
        Cancelled: If the token fires while waiting
    """
    if sensor_name not in sensor_names:
        logger.debug(f"Device has no '{sensor_name}' sensor, skipping lock check")
        return False

    clock = clock or SystemClock()
    deadline = clock.monotonic() + timeout_s
    logger.debug(f"Waiting for '{sensor_name}'...")

    while True:
        if read_sensor(sensor_name):
            logger.info(f"'{sensor_name}' locked")
            return True
        if clock.monotonic() > deadline:
            raise LockTimeoutError(
                f"Timed out after {timeout_s}s waiting for lock on sensor '{sensor_name}'"
            )
        clock.sleep(protocol.LOCK_POLL_INTERVAL_S, cancel)


# ============================================================================
# UHD Adapter
# ============================================================================


class UsrpRxStreamer:
    """RxStreamer over a uhd rx_streamer."""

    def __init__(self, streamer: Any, uhd: Any) -> None:
        self._streamer = streamer
        self._uhd = uhd
        self._metadata = uhd.types.RXMetadata()

    def issue_stream_cmd(self, command: StreamCommand) -> None:
        types = self._uhd.types
        if command.mode is StreamMode.NUM_SAMPS_AND_DONE:
            cmd = types.StreamCMD(types.StreamMode.num_done)
            cmd.num_samps = int(command.num_samples)
        else:
            cmd = types.StreamCMD(types.StreamMode.stop_cont)

        cmd.stream_now = command.stream_now
        if command.start_time is not None:
            cmd.time_spec = types.TimeSpec(float(command.start_time))
        self._streamer.issue_stream_cmd(cmd)

    def recv(self, buffer: np.ndarray, timeout: float) -> RecvResult:
        num = self._streamer.recv(buffer, self._metadata, timeout)
        codes = self._uhd.types.RXMetadataErrorCode
        code = self._metadata.error_code

        if code == codes.none:
            error = RxErrorCode.NONE
        elif code == codes.timeout:
            error = RxErrorCode.TIMEOUT
        elif code == codes.overflow:
            error = RxErrorCode.OVERFLOW
        elif code == codes.late:
            error = RxErrorCode.LATE_COMMAND
        else:
            error = RxErrorCode.OTHER

        message = "" if error is RxErrorCode.NONE else self._metadata.strerror()
        return RecvResult(num_samples=int(num), error_code=error, message=message)


class UsrpRadio:
    """RadioDevice backed by uhd.usrp.MultiUSRP."""

    def __init__(self, usrp: Any, uhd: Any) -> None:
        """Wrap an already created MultiUSRP.

        Args:
            usrp: uhd.usrp.MultiUSRP instance
            uhd: The imported uhd module
        """
        self._usrp = usrp
        self._uhd = uhd

    @classmethod
    def open(
        cls,
        args: str = "",
        clock_ref: Optional[str] = "external",
        setup_timeout_s: float = 0.5,
        subdev: Optional[str] = None,
        check_lock: bool = True,
        cancel: Optional[CancellationToken] = None,
    ) -> "UsrpRadio":
        """Create the device, lock its references and select the subdevice.

        Args:
            args: UHD device address args (e.g. "addr=192.168.10.3")
            clock_ref: Clock and time source ("internal", "external", "mimo", "gpsdo"),
                or None to leave the current source untouched
            setup_timeout_s: Timeout for reference lock
            subdev: Optional RX subdevice specification
            check_lock: Wait for ref/mimo lock sensors
            cancel: Optional token observed while waiting for lock

        Returns:
            UsrpRadio instance

        Raises:
            DeviceError: If UHD is not installed or the device cannot be created
            LockTimeoutError: If the reference does not lock
        """
        try:
            import uhd  # type: ignore
        except ImportError as e:
            raise DeviceError("UHD Python bindings not installed (import uhd failed)") from e

        logger.info(f"Creating USRP device: {args!r}...")
        try:
            usrp = uhd.usrp.MultiUSRP(args)
        except RuntimeError as e:
            raise DeviceError(f"Failed to create USRP with args {args!r}: {e}") from e

        radio = cls(usrp, uhd)

        if clock_ref:
            usrp.set_clock_source(clock_ref)
            usrp.set_time_source(clock_ref)

        if check_lock:
            if clock_ref == "mimo":
                wait_for_sensor_lock(
                    radio.get_mboard_sensor_names(),
                    protocol.SENSOR_MIMO_LOCKED,
                    radio.get_mboard_sensor,
                    setup_timeout_s,
                    cancel=cancel,
                )
            elif clock_ref == "external":
                wait_for_sensor_lock(
                    radio.get_mboard_sensor_names(),
                    protocol.SENSOR_REF_LOCKED,
                    radio.get_mboard_sensor,
                    setup_timeout_s,
                    cancel=cancel,
                )

        # Subdevice first: channel mapping affects every later setting
        if subdev:
            usrp.set_rx_subdev_spec(uhd.usrp.SubdevSpec(subdev))

        logger.info(f"Using device: {radio.pp_string}")
        return radio

    @property
    def pp_string(self) -> str:
        return self._usrp.get_pp_string()

    def get_time_now(self) -> float:
        return self._usrp.get_time_now().get_real_secs()

    def set_time_now(self, seconds: float) -> None:
        self._usrp.set_time_now(self._uhd.types.TimeSpec(float(seconds)))

    def set_time_unknown_pps(self, seconds: float) -> None:
        self._usrp.set_time_unknown_pps(self._uhd.types.TimeSpec(float(seconds)))

    def get_clock_source(self) -> str:
        return self._usrp.get_clock_source(0)

    def set_rx_rate(self, rate: float, channel: int) -> float:
        self._usrp.set_rx_rate(rate, channel)
        return self._usrp.get_rx_rate(channel)

    def set_rx_freq(self, freq: float, lo_offset: float, channel: int, integer_n: bool = False) -> float:
        request = self._uhd.types.TuneRequest(freq, lo_offset)
        if integer_n:
            request.args = self._uhd.types.DeviceAddr(protocol.INTEGER_N_TUNE_ARGS)
        self._usrp.set_rx_freq(request, channel)
        return self._usrp.get_rx_freq(channel)

    def set_rx_gain(self, gain: float, channel: int) -> float:
        self._usrp.set_rx_gain(gain, channel)
        return self._usrp.get_rx_gain(channel)

    def set_rx_bandwidth(self, bandwidth: float, channel: int) -> float:
        self._usrp.set_rx_bandwidth(bandwidth, channel)
        return self._usrp.get_rx_bandwidth(channel)

    def set_rx_antenna(self, antenna: str, channel: int) -> None:
        self._usrp.set_rx_antenna(antenna, channel)

    def get_rx_sensor_names(self, channel: int) -> List[str]:
        return list(self._usrp.get_rx_sensor_names(channel))

    def get_rx_sensor(self, name: str, channel: int) -> bool:
        return self._usrp.get_rx_sensor(name, channel).to_bool()

    def get_mboard_sensor_names(self) -> List[str]:
        return list(self._usrp.get_mboard_sensor_names(0))

    def get_mboard_sensor(self, name: str) -> bool:
        return self._usrp.get_mboard_sensor(name, 0).to_bool()

    def get_rx_stream(self, sample_format: SampleFormat, channel: int) -> RxStreamer:
        stream_args = self._uhd.usrp.StreamArgs(sample_format.cpu_format, sample_format.wire_format)
        stream_args.channels = [channel]
        return UsrpRxStreamer(self._usrp.get_rx_stream(stream_args), self._uhd)

"""Timed, sample-count-bounded capture of one acquisition request."""

import logging
import os
from typing import BinaryIO, Optional

import numpy as np

from timed_rx_lib import protocol
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.device import (
    RadioDevice,
    RxErrorCode,
    StreamCommand,
    StreamMode,
    wait_for_sensor_lock,
)
from timed_rx_lib.errors import LockTimeoutError
from timed_rx_lib.models import (
    AcquisitionOutcome,
    AcquisitionRequest,
    OutcomeStatus,
    SampleFormat,
    resolve_sample_format,
)
from timed_rx_lib.timing import HostClock, SystemClock, format_timestamp

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    RxErrorCode.TIMEOUT: OutcomeStatus.STREAM_TIMEOUT,
    RxErrorCode.OVERFLOW: OutcomeStatus.STREAM_OVERFLOW,
    RxErrorCode.LATE_COMMAND: OutcomeStatus.LATE_COMMAND,
    RxErrorCode.OTHER: OutcomeStatus.OTHER,
}


class AcquisitionExecutor:
    """Configures the radio for one request and captures its samples.

    Sequence per request: sample rate, tuning (LO offset, optional
    integer-N), gain, bandwidth, antenna, LO lock, then a timed
    NUM_SAMPS_AND_DONE burst received into a file chunk by chunk. Every
    receive call is bounded by the remaining budget
    start_time + timeout_slack + num_samples / rate - now.

    Any non-success outcome removes the partially written file.
    """

    def __init__(
        self,
        device: RadioDevice,
        channel: int = 0,
        samples_per_buffer: int = 10000,
        sample_format: Optional[SampleFormat] = None,
        setup_timeout_s: float = 0.5,
        timeout_slack_s: float = protocol.DEFAULT_TIMEOUT_SLACK_S,
        integer_n: bool = False,
        check_lock: bool = True,
        save_to_file: bool = True,
        progress_interval_s: Optional[float] = 1.0,
        clock: Optional[HostClock] = None,
    ) -> None:
        """Initialize executor.

        Args:
            device: Radio to configure and stream from
            channel: RX channel index
            samples_per_buffer: Samples requested per receive call
            sample_format: Streaming/storage format (defaults to sc16 over sc16)
            setup_timeout_s: Timeout for the LO lock sensor
            timeout_slack_s: Extra receive budget beyond the nominal duration
            integer_n: Tune with integer-N synthesis
            check_lock: Wait for LO lock before streaming
            save_to_file: Write samples to the capture file
            progress_interval_s: Interval for throughput log lines (None disables)
            clock: Host clock (defaults to SystemClock)
        """
        if samples_per_buffer <= 0:
            raise ValueError(f"samples_per_buffer must be positive, got {samples_per_buffer}")

        self._device = device
        self._clock = clock or SystemClock()
        self.channel = channel
        self.samples_per_buffer = samples_per_buffer
        self.sample_format = sample_format or resolve_sample_format("short", "sc16")
        self.setup_timeout_s = setup_timeout_s
        self.timeout_slack_s = timeout_slack_s
        self.integer_n = integer_n
        self.check_lock = check_lock
        self.save_to_file = save_to_file
        self.progress_interval_s = progress_interval_s

    def run(
        self,
        request: AcquisitionRequest,
        file_path: str,
        timeout_slack: Optional[float] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AcquisitionOutcome:
        """Execute one request.

        Args:
            request: Validated request
            file_path: Capture file path (ignored when save_to_file is off)
            timeout_slack: Override for the configured timeout slack
            cancel: Optional token observed during lock polling and receive

        Returns:
            AcquisitionOutcome classifying the result

        Raises:
            Cancelled: If the token fires mid-request (partial file removed)
            Exception: Unclassified device errors during configuration propagate
        """
        slack = self.timeout_slack_s if timeout_slack is None else timeout_slack

        if request.sample_rate_hz <= 0:
            return AcquisitionOutcome(
                status=OutcomeStatus.OTHER,
                request=request,
                detail=f"Invalid sample rate {request.sample_rate_hz}",
            )

        self._configure(request)

        if self.check_lock:
            try:
                wait_for_sensor_lock(
                    self._device.get_rx_sensor_names(self.channel),
                    protocol.SENSOR_LO_LOCKED,
                    lambda name: self._device.get_rx_sensor(name, self.channel),
                    self.setup_timeout_s,
                    clock=self._clock,
                    cancel=cancel,
                )
            except LockTimeoutError as e:
                logger.error(f"LO lock failed: {e}")
                return AcquisitionOutcome(
                    status=OutcomeStatus.LOCK_TIMEOUT, request=request, detail=str(e)
                )

        path = file_path if self.save_to_file else None
        return self._timed_recv_to_file(request, path, slack, cancel)

    # ========================================================================
    # Internal Helpers: Configuration
    # ========================================================================

    def _configure(self, request: AcquisitionRequest) -> None:
        """Apply rate, tuning, gain, bandwidth and antenna for the request."""
        device = self._device
        chan = self.channel

        logger.info(f"Setting RX rate: {request.sample_rate_hz / 1e6:.6f} Msps...")
        actual_rate = device.set_rx_rate(request.sample_rate_hz, chan)
        logger.info(f"Actual RX rate: {actual_rate / 1e6:.6f} Msps")

        logger.info(
            f"Setting RX freq: {request.center_freq_hz / 1e6:.6f} MHz, "
            f"LO offset {request.lo_offset_hz / 1e6:.6f} MHz"
            + (" (integer-N)" if self.integer_n else "")
        )
        actual_freq = device.set_rx_freq(
            request.center_freq_hz, request.lo_offset_hz, chan, integer_n=self.integer_n
        )
        logger.info(f"Actual RX freq: {actual_freq / 1e6:.6f} MHz")

        actual_gain = device.set_rx_gain(request.gain_db, chan)
        logger.info(f"RX gain: requested {request.gain_db} dB, actual {actual_gain} dB")

        actual_bw = device.set_rx_bandwidth(request.bandwidth_hz, chan)
        logger.info(
            f"RX bandwidth: requested {request.bandwidth_hz / 1e6:.6f} MHz, "
            f"actual {actual_bw / 1e6:.6f} MHz"
        )

        device.set_rx_antenna(request.antenna, chan)
        logger.info(f"RX antenna: {request.antenna}")

    # ========================================================================
    # Internal Helpers: Streaming
    # ========================================================================

    def _timed_recv_to_file(
        self,
        request: AcquisitionRequest,
        path: Optional[str],
        slack: float,
        cancel: Optional[CancellationToken],
    ) -> AcquisitionOutcome:
        """Issue the timed burst and receive it, optionally writing to path."""
        fmt = self.sample_format
        streamer = self._device.get_rx_stream(fmt, self.channel)
        buffer = np.zeros((1, self.samples_per_buffer), dtype=fmt.dtype)

        requested = request.num_samples
        stop_time = request.start_time + slack + request.nominal_duration_s
        received = 0
        status: Optional[OutcomeStatus] = None
        detail: Optional[str] = None
        succeeded = False

        outfile: Optional[BinaryIO] = None
        if path is not None:
            logger.debug(f"Opening capture file {path}")
            outfile = open(path, "wb")

        try:
            streamer.issue_stream_cmd(
                StreamCommand(
                    mode=StreamMode.NUM_SAMPS_AND_DONE,
                    num_samples=requested,
                    start_time=request.start_time,
                )
            )
            logger.info(
                f"[{format_timestamp(self._clock.now())}] requesting {requested} samples "
                f"at {format_timestamp(request.start_time)}"
            )

            last_update = self._clock.monotonic()
            last_update_samples = 0

            try:
                while received < requested:
                    if cancel is not None:
                        cancel.raise_if_cancelled()

                    recv_timeout = stop_time - self._clock.now()
                    if recv_timeout <= 0:
                        status = OutcomeStatus.STREAM_TIMEOUT
                        detail = f"Receive budget exhausted after {received}/{requested} samples"
                        logger.warning(detail)
                        break

                    result = streamer.recv(buffer, recv_timeout)

                    if result.error_code is not RxErrorCode.NONE:
                        status = _ERROR_STATUS[result.error_code]
                        detail = self._describe_error(result.error_code, result.message, received, requested)
                        if status is OutcomeStatus.OTHER:
                            logger.error(detail)
                        else:
                            logger.warning(detail)
                        break

                    num = min(result.num_samples, requested - received)
                    if outfile is not None and num > 0:
                        outfile.write(buffer[0, :num].tobytes())
                    received += num

                    if self.progress_interval_s is not None:
                        last_update_samples += num
                        since = self._clock.monotonic() - last_update
                        if since >= self.progress_interval_s:
                            logger.info(f"\t{last_update_samples / since / 1e6:.3f} Msps")
                            last_update_samples = 0
                            last_update = self._clock.monotonic()
            finally:
                streamer.issue_stream_cmd(StreamCommand(mode=StreamMode.STOP_CONTINUOUS))

            elapsed = max(self._clock.now() - request.start_time, 0.0)
            if status is None and received == requested:
                succeeded = True
                rate = received / elapsed if elapsed > 0 else 0.0
                logger.info(
                    f"Received {received} samples in {elapsed:.6f} seconds ({rate / 1e6:.3f} Msps)"
                )
                return AcquisitionOutcome(
                    status=OutcomeStatus.SUCCESS,
                    request=request,
                    file_path=path,
                    samples_received=received,
                    elapsed_s=elapsed,
                )

            return AcquisitionOutcome(
                status=status or OutcomeStatus.OTHER,
                request=request,
                detail=detail,
                samples_received=received,
                elapsed_s=elapsed,
            )
        finally:
            if outfile is not None:
                outfile.close()
                if not succeeded:
                    self._remove_partial(path)

    def _describe_error(
        self, code: RxErrorCode, message: str, received: int, requested: int
    ) -> str:
        progress = f"after {received}/{requested} samples"
        if code is RxErrorCode.TIMEOUT:
            return f"Timeout while streaming {progress}"
        if code is RxErrorCode.OVERFLOW:
            return f"Overflow {progress}: host could not keep up with the sample stream"
        if code is RxErrorCode.LATE_COMMAND:
            return f"Late command {progress}: start time elapsed before the device armed it"
        return f"Receiver error {progress}: {message or 'unknown'}"

    @staticmethod
    def _remove_partial(path: Optional[str]) -> None:
        if path is None:
            return
        try:
            os.remove(path)
            logger.info(f"Removed partial capture file {path}")
        except FileNotFoundError:
            pass

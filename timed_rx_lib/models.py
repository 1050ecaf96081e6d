"""Data models for the timed RX trigger library."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import numpy as np

from timed_rx_lib import protocol
from timed_rx_lib.errors import ConfigError


class OutcomeStatus(Enum):
    """Terminal classification of one processed trigger message."""

    SUCCESS = "success"
    PARSE_ERROR = "parse_error"
    LATE_DEADLINE = "late_deadline"
    LOCK_TIMEOUT = "lock_timeout"
    STREAM_TIMEOUT = "stream_timeout"
    STREAM_OVERFLOW = "stream_overflow"
    LATE_COMMAND = "late_command"
    OTHER = "other"


class WorkerState(Enum):
    """Acquisition worker states (reported by the status API)."""

    IDLE = "idle"
    SYNCING = "syncing"
    WAITING = "waiting"
    EXECUTING = "executing"
    STOPPED = "stopped"


@dataclass(frozen=True)
class AcquisitionRequest:
    """One timed capture request decoded from an inbound trigger message.

    Attributes:
        center_freq_hz: RF center frequency in Hz.
        lo_offset_hz: Local oscillator offset in Hz.
        sample_rate_hz: Requested sample rate in samples per second.
        bandwidth_hz: Analog front-end filter bandwidth in Hz.
        gain_db: RX gain in dB.
        start_time: Absolute start time in epoch seconds (fractional).
        num_samples: Number of samples to capture.
        antenna: Antenna port name (e.g. "TX/RX", "RX2").
    """

    center_freq_hz: float
    lo_offset_hz: float
    sample_rate_hz: float
    bandwidth_hz: float
    gain_db: float
    start_time: float
    num_samples: int
    antenna: str

    @property
    def nominal_duration_s(self) -> float:
        """Capture duration at the requested rate: num_samples / sample_rate_hz."""
        if self.sample_rate_hz <= 0:
            return 0.0
        return self.num_samples / self.sample_rate_hz


@dataclass
class AcquisitionOutcome:
    """Result of processing one trigger message.

    Attributes:
        status: Terminal classification.
        request: Decoded request (None when the message could not be parsed).
        file_path: Capture file path on success (None otherwise or when file output is off).
        detail: Human-readable explanation, mainly for failures.
        samples_received: Number of samples actually received.
        elapsed_s: Wall time spent in the receive loop.
        completed_at: UTC timestamp when the outcome was produced.
    """

    status: OutcomeStatus
    request: Optional[AcquisitionRequest] = None
    file_path: Optional[str] = None
    detail: Optional[str] = None
    samples_received: int = 0
    elapsed_s: float = 0.0
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @property
    def start_time(self) -> Optional[float]:
        return self.request.start_time if self.request else None


@dataclass(frozen=True)
class SampleFormat:
    """Sample representation used for streaming and file output.

    Resolved once from configuration and passed down to the streamer and the
    file writer, so the executor has a single code path for every format.

    Attributes:
        cpu_format: Host-side sample format name (sc16, fc32, fc64, s16, f32, f64).
        wire_format: Over-the-wire format name (sc16, sc8, s16).
        dtype: numpy dtype of one sample, explicitly little-endian.
        is_complex: True when samples are I/Q pairs.
    """

    cpu_format: str
    wire_format: str
    dtype: np.dtype
    is_complex: bool

    @property
    def bytes_per_sample(self) -> int:
        return self.dtype.itemsize


_CPU_DTYPES = {
    # Complex int16 has no native numpy type; a packed I/Q record keeps one
    # array element per sample.
    "sc16": np.dtype([("i", "<i2"), ("q", "<i2")]),
    "fc32": np.dtype("<c8"),
    "fc64": np.dtype("<c16"),
    "s16": np.dtype("<i2"),
    "f32": np.dtype("<f4"),
    "f64": np.dtype("<f8"),
}


def resolve_sample_format(datafmt: str, wirefmt: str) -> SampleFormat:
    """Resolve CLI-style data/wire format names into a SampleFormat.

    Args:
        datafmt: "short", "float" or "double"
        wirefmt: "sc16", "sc8" or "s16" (real-only)

    Returns:
        SampleFormat descriptor

    Raises:
        ConfigError: If either name is unknown
    """
    if datafmt not in protocol.DATA_FORMATS:
        raise ConfigError(
            f"Unknown data format '{datafmt}', expected one of {sorted(protocol.DATA_FORMATS)}"
        )

    if wirefmt in protocol.WIRE_FORMATS_REAL:
        is_complex = False
    elif wirefmt in protocol.WIRE_FORMATS_COMPLEX:
        is_complex = True
    else:
        known = sorted(protocol.WIRE_FORMATS_COMPLEX | protocol.WIRE_FORMATS_REAL)
        raise ConfigError(f"Unknown wire format '{wirefmt}', expected one of {known}")

    complex_fmt, real_fmt = protocol.DATA_FORMATS[datafmt]
    cpu_format = complex_fmt if is_complex else real_fmt

    return SampleFormat(
        cpu_format=cpu_format,
        wire_format=wirefmt,
        dtype=_CPU_DTYPES[cpu_format],
        is_complex=is_complex,
    )

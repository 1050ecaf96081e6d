"""Pure functions for decoding trigger messages and rendering status messages."""

import logging
import math

from timed_rx_lib import protocol
from timed_rx_lib.errors import RequestParseError
from timed_rx_lib.models import AcquisitionOutcome, AcquisitionRequest, OutcomeStatus
from timed_rx_lib.timing import format_datestamp, format_timestamp

logger = logging.getLogger(__name__)


def decode_request(text: str) -> AcquisitionRequest:
    """Parse an inbound trigger message into an AcquisitionRequest.

    Expected format (all fields mandatory, this exact order):
    fc=<float>,lo=<float>,sps=<float>,bw=<float>,g=<float>,t0=<float>,n=<uint>,ant=<string>

    Example: "fc=2400000000,lo=0,sps=1000000,bw=2000000,g=30,t0=1700000000.5,n=500000,ant=TX/RX"

    Args:
        text: Raw message payload

    Returns:
        Fully populated AcquisitionRequest

    Raises:
        RequestParseError: If any field is missing, out of order or malformed
    """
    if not isinstance(text, str):
        raise RequestParseError(f"Request must be text, got {type(text).__name__}")

    line = text.strip()
    if not line:
        raise RequestParseError("Empty request message")

    match = protocol.RE_REQUEST.match(line)
    if not match:
        raise RequestParseError(f"Request doesn't match expected pattern: {line!r}")

    try:
        fc, lo, sps, bw, gain, t0 = (float(match.group(i)) for i in range(1, 7))
        num_samples = int(match.group(7))
    except ValueError as e:
        raise RequestParseError(f"Failed to parse numeric values in request: {line!r}") from e

    # Overflowing exponents parse as inf
    for name, value in zip(protocol.REQUEST_FIELDS, (fc, lo, sps, bw, gain, t0)):
        if not math.isfinite(value):
            raise RequestParseError(f"Field '{name}' is not finite in request: {line!r}")

    antenna = match.group(8).strip()
    if not antenna:
        raise RequestParseError(f"Field 'ant' is empty in request: {line!r}")

    return AcquisitionRequest(
        center_freq_hz=fc,
        lo_offset_hz=lo,
        sample_rate_hz=sps,
        bandwidth_hz=bw,
        gain_db=gain,
        start_time=t0,
        num_samples=num_samples,
        antenna=antenna,
    )


def encode_request(request: AcquisitionRequest) -> str:
    """Render a request back into wire format (used by the example publisher and tests)."""
    return (
        f"fc={request.center_freq_hz!r},lo={request.lo_offset_hz!r},"
        f"sps={request.sample_rate_hz!r},bw={request.bandwidth_hz!r},"
        f"g={request.gain_db!r},t0={request.start_time:.6f},"
        f"n={request.num_samples},ant={request.antenna}"
    )


def encode_outcome(outcome: AcquisitionOutcome, client_id: str) -> str:
    """Render an outcome as the outbound status message.

    Args:
        outcome: Outcome produced by the worker
        client_id: Own ID, prefixed to every status message

    Returns:
        One of:
            "<id req saved PATH>", "<id req failed @ T>",
            "<id host late command @ T>", "<id invalid msg>"
    """
    status = outcome.status

    if status is OutcomeStatus.PARSE_ERROR or outcome.request is None:
        return protocol.MSG_INVALID.format(client_id=client_id)

    if status is OutcomeStatus.SUCCESS:
        return protocol.MSG_SAVED.format(
            client_id=client_id, path=outcome.file_path or protocol.NULL_PATH
        )

    timestamp = format_timestamp(outcome.request.start_time)
    if status is OutcomeStatus.LATE_DEADLINE:
        return protocol.MSG_LATE.format(client_id=client_id, timestamp=timestamp)

    return protocol.MSG_FAILED.format(client_id=client_id, timestamp=timestamp)


def make_capture_filename(request: AcquisitionRequest, prefix: str = "") -> str:
    """Build the capture file name for a request.

    Format: <prefix><fc MHz>M_<YYYY-MM-DD-HH:MM:SS.mmm>.dat, e.g.
    "captures/2400.000M_2024-05-01-12:00:10.000.dat". The prefix may include
    a directory.
    """
    return protocol.CAPTURE_FILENAME.format(
        prefix=prefix,
        fc_mhz=request.center_freq_hz / 1e6,
        datestamp=format_datestamp(request.start_time),
    )


def presence_message(client_id: str, connected: bool) -> str:
    """Presence message published on connect or registered as last will."""
    template = protocol.MSG_CONNECTED if connected else protocol.MSG_DISCONNECTED
    return template.format(client_id=client_id)

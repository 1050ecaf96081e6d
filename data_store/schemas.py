"""Schema normalization for acquisition outcomes to DataFrame format.

Every processed trigger message becomes one row. Request fields are None
(NaN in the DataFrame) for messages that could not be parsed.
"""

from datetime import timezone
from typing import Any, Dict

from timed_rx_lib.models import AcquisitionOutcome

# DataFrame schema: column names and their dtypes
SCHEMA = {
    "completed_at": str,  # UTC ISO 8601 format
    "status": str,  # OutcomeStatus value
    "start_time": float,  # Requested start, epoch seconds
    "center_freq_hz": float,
    "sample_rate_hz": float,
    "gain_db": float,
    "num_samples": float,  # Requested count (float so missing values stay NaN)
    "antenna": str,
    "samples_received": int,
    "elapsed_s": float,
    "file_path": str,
    "detail": str,
}


def outcome_to_row(outcome: AcquisitionOutcome) -> Dict[str, Any]:
    """Convert an AcquisitionOutcome to a DataFrame row dictionary.

    Normalizes completed_at to UTC ISO 8601 and ensures all SCHEMA keys are
    present.

    Args:
        outcome: Outcome produced by the acquisition worker

    Returns:
        Dictionary with all SCHEMA keys, ready for DataFrame append
    """
    ts = outcome.completed_at
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    elif ts.tzinfo != timezone.utc:
        ts = ts.astimezone(timezone.utc)

    request = outcome.request

    return {
        "completed_at": ts.isoformat(),
        "status": outcome.status.value,
        "start_time": request.start_time if request else None,
        "center_freq_hz": request.center_freq_hz if request else None,
        "sample_rate_hz": request.sample_rate_hz if request else None,
        "gain_db": request.gain_db if request else None,
        "num_samples": request.num_samples if request else None,
        "antenna": request.antenna if request else None,
        "samples_received": outcome.samples_received,
        "elapsed_s": outcome.elapsed_s,
        "file_path": outcome.file_path,
        "detail": outcome.detail,
    }

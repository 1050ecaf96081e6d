"""
timed_rx_lib - Timed SDR capture triggered over MQTT.

Keeps a USRP clock aligned to host (NTP) time through the PPS edge and
captures sample-exact bursts at absolute start times requested by remote
trigger messages.
"""

from timed_rx_lib.blocking_queue import BlockingQueue, QueueEmpty
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.clock_sync import ClockSyncSupervisor
from timed_rx_lib.codec import decode_request, encode_outcome, make_capture_filename
from timed_rx_lib.config import ServiceConfig
from timed_rx_lib.deadline import DeadlineGuard, check_deadline
from timed_rx_lib.errors import (
    Cancelled,
    ConfigError,
    ControlChannelError,
    DeviceError,
    LateDeadlineError,
    LockTimeoutError,
    RequestParseError,
    TimedRxError,
)
from timed_rx_lib.executor import AcquisitionExecutor
from timed_rx_lib.models import (
    AcquisitionOutcome,
    AcquisitionRequest,
    OutcomeStatus,
    SampleFormat,
    WorkerState,
)
from timed_rx_lib.service import TriggerService
from timed_rx_lib.worker import AcquisitionWorker

__version__ = "0.1.0"

__all__ = [
    "AcquisitionExecutor",
    "AcquisitionOutcome",
    "AcquisitionRequest",
    "AcquisitionWorker",
    "BlockingQueue",
    "CancellationToken",
    "Cancelled",
    "ClockSyncSupervisor",
    "ConfigError",
    "ControlChannelError",
    "DeadlineGuard",
    "DeviceError",
    "LateDeadlineError",
    "LockTimeoutError",
    "OutcomeStatus",
    "QueueEmpty",
    "RequestParseError",
    "SampleFormat",
    "ServiceConfig",
    "TimedRxError",
    "TriggerService",
    "WorkerState",
    "check_deadline",
    "decode_request",
    "encode_outcome",
    "make_capture_filename",
]

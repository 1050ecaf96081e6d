"""Acquisition worker: the data-plane loop between the inbound and outbound queues."""

import logging
import threading
from typing import Callable, List, Optional

from timed_rx_lib.blocking_queue import BlockingQueue
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.clock_sync import ClockSyncSupervisor
from timed_rx_lib.codec import decode_request, encode_outcome, make_capture_filename
from timed_rx_lib.deadline import DeadlineGuard
from timed_rx_lib.errors import Cancelled, LateDeadlineError, RequestParseError
from timed_rx_lib.executor import AcquisitionExecutor
from timed_rx_lib.models import AcquisitionOutcome, OutcomeStatus, WorkerState

logger = logging.getLogger(__name__)

OutcomeListener = Callable[[AcquisitionOutcome], None]


class AcquisitionWorker:
    """Processes trigger messages one at a time.

    Loop: ensure the device clock is synced, pop one message, decode it,
    check its deadline, execute it, push exactly one status message. Only
    one request is ever in flight.

    Request-level failures become outcomes. Failures outside a request (for
    example the device failing during clock sync) propagate out of run() so
    the supervisor can decide what to do.
    """

    def __init__(
        self,
        inbound: BlockingQueue[str],
        outbound: BlockingQueue[str],
        clock_sync: ClockSyncSupervisor,
        guard: DeadlineGuard,
        executor: AcquisitionExecutor,
        client_id: str,
        file_prefix: str = "",
    ) -> None:
        """Initialize worker.

        Args:
            inbound: Queue of raw trigger messages (control plane -> worker)
            outbound: Queue of status messages (worker -> control plane)
            clock_sync: Supervisor run before every request
            guard: Deadline guard applied to each decoded request
            executor: Executes validated requests
            client_id: Own ID used in status messages
            file_prefix: Prefix (may include a directory) for capture file names
        """
        self._inbound = inbound
        self._outbound = outbound
        self._clock_sync = clock_sync
        self._guard = guard
        self._executor = executor
        self.client_id = client_id
        self.file_prefix = file_prefix

        self._listeners: List[OutcomeListener] = []
        self._lock = threading.Lock()
        self._state = WorkerState.IDLE
        self._processed_count = 0
        self._last_outcome: Optional[AcquisitionOutcome] = None

        self._thread: Optional[threading.Thread] = None
        self._cancel: Optional[CancellationToken] = None
        self.crash_error: Optional[BaseException] = None

    # ========================================================================
    # Observers and Status
    # ========================================================================

    def add_listener(self, listener: OutcomeListener) -> None:
        """Register a callable invoked with every outcome after it is queued."""
        self._listeners.append(listener)

    @property
    def state(self) -> WorkerState:
        with self._lock:
            return self._state

    @property
    def processed_count(self) -> int:
        with self._lock:
            return self._processed_count

    @property
    def last_outcome(self) -> Optional[AcquisitionOutcome]:
        with self._lock:
            return self._last_outcome

    @property
    def last_offset(self) -> Optional[float]:
        return self._clock_sync.last_offset

    # ========================================================================
    # Main Loop
    # ========================================================================

    def run(self, cancel: CancellationToken) -> None:
        """Run the loop on the calling thread until cancel fires.

        Returns normally on cancellation.

        Raises:
            Exception: Any failure outside request processing
        """
        logger.info(f"Acquisition worker started (thread {threading.get_ident()})")
        try:
            while not cancel.is_cancelled:
                self._set_state(WorkerState.SYNCING)
                self._clock_sync.ensure_synced(cancel)

                self._set_state(WorkerState.WAITING)
                message = self._inbound.pop(cancel)
                logger.info(f"Received request: {message!r}")

                outcome = self.process_message(message, cancel)
                self._emit(outcome)
        except Cancelled:
            logger.info("Acquisition worker cancelled")
        finally:
            self._set_state(WorkerState.STOPPED)

    def process_message(
        self, message: str, cancel: Optional[CancellationToken] = None
    ) -> AcquisitionOutcome:
        """Turn one raw message into an outcome.

        The deadline is checked against host time sampled here, after the
        resync and the pop.

        Args:
            message: Raw trigger payload
            cancel: Optional token forwarded to the executor

        Returns:
            AcquisitionOutcome (never raises for request-level failures)
        """
        try:
            request = decode_request(message)
        except RequestParseError as e:
            logger.warning(f"Invalid request: {e}")
            return AcquisitionOutcome(status=OutcomeStatus.PARSE_ERROR, detail=str(e))

        try:
            self._guard.check(request)
        except LateDeadlineError as e:
            logger.warning(f"Late request: {e}")
            return AcquisitionOutcome(
                status=OutcomeStatus.LATE_DEADLINE, request=request, detail=str(e)
            )

        self._set_state(WorkerState.EXECUTING)
        try:
            # t0 beyond the datetime range fails here
            file_path = make_capture_filename(request, self.file_prefix)
            return self._executor.run(request, file_path, cancel=cancel)
        except Cancelled:
            logger.warning("Capture cancelled before completion")
            return AcquisitionOutcome(
                status=OutcomeStatus.OTHER, request=request, detail="Cancelled during capture"
            )
        except Exception as e:
            logger.error(f"Unexpected error executing request: {e}", exc_info=True)
            return AcquisitionOutcome(status=OutcomeStatus.OTHER, request=request, detail=str(e))

    # ========================================================================
    # Thread Management
    # ========================================================================

    def start(self, cancel: Optional[CancellationToken] = None) -> None:
        """Run the loop in a background daemon thread.

        Args:
            cancel: Token that stops the loop (a private one is created if None)
        """
        if self._thread and self._thread.is_alive():
            raise RuntimeError("Acquisition worker already running")

        self._cancel = cancel or CancellationToken()
        self.crash_error = None
        self._thread = threading.Thread(
            target=self._thread_main,
            name="AcquisitionWorker",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Started acquisition worker thread")

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel the loop and join its thread."""
        if self._cancel is not None:
            self._cancel.cancel()
        if self._thread and self._thread.is_alive():
            logger.debug("Stopping acquisition worker thread...")
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Acquisition worker thread did not stop cleanly")
        self._thread = None

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _thread_main(self) -> None:
        assert self._cancel is not None
        try:
            self.run(self._cancel)
        except Exception as e:
            self.crash_error = e
            logger.error(f"Acquisition worker crashed: {e}", exc_info=True)

    def _set_state(self, state: WorkerState) -> None:
        with self._lock:
            self._state = state

    def _emit(self, outcome: AcquisitionOutcome) -> None:
        """Queue the status message for an outcome and notify listeners."""
        status_msg = encode_outcome(outcome, self.client_id)
        self._outbound.push(status_msg)

        if outcome.status is OutcomeStatus.OTHER:
            logger.error(f"Request failed: {outcome.detail}")
        logger.info(f"Status: {status_msg}")

        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception as e:
                logger.error(f"Outcome listener failed: {e}", exc_info=True)

        # Counters last: processed_count implies listeners have seen the outcome
        with self._lock:
            self._processed_count += 1
            self._last_outcome = outcome

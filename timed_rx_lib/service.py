"""Top-level supervisor wiring the radio, the worker and the control channel."""

import logging
import signal
import threading
from typing import Any, Optional

from timed_rx_lib.blocking_queue import BlockingQueue
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.clock_sync import ClockSyncSupervisor
from timed_rx_lib.config import ServiceConfig
from timed_rx_lib.control_channel import ClientFactory, InboundQueueSink, MqttControlChannel
from timed_rx_lib.deadline import DeadlineGuard
from timed_rx_lib.device import RadioDevice, UsrpRadio
from timed_rx_lib.errors import ControlChannelError, DeviceError, LockTimeoutError
from timed_rx_lib.executor import AcquisitionExecutor
from timed_rx_lib.timing import HostClock, SystemClock
from timed_rx_lib.worker import AcquisitionWorker

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_WORKER_FAILED = 2


class TriggerService:
    """Owns every component of the running service and its lifecycle.

    run() blocks until the cancellation token fires, the control channel
    exhausts its reconnect budget, or the worker crashes more often than
    ``worker_restarts`` allows. It returns a process exit code and never
    calls sys.exit itself.
    """

    def __init__(
        self,
        config: ServiceConfig,
        device: Optional[RadioDevice] = None,
        clock: Optional[HostClock] = None,
        client_factory: Optional[ClientFactory] = None,
        store: Optional[Any] = None,
        cancel: Optional[CancellationToken] = None,
        restart_backoff_s: float = 1.0,
        supervise_interval_s: float = 0.2,
    ) -> None:
        """Initialize service (the radio is opened by run() unless injected).

        Args:
            config: Validated service configuration
            device: Pre-built radio (tests inject a simulator); opened from config if None
            clock: Host clock shared by all components (defaults to SystemClock)
            client_factory: Builds the MQTT client (tests inject a fake)
            store: Optional OutcomeStore registered as worker listener
            cancel: Token that stops the service (created if None)
            restart_backoff_s: Base delay before restarting a crashed worker
            supervise_interval_s: How often run() checks component health
        """
        self.config = config
        self.device = device
        self.clock = clock or SystemClock()
        self.store = store
        self.cancel = cancel or CancellationToken()
        self.restart_backoff_s = restart_backoff_s
        self.supervise_interval_s = supervise_interval_s

        self.inbound: BlockingQueue[str] = BlockingQueue("inbound")
        self.outbound: BlockingQueue[str] = BlockingQueue("outbound")

        host, port = config.mqtt_address
        self.channel = MqttControlChannel(
            host=host,
            port=port,
            client_id=config.client_id,
            pub_topic=config.pub_topic,
            sub_topic=config.sub_topic,
            observer=InboundQueueSink(self.inbound),
            outbound=self.outbound,
            max_retries=config.mqtt_retries,
            client_factory=client_factory,
        )

        self.clock_sync: Optional[ClockSyncSupervisor] = None
        self.worker: Optional[AcquisitionWorker] = None
        self.worker_restart_count = 0

        self._api_server: Optional[Any] = None
        self._api_thread: Optional[threading.Thread] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def run(self) -> int:
        """Run the service until stopped.

        Returns:
            EXIT_OK on cancellation, EXIT_FATAL when the radio or the control
            channel cannot be brought up or the channel fails later,
            EXIT_WORKER_FAILED when the worker restart budget is exhausted
        """
        try:
            self._build_data_plane()
        except (DeviceError, LockTimeoutError) as e:
            logger.error(f"Failed to set up radio: {e}")
            return EXIT_FATAL

        try:
            self.channel.connect()
        except ControlChannelError as e:
            logger.error(f"Failed to start control channel: {e}")
            return EXIT_FATAL

        if self.config.api_port > 0:
            self._start_api()

        assert self.worker is not None
        self.worker.start(self.cancel)

        try:
            exit_code = self._supervise()
        finally:
            self.shutdown()

        logger.info(f"Service stopped with exit code {exit_code}")
        return exit_code

    def shutdown(self) -> None:
        """Cancel and tear down every component (idempotent)."""
        self.cancel.cancel()
        if self.worker is not None:
            self.worker.stop()
        self.channel.close()
        self._stop_api()

    def install_signal_handlers(self) -> None:
        """Map SIGINT and SIGTERM to cancellation of this service."""

        def signal_handler(signum, frame):
            if not self.cancel.is_cancelled:
                logger.info(f"Received shutdown signal {signum}, stopping service...")
            self.cancel.cancel()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _build_data_plane(self) -> None:
        config = self.config

        if self.device is None:
            self.device = UsrpRadio.open(
                config.device_args,
                clock_ref=config.clock_ref,
                setup_timeout_s=config.setup_slack_s,
                subdev=config.subdev or None,
                check_lock=not config.skip_lock_checks,
                cancel=self.cancel,
            )

        self.clock_sync = ClockSyncSupervisor(self.device, config.ntp_slack_s, clock=self.clock)
        guard = DeadlineGuard(config.ntp_slack_s, config.setup_slack_s, clock=self.clock)
        executor = AcquisitionExecutor(
            self.device,
            channel=config.channel,
            samples_per_buffer=config.samples_per_buffer,
            sample_format=config.sample_format,
            setup_timeout_s=config.setup_slack_s,
            timeout_slack_s=config.timeout_slack_s,
            integer_n=config.integer_n,
            check_lock=not config.skip_lock_checks,
            save_to_file=config.save_to_file,
            clock=self.clock,
        )
        self.worker = AcquisitionWorker(
            self.inbound,
            self.outbound,
            self.clock_sync,
            guard,
            executor,
            client_id=config.client_id,
            file_prefix=config.file_prefix,
        )
        if self.store is not None:
            self.worker.add_listener(self.store.append)

    def _supervise(self) -> int:
        assert self.worker is not None

        while not self.cancel.is_cancelled:
            if self.channel.failed.is_set():
                logger.error(f"Control channel failed: {self.channel.failure_reason}")
                return EXIT_FATAL

            if not self.worker.is_alive() and not self.cancel.is_cancelled:
                if self.worker_restart_count >= self.config.worker_restarts:
                    logger.error(
                        f"Acquisition worker died {self.worker_restart_count + 1} times, giving up"
                    )
                    return EXIT_WORKER_FAILED

                self.worker_restart_count += 1
                backoff = self.restart_backoff_s * self.worker_restart_count
                logger.warning(
                    f"Acquisition worker died ({self.worker.crash_error}), restarting in "
                    f"{backoff:.1f}s (restart {self.worker_restart_count}/{self.config.worker_restarts})"
                )
                if self.cancel.wait(backoff):
                    break
                self.worker.start(self.cancel)

            self.cancel.wait(self.supervise_interval_s)

        return EXIT_OK

    def _start_api(self) -> None:
        import uvicorn

        from api.main import app, attach_service

        attach_service(self)
        config = uvicorn.Config(
            app,
            host=self.config.api_host,
            port=self.config.api_port,
            log_level=self.config.log_level.lower(),
        )
        self._api_server = uvicorn.Server(config)
        self._api_thread = threading.Thread(
            target=self._api_server.run,
            name="StatusApi",
            daemon=True,
        )
        self._api_thread.start()
        logger.info(f"Status API listening on http://{self.config.api_host}:{self.config.api_port}")

    def _stop_api(self) -> None:
        if self._api_server is None:
            return
        self._api_server.should_exit = True
        if self._api_thread is not None:
            self._api_thread.join(timeout=5.0)
        self._api_server = None
        self._api_thread = None

        from api.main import attach_service

        attach_service(None)

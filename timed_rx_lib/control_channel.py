"""MQTT control channel: delivers trigger messages and publishes status messages.

The core only depends on the two narrow observer interfaces below. The
channel is a paho-mqtt client composed with one MessageObserver (normally an
InboundQueueSink) plus any number of ConnectionObservers.
"""

import logging
import threading
from typing import Any, Callable, List, Optional, Protocol

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from timed_rx_lib import protocol
from timed_rx_lib.blocking_queue import BlockingQueue
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.codec import presence_message
from timed_rx_lib.errors import Cancelled, ControlChannelError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], Any]


class MessageObserver(Protocol):
    """Receives payloads arriving on the subscribed topic."""

    def on_message(self, payload: str) -> None:
        ...


class ConnectionObserver(Protocol):
    """Receives connection state changes."""

    def on_connected(self) -> None:
        ...

    def on_disconnected(self, reason: str) -> None:
        ...


class InboundQueueSink:
    """MessageObserver that pushes every payload onto the inbound queue."""

    def __init__(self, inbound: BlockingQueue[str]) -> None:
        self._inbound = inbound

    def on_message(self, payload: str) -> None:
        self._inbound.push(payload)


class _CallbackConnectionObserver:
    def __init__(
        self,
        on_connected: Optional[Callable[[], None]],
        on_disconnected: Optional[Callable[[str], None]],
    ) -> None:
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected

    def on_connected(self) -> None:
        if self._on_connected:
            self._on_connected()

    def on_disconnected(self, reason: str) -> None:
        if self._on_disconnected:
            self._on_disconnected(reason)


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        CallbackAPIVersion.VERSION2,
        client_id=client_id,
        clean_session=True,
    )


class MqttControlChannel:
    """Publish/subscribe transport bridging MQTT and the two queues.

    Inbound: messages on sub_topic are handed to the MessageObserver.
    Outbound: a publisher thread drains the outbound queue onto pub_topic.

    QoS 1, clean session, last will "<<<id disconnected>>>". On every
    (re)connect the channel re-subscribes and publishes "<<<id connected>>>".
    Reconnection is driven by paho's network loop; once more than
    max_retries consecutive attempts fail the channel sets ``failed`` and
    records ``failure_reason``. It never exits the process.
    """

    def __init__(
        self,
        host: str,
        port: int,
        client_id: str,
        pub_topic: str,
        sub_topic: str,
        observer: MessageObserver,
        outbound: BlockingQueue[str],
        max_retries: int = protocol.MQTT_MAX_RETRIES,
        keepalive_s: int = protocol.MQTT_KEEPALIVE_S,
        qos: int = protocol.MQTT_QOS,
        connect_timeout_s: float = 10.0,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        """Initialize channel (no network activity until connect()).

        Args:
            host: Broker host name
            port: Broker port
            client_id: MQTT client id, also used in presence messages
            pub_topic: Topic for status and presence messages
            sub_topic: Topic carrying trigger messages
            observer: Receives every inbound payload
            outbound: Queue drained by the publisher thread
            max_retries: Consecutive failed (re)connects tolerated before failing
            keepalive_s: MQTT keepalive interval
            qos: QoS for subscribe and publish
            connect_timeout_s: Time allowed for the initial CONNACK
            client_factory: Builds the paho client from client_id (tests inject fakes)
        """
        self.host = host
        self.port = port
        self.client_id = client_id
        self.pub_topic = pub_topic
        self.sub_topic = sub_topic
        self.max_retries = max_retries
        self.keepalive_s = keepalive_s
        self.qos = qos
        self.connect_timeout_s = connect_timeout_s

        self._observer = observer
        self._outbound = outbound
        self._client = (client_factory or _default_client_factory)(client_id)
        self._connection_observers: List[ConnectionObserver] = []

        self._connected = threading.Event()
        self._first_attempt_done = threading.Event()
        self._closing = False
        self._retry_count = 0

        self.failed = threading.Event()
        self.failure_reason: Optional[str] = None

        self._publisher_thread: Optional[threading.Thread] = None
        self._publisher_cancel = CancellationToken()

    # ========================================================================
    # Public API
    # ========================================================================

    def add_connection_observer(self, observer: ConnectionObserver) -> None:
        self._connection_observers.append(observer)

    def connect(
        self,
        on_connected: Optional[Callable[[], None]] = None,
        on_disconnected: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Connect to the broker, subscribe and start the publisher thread.

        Args:
            on_connected: Optional callback for every successful (re)connect
            on_disconnected: Optional callback for every connection loss

        Raises:
            ControlChannelError: If the initial connection cannot be established
        """
        if on_connected or on_disconnected:
            self.add_connection_observer(_CallbackConnectionObserver(on_connected, on_disconnected))

        client = self._client
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.will_set(
            self.pub_topic,
            presence_message(self.client_id, connected=False),
            qos=self.qos,
            retain=False,
        )

        logger.info(f"Connecting to MQTT broker {self.host}:{self.port} as '{self.client_id}'...")
        try:
            client.connect(self.host, self.port, keepalive=self.keepalive_s)
        except (OSError, ValueError) as e:
            raise ControlChannelError(
                f"Failed to connect to MQTT broker {self.host}:{self.port}: {e}"
            ) from e

        client.loop_start()

        self._first_attempt_done.wait(timeout=self.connect_timeout_s)
        if not self._connected.is_set():
            reason = self.failure_reason or "no CONNACK received"
            client.loop_stop()
            raise ControlChannelError(
                f"MQTT broker {self.host}:{self.port} did not accept the connection: {reason}"
            )

        self._publisher_thread = threading.Thread(
            target=self._publisher_loop,
            name="MqttPublisher",
            daemon=True,
        )
        self._publisher_thread.start()
        logger.debug("Started MQTT publisher thread")

    def subscribe(self, topic: str) -> None:
        logger.info(f"Subscribing to topic '{topic}' (QoS {self.qos})")
        self._client.subscribe(topic, qos=self.qos)

    def publish(self, topic: str, payload: str) -> None:
        """Publish payload on topic at the channel QoS.

        While disconnected paho keeps QoS>0 messages and sends them after the
        next reconnect, so a non-success code is only logged.
        """
        info = self._client.publish(topic, payload, qos=self.qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"Publish to '{topic}' queued while not connected (rc={info.rc})")
        else:
            logger.debug(f"Published to '{topic}': {payload}")

    def close(self, timeout: float = 5.0) -> None:
        """Stop the publisher, announce departure, disconnect and stop the network loop."""
        self._closing = True
        self._publisher_cancel.cancel()
        if self._publisher_thread and self._publisher_thread.is_alive():
            self._publisher_thread.join(timeout=timeout)
            if self._publisher_thread.is_alive():
                logger.warning("MQTT publisher thread did not stop cleanly")
        self._publisher_thread = None

        if self._connected.is_set():
            self.publish(self.pub_topic, presence_message(self.client_id, connected=False))
            self._client.disconnect()
        self._client.loop_stop()
        self._connected.clear()
        logger.info("MQTT control channel closed")

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    @property
    def retry_count(self) -> int:
        return self._retry_count

    # ========================================================================
    # paho Callbacks (network loop thread)
    # ========================================================================

    def _on_connect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            self._record_failure(f"connection refused: {reason_code}")
            return

        self._retry_count = 0
        self._connected.set()
        logger.info(f"Connected to MQTT broker {self.host}:{self.port}")

        self.subscribe(self.sub_topic)
        self.publish(self.pub_topic, presence_message(self.client_id, connected=True))
        self._first_attempt_done.set()

        for observer in self._connection_observers:
            try:
                observer.on_connected()
            except Exception as e:
                logger.error(f"Connection observer failed: {e}", exc_info=True)

    def _on_connect_fail(self, client: Any, userdata: Any) -> None:
        self._record_failure("connection attempt failed")

    def _on_disconnect(
        self, client: Any, userdata: Any, disconnect_flags: Any, reason_code: Any, properties: Any
    ) -> None:
        was_connected = self._connected.is_set()
        self._connected.clear()
        if self._closing or not was_connected:
            return

        reason = str(reason_code)
        logger.warning(f"Connection to MQTT broker lost: {reason}, reconnecting...")
        for observer in self._connection_observers:
            try:
                observer.on_disconnected(reason)
            except Exception as e:
                logger.error(f"Connection observer failed: {e}", exc_info=True)

    def _on_message(self, client: Any, userdata: Any, message: Any) -> None:
        payload = message.payload.decode("utf-8", errors="replace")
        logger.debug(f"Message on '{message.topic}': {payload!r}")
        try:
            self._observer.on_message(payload)
        except Exception as e:
            logger.error(f"Message observer failed: {e}", exc_info=True)

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _record_failure(self, reason: str) -> None:
        self._retry_count += 1
        self.failure_reason = reason
        logger.warning(f"MQTT {reason} (attempt {self._retry_count}/{self.max_retries})")
        self._first_attempt_done.set()

        if self._retry_count > self.max_retries and not self.failed.is_set():
            logger.error(f"MQTT reconnect budget exhausted after {self._retry_count} attempts")
            self.failed.set()

    def _publisher_loop(self) -> None:
        logger.info(f"MQTT publisher started on topic '{self.pub_topic}'")
        while True:
            try:
                message = self._outbound.pop(self._publisher_cancel)
            except Cancelled:
                break
            self.publish(self.pub_topic, message)
        logger.info("MQTT publisher stopped")

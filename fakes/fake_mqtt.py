"""In-process stand-in for paho.mqtt.client.Client.

Implements the subset of the paho client API used by MqttControlChannel and
lets tests drive broker-side events: message delivery, connection loss,
failed reconnect attempts and successful reconnects. Callbacks are invoked
synchronously on the calling thread with VERSION2 signatures.
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

import paho.mqtt.client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode

logger = logging.getLogger(__name__)


@dataclass
class PublishInfo:
    rc: int
    mid: int


class FakeMqttClient:
    """Fake broker connection recording everything the channel does."""

    def __init__(
        self,
        client_id: str = "",
        refuse_tcp: bool = False,
        connack_reason: str = "Success",
    ) -> None:
        """Initialize fake client.

        Args:
            client_id: Client id the channel asked for
            refuse_tcp: Make connect() raise ConnectionRefusedError
            connack_reason: CONNACK reason name for the initial connect
                            (e.g. "Not authorized" to refuse)
        """
        self.client_id = client_id
        self.refuse_tcp = refuse_tcp
        self.connack_reason = connack_reason

        self.on_connect = None
        self.on_connect_fail = None
        self.on_disconnect = None
        self.on_message = None

        self.will: Optional[Tuple[str, str, int, bool]] = None
        self.connect_args: Optional[Tuple[str, int, int]] = None
        self.subscriptions: List[Tuple[str, int]] = []
        self.published: List[Tuple[str, str, int]] = []
        self.connected = False
        self.loop_running = False
        self.disconnect_calls = 0

        self._mid = 0
        self._lock = threading.Lock()

    # ========================================================================
    # paho Client API
    # ========================================================================

    def will_set(self, topic: str, payload: str, qos: int = 0, retain: bool = False) -> None:
        self.will = (topic, payload, qos, retain)

    def connect(self, host: str, port: int = 1883, keepalive: int = 60) -> int:
        if self.refuse_tcp:
            raise ConnectionRefusedError(111, "Connection refused")
        self.connect_args = (host, port, keepalive)
        return mqtt.MQTT_ERR_SUCCESS

    def loop_start(self) -> int:
        self.loop_running = True
        self._connack(self.connack_reason)
        return mqtt.MQTT_ERR_SUCCESS

    def loop_stop(self) -> int:
        self.loop_running = False
        return mqtt.MQTT_ERR_SUCCESS

    def subscribe(self, topic: str, qos: int = 0) -> Tuple[int, int]:
        with self._lock:
            self.subscriptions.append((topic, qos))
            self._mid += 1
            return mqtt.MQTT_ERR_SUCCESS, self._mid

    def publish(self, topic: str, payload: str, qos: int = 0, retain: bool = False) -> PublishInfo:
        with self._lock:
            self.published.append((topic, payload, qos))
            self._mid += 1
            rc = mqtt.MQTT_ERR_SUCCESS if self.connected else mqtt.MQTT_ERR_NO_CONN
            return PublishInfo(rc=rc, mid=self._mid)

    def disconnect(self) -> int:
        self.disconnect_calls += 1
        self.connected = False
        if self.on_disconnect:
            reason = ReasonCode(PacketTypes.DISCONNECT, "Normal disconnection")
            self.on_disconnect(self, None, None, reason, None)
        return mqtt.MQTT_ERR_SUCCESS

    # ========================================================================
    # Test Drivers (broker side)
    # ========================================================================

    def deliver(self, topic: str, payload: str) -> None:
        """Deliver a message as if it arrived from the broker."""
        message = mqtt.MQTTMessage(mid=0, topic=topic.encode("utf-8"))
        message.payload = payload.encode("utf-8")
        if self.on_message:
            self.on_message(self, None, message)

    def drop_connection(self) -> None:
        """Simulate an unexpected connection loss."""
        self.connected = False
        if self.on_disconnect:
            reason = ReasonCode(PacketTypes.DISCONNECT, "Unspecified error")
            self.on_disconnect(self, None, None, reason, None)

    def fail_reconnect(self) -> None:
        """Simulate one failed reconnect attempt of the network loop."""
        if self.on_connect_fail:
            self.on_connect_fail(self, None)

    def reconnect(self) -> None:
        """Simulate a successful reconnect of the network loop."""
        self._connack("Success")

    def published_on(self, topic: str) -> List[str]:
        with self._lock:
            return [payload for t, payload, _ in self.published if t == topic]

    def _connack(self, reason_name: str) -> None:
        reason = ReasonCode(PacketTypes.CONNACK, reason_name)
        self.connected = not reason.is_failure
        if self.on_connect:
            self.on_connect(self, None, None, reason, None)

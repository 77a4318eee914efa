"""MQTT broker client abstraction."""
from __future__ import annotations

import logging
import ssl
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

import paho.mqtt.client as mqtt

from .errors import BrokerError

logger = logging.getLogger(__name__)

# Completion callback for subscribe/publish: receives None on success.
AckCallback = Callable[[BrokerError | None], None]


def _ignore_ack(error: BrokerError | None) -> None:
    pass


class BrokerClient(ABC):
    """Abstract interface for a single MQTT broker connection.

    Connection events are reported through the ``on_connect``,
    ``on_disconnect`` and ``on_message(topic, payload)`` callbacks given at
    construction. Reconnection after a lost connection is the client's job.
    """

    @abstractmethod
    def connect(self, server: str, port: int, keepalive: int = 60) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    @abstractmethod
    def publish(self, topic: str, payload: str | bytes, qos: int = 0, retain: bool = False,
                callback: AckCallback | None = None) -> bool: ...

    @abstractmethod
    def subscribe(self, topic: str, qos: int = 0, callback: AckCallback | None = None) -> None: ...

    @abstractmethod
    def unsubscribe(self, topic: str) -> None: ...

    @abstractmethod
    def loop_start(self) -> None: ...

    @abstractmethod
    def loop_stop(self) -> None: ...

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...


class PahoBrokerClient(BrokerClient):
    """Concrete implementation wrapping paho.mqtt.client.Client."""

    def __init__(
        self,
        client_id: str,
        username: str | None = None,
        password: str | None = None,
        tls_enabled: bool = False,
        tls_verify: bool = True,
        reconnect_min_delay: int = 1,
        reconnect_max_delay: int = 120,
        on_connect: Callable[[], Any] | None = None,
        on_connect_failed: Callable[[str], Any] | None = None,
        on_disconnect: Callable[[str], Any] | None = None,
        on_message: Callable[[str, bytes], Any] | None = None,
        name: str = "mqtt",
    ) -> None:
        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
        )
        self._name = name
        self._on_connect = on_connect
        self._on_connect_failed = on_connect_failed
        self._on_disconnect = on_disconnect
        self._on_message = on_message

        # mid -> (description, callback); acks may arrive before publish()/subscribe() return
        self._pending: dict[int, tuple[str, AckCallback]] = {}
        self._early_acks: dict[int, BrokerError | None] = {}
        self._lock = threading.RLock()

        if username:
            self._client.username_pw_set(username, password)

        if tls_enabled:
            if tls_verify:
                self._client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
                self._client.tls_insecure_set(False)
            else:
                self._client.tls_set(cert_reqs=ssl.CERT_NONE)
                self._client.tls_insecure_set(True)

        self._client.reconnect_delay_set(min_delay=reconnect_min_delay, max_delay=reconnect_max_delay)

        self._client.on_connect = self._handle_connect
        self._client.on_connect_fail = self._handle_connect_fail
        self._client.on_disconnect = self._handle_disconnect
        self._client.on_message = self._handle_message
        self._client.on_subscribe = self._handle_subscribe
        self._client.on_publish = self._handle_publish

        self._connected = False

    def connect(self, server: str, port: int, keepalive: int = 60) -> None:
        logger.debug(f"[{self._name}] Connecting to {server}:{port} (keepalive={keepalive}s)")
        # Non-blocking: the network loop performs the connect and later reconnects.
        self._client.connect_async(server, port, keepalive=keepalive)

    def disconnect(self) -> None:
        self._client.disconnect()

    def publish(self, topic: str, payload: str | bytes, qos: int = 0, retain: bool = False,
                callback: AckCallback | None = None) -> bool:
        with self._lock:
            result = self._client.publish(topic, payload, qos=qos, retain=retain)
            if result.rc != mqtt.MQTT_ERR_SUCCESS:
                error = BrokerError(f"Publish to {topic} failed: {mqtt.error_string(result.rc)}")
                if callback:
                    callback(error)
                return False
            self._track(result.mid, f"publish {topic}", callback or _ignore_ack)
            return True

    def subscribe(self, topic: str, qos: int = 0, callback: AckCallback | None = None) -> None:
        with self._lock:
            rc, mid = self._client.subscribe(topic, qos=qos)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                raise BrokerError(f"Subscribe to {topic} failed: {mqtt.error_string(rc)}")
            self._track(mid, f"subscribe {topic}", callback or _ignore_ack)

    def unsubscribe(self, topic: str) -> None:
        rc, _ = self._client.unsubscribe(topic)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerError(f"Unsubscribe from {topic} failed: {mqtt.error_string(rc)}")

    def loop_start(self) -> None:
        self._client.loop_start()

    def loop_stop(self) -> None:
        self._client.loop_stop()

    @property
    def is_connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _track(self, mid: int, description: str, callback: AckCallback) -> None:
        if mid in self._early_acks:
            callback(self._early_acks.pop(mid))
        else:
            self._pending[mid] = (description, callback)

    def _complete(self, mid: int, error: BrokerError | None) -> None:
        with self._lock:
            entry = self._pending.pop(mid, None)
            if entry is None:
                self._early_acks[mid] = error
                return
        _, callback = entry
        callback(error)

    def _handle_connect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if reason_code.is_failure:
            self._connected = False
            if self._on_connect_failed:
                self._on_connect_failed(str(reason_code))
            return
        self._connected = True
        if self._on_connect:
            self._on_connect()

    def _handle_connect_fail(self, client: Any, userdata: Any) -> None:
        self._connected = False
        logger.debug(f"[{self._name}] Connection attempt failed")
        if self._on_connect_failed:
            self._on_connect_failed("connection refused or unreachable")

    def _handle_disconnect(self, client: Any, userdata: Any, disconnect_flags: Any, reason_code: Any, properties: Any) -> None:
        self._connected = False
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            self._early_acks.clear()
        for description, callback in pending:
            callback(BrokerError(f"Connection lost before {description} was acknowledged"))
        if self._on_disconnect:
            self._on_disconnect(str(reason_code))

    def _handle_message(self, client: Any, userdata: Any, msg: Any) -> None:
        if self._on_message:
            self._on_message(msg.topic, msg.payload)

    def _handle_subscribe(self, client: Any, userdata: Any, mid: int, reason_code_list: Any, properties: Any) -> None:
        failures = [rc for rc in reason_code_list if rc.is_failure]
        error = BrokerError(f"Subscription refused by broker: {failures[0]}") if failures else None
        self._complete(mid, error)

    def _handle_publish(self, client: Any, userdata: Any, mid: int, reason_code: Any, properties: Any) -> None:
        error = BrokerError(f"Publish refused by broker: {reason_code}") if reason_code.is_failure else None
        self._complete(mid, error)

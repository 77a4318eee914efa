"""Per-device ThingsBoard session and its downlink bridging."""
from __future__ import annotations

import logging
from enum import Enum
from functools import partial
from typing import Any, Callable, TYPE_CHECKING

from .broker_client import BrokerClient, PahoBrokerClient
from .errors import BrokerError, DecodeError, EnqueueError
from .message_parser import build_downlink_payload
from .stats import DROP_BAD_JSON, DROP_UNKNOWN_TOPIC
from .topics import matches, sanitize_client_id

if TYPE_CHECKING:
    from .dispatcher import Dispatcher
    from .enqueue_client import EnqueueClient
    from .models import DeviceIdentifier
    from .settings import ThingsboardSettings
    from .stats import BridgeStats
    from .uplink_listener import UplinkListener

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., BrokerClient]


class SessionState(Enum):
    CONNECTING = "connecting"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class DeviceSession:
    """Owns one device's ThingsBoard MQTT session.

    Shared attribute updates and RPC requests received on the session are
    wrapped as ``{"topic", "data"}`` and enqueued as a ChirpStack downlink for
    the device's devEUI. The uplink path publishes through :meth:`publish`.

    All handlers run on the dispatcher thread. Once :meth:`close` has run,
    callbacks that were already queued are ignored.
    """

    def __init__(
        self,
        identifier: DeviceIdentifier,
        settings: ThingsboardSettings,
        dispatcher: Dispatcher,
        enqueue_client: EnqueueClient,
        uplink_listener: UplinkListener,
        stats: BridgeStats,
        client_factory: ClientFactory = PahoBrokerClient,
    ) -> None:
        self.identifier = identifier
        self.state = SessionState.CONNECTING
        self._settings = settings
        self._dispatcher = dispatcher
        self._enqueue_client = enqueue_client
        self._uplink_listener = uplink_listener
        self._stats = stats
        self._tag = identifier.access_token
        self._ever_connected = False

        self._client = client_factory(
            client_id=sanitize_client_id(identifier.dev_eui, settings.client_id_prefix),
            username=identifier.access_token,
            tls_enabled=settings.tls.enabled,
            tls_verify=settings.tls.verify,
            reconnect_min_delay=settings.reconnect_min_delay,
            reconnect_max_delay=settings.reconnect_max_delay,
            on_connect=dispatcher.wrap(self._on_connect),
            on_connect_failed=dispatcher.wrap(self._on_connect_failed),
            on_disconnect=dispatcher.wrap(self._on_disconnect),
            on_message=dispatcher.wrap(self._on_message),
            name=self._tag,
        )

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        settings = self._settings
        self._client.connect(settings.server, settings.port, keepalive=settings.keepalive)
        self._client.loop_start()
        logger.info(f"[{self._tag}] Connecting to Thingsboard MQTT broker at {settings.server}:{settings.port}")

    def close(self) -> None:
        """Detach all handlers and disconnect gracefully."""
        if self.closed:
            return
        self.state = SessionState.CLOSED
        self._uplink_listener.unsubscribe_device(self.identifier.dev_eui)
        try:
            self._client.disconnect()
            self._client.loop_stop()
        except Exception as e:
            logger.error(f"[{self._tag}] Error while disconnecting: {e}")
        logger.info(f"[{self._tag}] Connection closed")

    # ------------------------------------------------------------------
    # Uplink path
    # ------------------------------------------------------------------

    def publish(self, topic: str, data: str) -> bool:
        """Publish an uplink frame's data on the device's session."""
        if self.closed:
            logger.debug(f"[{self._tag}] Session closed - dropping publish to {topic}")
            return False
        return self._client.publish(topic, data, callback=self._dispatcher.wrap(partial(self._on_published, topic)))

    def _on_published(self, topic: str, error: BrokerError | None) -> None:
        if error is not None:
            self._stats.publish_failures += 1
            logger.error(f"[{self._tag}] Publish error: {error}")
            return
        self._stats.uplinks_forwarded += 1
        logger.info(f"[{self._tag}] Successfully published to {topic}")

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _on_connect(self) -> None:
        if self.closed:
            return
        if self._ever_connected:
            logger.info(f"[{self._tag}] Reconnected to Thingsboard MQTT broker")
        else:
            logger.info(f"[{self._tag}] Connected to Thingsboard MQTT broker")
        self._ever_connected = True
        self.state = SessionState.READY

        for topic in (self._settings.attribute_topic, self._settings.rpc_request_topic):
            try:
                self._client.subscribe(topic, callback=self._dispatcher.wrap(partial(self._on_subscribed, topic)))
            except BrokerError as e:
                logger.error(f"[{self._tag}] Failed to subscribe to {topic}: {e}")

        dev_eui = self.identifier.dev_eui
        try:
            self._uplink_listener.subscribe_device(dev_eui, partial(self._on_subscribed, self._uplink_listener.device_topic(dev_eui)))
        except BrokerError as e:
            logger.error(f"[{self._tag}] Failed to subscribe to uplinks for {dev_eui}: {e}")

    def _on_subscribed(self, topic: str, error: BrokerError | None) -> None:
        if self.closed:
            return
        if error is not None:
            logger.error(f"[{self._tag}] Failed to subscribe to {topic}: {error}")
        else:
            logger.info(f"[{self._tag}] Subscribed to {topic}")

    def _on_connect_failed(self, reason: str) -> None:
        if self.closed:
            return
        logger.error(f"[{self._tag}] Connection error: {reason}")

    def _on_disconnect(self, reason: str) -> None:
        if self.closed:
            return
        self.state = SessionState.RECONNECTING
        logger.info(f"[{self._tag}] Connection closed ({reason})")
        logger.info(f"[{self._tag}] Reconnecting...")

    # ------------------------------------------------------------------
    # Downlink path
    # ------------------------------------------------------------------

    def _on_message(self, topic: str, payload: bytes) -> None:
        if self.closed:
            return
        logger.debug(f"[{self._tag}] Received topic: {topic}")

        settings = self._settings
        if not (matches(topic, settings.attribute_topic) or matches(topic, settings.rpc_request_topic)):
            self._stats.record_drop(DROP_UNKNOWN_TOPIC)
            logger.error(f"[{self._tag}] Unknown topic: {topic}")
            return

        logger.debug(f"[{self._tag}] Received message: {payload!r}")
        try:
            downlink = build_downlink_payload(topic, payload)
        except DecodeError as e:
            self._stats.record_drop(DROP_BAD_JSON)
            logger.error(f"[{self._tag}] Dropping message: {e}")
            return

        self._enqueue_client.enqueue(
            self.identifier.dev_eui,
            downlink,
            self._dispatcher.wrap(partial(self._on_enqueued, topic)),
        )

    def _on_enqueued(self, topic: str, error: EnqueueError | None, item_id: Any) -> None:
        # May run after the device was deregistered; only logs and counts.
        if error is not None:
            self._stats.enqueue_failures += 1
            logger.error(f"[{self._tag}] Enqueue error: {error}")
            return
        self._stats.downlinks_enqueued += 1
        logger.info(f"[{self._tag}] Downlink enqueued with id: {item_id}")

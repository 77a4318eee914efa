"""Shared ChirpStack MQTT session routing uplinks to device sessions."""
from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING

from .broker_client import AckCallback, PahoBrokerClient
from .errors import BrokerError, DecodeError
from .message_parser import decode_uplink_frame, parse_uplink_event, uplink_dev_eui, uplink_fport
from .registry import normalize_dev_eui
from .session import ClientFactory
from .stats import (
    DROP_BAD_FRAME,
    DROP_BAD_JSON,
    DROP_FPORT_MISMATCH,
    DROP_UNKNOWN_DEVICE,
    DROP_UNKNOWN_TOPIC,
)
from .topics import device_uplink_topic, matches

if TYPE_CHECKING:
    from .dispatcher import Dispatcher
    from .registry import DeviceRegistry
    from .settings import ChirpstackSettings
    from .stats import BridgeStats

logger = logging.getLogger(__name__)

TAG = "CHIRPSTACK"


class UplinkListener:
    """One MQTT session subscribed to the uplink events of every device.

    Each uplink on the configured fPort is resolved to a registered device by
    its devEUI, its base64 inner frame is decoded, and the frame's data is
    published on that device's ThingsBoard session. Anything that cannot be
    routed is dropped; a bad message never affects the next one.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        settings: ChirpstackSettings,
        dispatcher: Dispatcher,
        stats: BridgeStats,
        client_factory: ClientFactory = PahoBrokerClient,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._dispatcher = dispatcher
        self._stats = stats
        self.connected = False
        # normalised devEUI -> (topic, subscribe callback)
        self._device_topics: dict[str, tuple[str, AckCallback | None]] = {}

        self._client = client_factory(
            client_id=settings.client_id,
            username=settings.username or None,
            password=settings.password or None,
            tls_enabled=settings.tls.enabled,
            tls_verify=settings.tls.verify,
            reconnect_min_delay=settings.reconnect_min_delay,
            reconnect_max_delay=settings.reconnect_max_delay,
            on_connect=dispatcher.wrap(self._on_connect),
            on_connect_failed=dispatcher.wrap(self._on_connect_failed),
            on_disconnect=dispatcher.wrap(self._on_disconnect),
            on_message=dispatcher.wrap(self.handle_message),
            name=TAG,
        )

    def start(self) -> None:
        settings = self._settings
        self._client.connect(settings.server, settings.port, keepalive=settings.keepalive)
        self._client.loop_start()
        logger.info(f"[{TAG}] Connecting to ChirpStack MQTT broker at {settings.server}:{settings.port}")

    def stop(self) -> None:
        try:
            self._client.disconnect()
            self._client.loop_stop()
        except Exception as e:
            logger.error(f"[{TAG}] Error while disconnecting: {e}")
        self.connected = False

    # ------------------------------------------------------------------
    # Per-device subscriptions
    # ------------------------------------------------------------------

    def device_topic(self, dev_eui: str) -> str:
        return device_uplink_topic(normalize_dev_eui(dev_eui), self._settings.uplink_topic)

    def subscribe_device(self, dev_eui: str, callback: AckCallback | None = None) -> None:
        """Make sure uplinks of ``dev_eui`` are received.

        With the wildcard subscription active the device is already covered
        and the callback reports success at once. Otherwise the device topic
        is subscribed now, or on the next connect if the session is down.
        Raises BrokerError if the broker client refuses the request.
        """
        topic = self.device_topic(dev_eui)
        self._device_topics[normalize_dev_eui(dev_eui)] = (topic, callback)

        if self._settings.subscribe_all:
            if callback:
                callback(None)
            return
        if self.connected:
            self._subscribe(topic, callback)

    def unsubscribe_device(self, dev_eui: str) -> None:
        entry = self._device_topics.pop(normalize_dev_eui(dev_eui), None)
        if entry is None or self._settings.subscribe_all or not self.connected:
            return
        topic, _ = entry
        try:
            self._client.unsubscribe(topic)
        except BrokerError as e:
            logger.warning(f"[{TAG}] {e}")

    def _subscribe(self, topic: str, callback: AckCallback | None) -> None:
        ack = callback or partial(self._on_subscribed, topic)
        self._client.subscribe(topic, callback=self._dispatcher.wrap(ack))

    def _on_subscribed(self, topic: str, error: BrokerError | None) -> None:
        if error is not None:
            logger.error(f"[{TAG}] Failed to subscribe to {topic}: {error}")
        else:
            logger.info(f"[{TAG}] Subscribed to {topic}")

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _on_connect(self) -> None:
        self.connected = True
        logger.info(f"[{TAG}] Connected to ChirpStack MQTT broker")

        if self._settings.subscribe_all:
            topics = [(self._settings.uplink_topic, None)]
        else:
            topics = list(self._device_topics.values())

        for topic, callback in topics:
            try:
                self._subscribe(topic, callback)
            except BrokerError as e:
                logger.error(f"[{TAG}] Failed to subscribe to {topic}: {e}")

    def _on_connect_failed(self, reason: str) -> None:
        logger.error(f"[{TAG}] Connection error: {reason}")

    def _on_disconnect(self, reason: str) -> None:
        self.connected = False
        logger.info(f"[{TAG}] Connection closed ({reason})")
        logger.info(f"[{TAG}] Reconnecting...")

    # ------------------------------------------------------------------
    # Uplink routing
    # ------------------------------------------------------------------

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Route one ChirpStack message to the owning device's session."""
        if not matches(topic, self._settings.uplink_topic):
            self._stats.record_drop(DROP_UNKNOWN_TOPIC)
            logger.error(f"[{TAG}] Unknown topic: {topic}")
            return

        try:
            event = parse_uplink_event(payload)
        except DecodeError as e:
            self._stats.record_drop(DROP_BAD_JSON)
            logger.error(f"[{TAG}] Dropping uplink on {topic}: {e}")
            return

        fport = uplink_fport(event)
        if fport != self._settings.uplink_fport:
            self._stats.record_drop(DROP_FPORT_MISMATCH)
            logger.debug(f"[{TAG}] Skipping fPort {event.get('fPort')}")
            return

        try:
            dev_eui = uplink_dev_eui(event)
        except DecodeError as e:
            self._stats.record_drop(DROP_BAD_FRAME)
            logger.error(f"[{TAG}] Dropping uplink on {topic}: {e}")
            return

        device = self._registry.find_by_dev_eui(dev_eui)
        if device is None:
            self._stats.record_drop(DROP_UNKNOWN_DEVICE)
            logger.debug(f"[{TAG}] No registered device for devEUI {dev_eui}")
            return

        tag = device.identifier.access_token
        logger.info(f"[{tag}] Uplink received from ChirpStack")

        try:
            frame = decode_uplink_frame(event)
        except DecodeError as e:
            self._stats.record_drop(DROP_BAD_FRAME)
            logger.error(f"[{tag}] Dropping uplink: {e}")
            return

        logger.debug(f"[{tag}] Parsed: {frame}")
        device.session.publish(frame.topic, frame.data)

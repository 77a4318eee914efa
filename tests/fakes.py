"""Shared fake implementations for bridge tests."""
from __future__ import annotations

import base64
import json
from typing import Any

from lorabridge.broker_client import AckCallback, BrokerClient
from lorabridge.dispatcher import Dispatcher
from lorabridge.enqueue_client import EnqueueCallback, EnqueueClient
from lorabridge.errors import BrokerError, EnqueueError
from lorabridge.settings import BridgeSettings


class FakeBrokerClient(BrokerClient):
    """Records all publish/subscribe calls and lets tests fire transport events.

    Accepts the same keyword arguments as PahoBrokerClient so it can be used
    as a client factory.
    """

    def __init__(
        self,
        client_id: str = "fake",
        username: str | None = None,
        password: str | None = None,
        on_connect: Any = None,
        on_connect_failed: Any = None,
        on_disconnect: Any = None,
        on_message: Any = None,
        name: str = "fake",
        **options: Any,
    ) -> None:
        self.client_id = client_id
        self.username = username
        self.password = password
        self.name = name
        self.options = options
        self.on_connect = on_connect
        self.on_connect_failed = on_connect_failed
        self.on_disconnect = on_disconnect
        self.on_message = on_message

        self.published: list[tuple[str, str | bytes, int, bool]] = []
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self.connect_calls: list[tuple[str, int, int]] = []
        self.disconnect_calls: int = 0
        self.loop_running = False
        self._connected = False

        # Behaviour switches
        self.auto_ack = True
        self.publish_result = True
        self.refuse_topics: set[str] = set()
        self.nack_topics: set[str] = set()
        self.pending_acks: list[tuple[AckCallback, BrokerError | None]] = []

    def connect(self, server: str, port: int, keepalive: int = 60) -> None:
        self.connect_calls.append((server, port, keepalive))

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    def publish(self, topic: str, payload: str | bytes, qos: int = 0, retain: bool = False,
                callback: AckCallback | None = None) -> bool:
        self.published.append((topic, payload, qos, retain))
        if callback:
            error = None if self.publish_result else BrokerError(f"Publish to {topic} failed")
            self._ack(callback, error)
        return self.publish_result

    def subscribe(self, topic: str, qos: int = 0, callback: AckCallback | None = None) -> None:
        if topic in self.refuse_topics:
            raise BrokerError(f"Subscribe to {topic} failed: refused")
        self.subscribed.append(topic)
        if callback:
            error = BrokerError("Subscription refused by broker") if topic in self.nack_topics else None
            self._ack(callback, error)

    def unsubscribe(self, topic: str) -> None:
        self.unsubscribed.append(topic)

    def loop_start(self) -> None:
        self.loop_running = True

    def loop_stop(self) -> None:
        self.loop_running = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _ack(self, callback: AckCallback, error: BrokerError | None) -> None:
        if self.auto_ack:
            callback(error)
        else:
            self.pending_acks.append((callback, error))

    # Event injection

    def simulate_connect(self) -> None:
        self._connected = True
        self.on_connect()

    def simulate_connect_failed(self, reason: str = "refused") -> None:
        self.on_connect_failed(reason)

    def simulate_disconnect(self, reason: str = "Unspecified error") -> None:
        self._connected = False
        self.on_disconnect(reason)

    def deliver(self, topic: str, payload: str | bytes) -> None:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        self.on_message(topic, payload)


class FakeClientFactory:
    """Client factory that keeps every FakeBrokerClient it creates."""

    def __init__(self) -> None:
        self.clients: list[FakeBrokerClient] = []

    def __call__(self, **kwargs: Any) -> FakeBrokerClient:
        client = FakeBrokerClient(**kwargs)
        self.clients.append(client)
        return client

    def by_username(self, username: str) -> list[FakeBrokerClient]:
        return [c for c in self.clients if c.username == username]


class FakeEnqueueClient(EnqueueClient):
    """Records enqueue calls; answers with a fixed id or a fixed error."""

    def __init__(self, *, item_id: str = "item-1", error: EnqueueError | None = None, auto_reply: bool = True) -> None:
        self.item_id = item_id
        self.error = error
        self.auto_reply = auto_reply
        self.calls: list[tuple[str, bytes]] = []
        self.callbacks: list[EnqueueCallback] = []
        self.closed = False

    def enqueue(self, dev_eui: str, payload: bytes, callback: EnqueueCallback) -> None:
        self.calls.append((dev_eui, payload))
        if self.auto_reply:
            self.reply(callback)
        else:
            self.callbacks.append(callback)

    def reply(self, callback: EnqueueCallback) -> None:
        if self.error is not None:
            callback(self.error, None)
        else:
            callback(None, self.item_id)

    def close(self) -> None:
        self.closed = True


def drain(dispatcher: Dispatcher) -> int:
    """Run queued dispatcher tasks until none are left."""
    total = 0
    while True:
        ran = dispatcher.run_pending()
        if ran == 0:
            return total
        total += ran


def make_config(**overrides: Any) -> dict[str, Any]:
    """Factory for minimal valid TOML config dict."""
    config: dict[str, Any] = {
        'general': {'log_level': 'DEBUG'},
        'http': {'host': '127.0.0.1', 'port': 3000},
        'thingsboard': {
            'server': 'tb.local',
            'port': 1883,
            'client_id_prefix': 'tb_',
        },
        'chirpstack': {
            'server': 'cs.local',
            'port': 1883,
            'api_server': 'cs.local:8080',
            'api_key': 'test-key',
            'uplink_fport': 105,
            'downlink_fport': 15,
            'subscribe_all': True,
        },
        'stats': {'interval': 300},
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and key in config and isinstance(config[key], dict):
            config[key].update(value)
        else:
            config[key] = value
    return config


def make_settings(**overrides: Any) -> BridgeSettings:
    return BridgeSettings.from_config(make_config(**overrides), environ={})


def make_uplink_event(dev_eui: str, frame: dict[str, Any] | str, fport: Any = 105) -> str:
    """Build a ChirpStack uplink event JSON with a base64 inner frame."""
    raw = frame if isinstance(frame, str) else json.dumps(frame)
    return json.dumps({
        "deviceInfo": {"devEui": dev_eui, "applicationId": "app-1"},
        "fPort": fport,
        "data": base64.b64encode(raw.encode("utf-8")).decode("ascii"),
    })

"""ChirpStack to ThingsBoard bridge package."""
from __future__ import annotations

from typing import Any

from .dispatcher import Dispatcher
from .enqueue_client import ChirpstackEnqueueClient, EnqueueClient
from .models import DeviceIdentifier
from .registry import DeviceRegistry
from .session import ClientFactory, DeviceSession
from .state import BridgeState
from .broker_client import PahoBrokerClient
from .uplink_listener import UplinkListener
from . import runner


class LoraBridge:
    """Facade: creates BridgeState, wires registry, sessions and the uplink listener."""

    def __init__(
        self,
        config: dict[str, Any],
        debug: bool = False,
        version: str = "0.0.0",
        enqueue_client: EnqueueClient | None = None,
        client_factory: ClientFactory = PahoBrokerClient,
    ) -> None:
        self.state = BridgeState(config, debug)
        self.state.client_version = runner.load_client_version(version)
        self._client_factory = client_factory

        settings = self.state.settings
        self.state.dispatcher = Dispatcher()
        self.state.enqueue_client = enqueue_client or ChirpstackEnqueueClient(settings.chirpstack)
        self.state.registry = DeviceRegistry(self._create_session)
        self.state.uplink_listener = UplinkListener(
            self.state.registry,
            settings.chirpstack,
            self.state.dispatcher,
            self.state.stats,
            client_factory=client_factory,
        )

    @property
    def registry(self) -> DeviceRegistry:
        return self.state.registry

    def _create_session(self, identifier: DeviceIdentifier) -> DeviceSession:
        state = self.state
        return DeviceSession(
            identifier,
            state.settings.thingsboard,
            state.dispatcher,
            state.enqueue_client,
            state.uplink_listener,
            state.stats,
            client_factory=self._client_factory,
        )

    def run(self) -> None:
        runner.run(self.state)

    def handle_signal(self, signum: int, frame: Any) -> None:
        runner.handle_signal(self.state, signum, frame)

"""Shared state container for the ChirpStack/ThingsBoard bridge."""
from __future__ import annotations

import logging
from typing import Any, TYPE_CHECKING

from .settings import BridgeSettings
from .stats import BridgeStats

if TYPE_CHECKING:
    from .dispatcher import Dispatcher
    from .enqueue_client import EnqueueClient
    from .registry import DeviceRegistry
    from .uplink_listener import UplinkListener

logger = logging.getLogger(__name__)


class BridgeState:
    """Everything the runner needs: settings, collaborators and lifecycle flags."""

    def __init__(self, config: dict[str, Any], debug: bool = False) -> None:
        self.config = config
        self.debug = debug
        self.settings = BridgeSettings.from_config(config)
        self.client_version: str = ""

        # Set by LoraBridge
        self.dispatcher: Dispatcher | None = None
        self.enqueue_client: EnqueueClient | None = None
        self.registry: DeviceRegistry | None = None
        self.uplink_listener: UplinkListener | None = None

        # HTTP server (set during startup)
        self.http_server: Any = None

        self.stats = BridgeStats()

        # Lifecycle
        self.should_exit: bool = False

        logger.info("Configuration loaded from TOML")

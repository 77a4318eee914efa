"""Background thread loop for periodic stats logging."""
from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .session import SessionState

if TYPE_CHECKING:
    from .state import BridgeState

logger = logging.getLogger(__name__)


def format_uptime(seconds: int) -> str:
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def log_stats(state: BridgeState) -> None:
    """Log a one-line service summary. Runs on the dispatcher thread."""
    snap = state.stats.snapshot()
    registry = state.registry
    devices = registry.list_devices() if registry is not None else []
    ready = sum(1 for device in devices if device.session.state is SessionState.READY)
    listener = state.uplink_listener
    chirpstack = "up" if listener is not None and listener.connected else "down"

    drops = snap['drops']
    drop_str = ", ".join(f"{reason}:{count}" for reason, count in sorted(drops.items())) if drops else "none"

    logger.info(
        f"[STATS] Uptime: {format_uptime(snap['uptime'])} | "
        f"Devices: {ready}/{len(devices)} ready | "
        f"ChirpStack: {chirpstack} | "
        f"Uplinks: {snap['uplinks_forwarded']} | "
        f"Downlinks: {snap['downlinks_enqueued']} | "
        f"Failures: enqueue {snap['enqueue_failures']}, publish {snap['publish_failures']} | "
        f"Drops: {drop_str}"
    )


def stats_logging_loop(state: BridgeState, stop_event: threading.Event) -> None:
    """Post a stats summary to the dispatcher every ``stats.interval`` seconds."""
    interval = state.settings.stats_interval

    while not state.should_exit:
        if stop_event.wait(interval):
            break
        if state.should_exit:
            break
        if state.dispatcher is not None:
            state.dispatcher.post(log_stats, state)

"""Main run loop and startup orchestration."""
from __future__ import annotations

import json
import logging
import os
import threading
from time import sleep
from typing import Any, TYPE_CHECKING

from werkzeug.serving import make_server

from config_loader import log_config_sources

from . import background
from .http_api import create_app

if TYPE_CHECKING:
    from .state import BridgeState

logger = logging.getLogger(__name__)


def load_client_version(version: str) -> str:
    """Load client version from provided version string, optionally append git hash."""
    try:
        script_dir = os.path.dirname(os.path.abspath(__file__))
        parent_dir = os.path.dirname(script_dir)  # lorabridge/ → project root
        version_file = os.path.join(parent_dir, '.version_info')
        if os.path.exists(version_file):
            with open(version_file, 'r') as f:
                version_data = json.load(f)
                git_hash = version_data.get('git_hash', '')
                if git_hash and git_hash != 'unknown':
                    return f"cstotb/{version}-{git_hash}"
    except Exception as e:
        logger.debug(f"Could not load version info: {e}")
    return f"cstotb/{version}"


def handle_signal(state: BridgeState, signum: int, frame: Any) -> None:
    """Signal handler to trigger graceful shutdown."""
    logger.info(f"Received signal {signum}, shutting down...")
    state.should_exit = True


def start_http_server(state: BridgeState) -> threading.Thread:
    """Serve the control plane on a background thread."""
    http = state.settings.http
    app = create_app(state.registry, state.dispatcher)
    state.http_server = make_server(http.host, http.port, app, threaded=True)
    thread = threading.Thread(target=state.http_server.serve_forever, daemon=True, name="HTTP-Server")
    thread.start()
    logger.info(f"[HTTP] Server started listening on {http.host}:{http.port}")
    return thread


def run(state: BridgeState) -> None:
    """Main orchestration: start dispatcher, ChirpStack listener, HTTP server, wait for exit."""
    log_config_sources(state.config)
    logger.info(f"Client version: {state.client_version}")

    state.dispatcher.start()
    state.uplink_listener.start()

    try:
        start_http_server(state)
    except OSError as e:
        logger.error(f"[HTTP] Failed to start server: {e}")
        state.should_exit = True

    stop_event = threading.Event()
    stats_thread = threading.Thread(
        target=background.stats_logging_loop,
        args=(state, stop_event),
        daemon=True,
        name="Stats-Logger"
    )
    stats_thread.start()
    logger.debug("[STATS] Started statistics logging thread")

    try:
        while not state.should_exit:
            sleep(0.5)
    except KeyboardInterrupt:
        logger.info("\nExiting...")
    except Exception as e:
        logger.exception(f"Unhandled error in main loop: {e}")
    finally:
        stop_event.set()
        _cleanup(state, stats_thread)


def _cleanup(state: BridgeState, stats_thread: threading.Thread) -> None:
    """Stop the HTTP server, close all sessions and the gRPC channel."""
    logger.info("Cleaning up...")
    state.should_exit = True

    if state.http_server is not None:
        state.http_server.shutdown()
        state.http_server = None

    if stats_thread.is_alive():
        stats_thread.join(timeout=5)

    # Sessions are closed on the dispatcher thread so no handler runs concurrently
    try:
        state.dispatcher.call(state.registry.close_all)
    except Exception as e:
        logger.error(f"Failed to close device sessions: {e}")

    state.uplink_listener.stop()
    state.dispatcher.stop()
    state.enqueue_client.close()

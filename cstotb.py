#!/usr/bin/env python3
"""ChirpStack to ThingsBoard bridge entry point."""
from __future__ import annotations

__version__ = "1.0.0"

import argparse
import logging
import signal

from config_loader import load_config
from lorabridge import LoraBridge

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Bridge ThingsBoard devices to a ChirpStack LoRaWAN network server")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    parser.add_argument("--config", action="append", default=None, help="Path to TOML config file (can be specified multiple times; overrides default config loading)")
    args: argparse.Namespace = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config)

    # Reconfigure log level from config
    log_level_str = config.get('general', {}).get('log_level', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    if args.debug:
        log_level = logging.DEBUG
    logging.getLogger().setLevel(log_level)

    bridge = LoraBridge(config, debug=args.debug, version=__version__)

    # Ensure signals from systemd (SIGTERM) and ctrl-c (SIGINT) are handled
    signal.signal(signal.SIGTERM, bridge.handle_signal)
    signal.signal(signal.SIGINT, bridge.handle_signal)

    bridge.run()


if __name__ == "__main__":
    main()

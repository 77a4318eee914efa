"""Configuration loading: TOML parsing and overlay merging."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path('/etc/cstotb/config.toml')
DEFAULT_CONFIG_DIR = Path('/etc/cstotb/config.d')

# Keys whose values never appear in log output
SECRET_KEYS = frozenset({'api_key', 'password'})


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dicts. override values take precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_toml(path: str | Path) -> dict[str, Any]:
    """Load a single TOML file and return its contents as a dict."""
    with open(path, 'rb') as f:
        return tomllib.load(f)


def _load_config_dir(config: dict[str, Any], config_d: Path) -> dict[str, Any]:
    """Overlay all *.toml files from a config.d directory in alphabetical order."""
    if not config_d.is_dir():
        return config
    for override_file in sorted(config_d.glob('*.toml')):
        logger.info(f"Loading config override: {override_file}")
        config = deep_merge(config, _load_toml(override_file))
    return config


def load_config(
    config_paths: list[str] | None = None,
    base_path: Path = DEFAULT_CONFIG_PATH,
    config_d: Path = DEFAULT_CONFIG_DIR,
) -> dict[str, Any]:
    """Load and merge TOML configuration.

    When no --config paths are provided (default):
      1. Load base config from /etc/cstotb/config.toml
      2. Overlay files from /etc/cstotb/config.d/*.toml (alphabetical)

    When --config paths are provided:
      Load only those files in order, each overlaying the previous.
      The default path and config.d directory are skipped.

    Missing files are not an error: every setting has a default.
    """
    if config_paths:
        config: dict[str, Any] = {}
        for path in config_paths:
            if not os.path.exists(path):
                logger.error(f"Config file not found: {path}")
                continue
            logger.info(f"Loading config: {path}")
            config = deep_merge(config, _load_toml(path))
        return config

    config = {}
    if base_path.exists():
        config = _load_toml(base_path)
        logger.info(f"Loaded base config from {base_path}")
    else:
        logger.warning(f"Base config not found at {base_path}, using defaults")

    return _load_config_dir(config, config_d)


def redact(config: dict[str, Any]) -> dict[str, Any]:
    """Copy of config with secret values masked."""
    result: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, dict):
            result[key] = redact(value)
        elif key in SECRET_KEYS and value:
            result[key] = '***'
        else:
            result[key] = value
    return result


def log_config_sources(config: dict[str, Any]) -> None:
    """Log configuration summary."""
    http_cfg = config.get('http', {})
    tb_cfg = config.get('thingsboard', {})
    cs_cfg = config.get('chirpstack', {})

    logger.info(f"HTTP: {http_cfg.get('host', '0.0.0.0')}:{http_cfg.get('port', 3000)}")
    logger.info(f"Thingsboard MQTT: {tb_cfg.get('server', 'localhost')}:{tb_cfg.get('port', 1883)}")
    logger.info(f"ChirpStack MQTT: {cs_cfg.get('server', 'localhost')}:{cs_cfg.get('port', 1883)}")
    logger.info(f"ChirpStack API: {cs_cfg.get('api_server', 'localhost:8080')}")
    logger.info(f"fPorts: uplink={cs_cfg.get('uplink_fport', 105)} downlink={cs_cfg.get('downlink_fport', 15)}")
    logger.debug(f"Effective config: {redact(config)}")

"""Immutable bridge settings built once from the merged TOML config."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping

logger = logging.getLogger(__name__)

API_KEY_ENV = "CHIRPSTACK_API_KEY"
HTTP_PORT_ENV = "PORT"


@dataclass(frozen=True)
class TlsSettings:
    enabled: bool = False
    verify: bool = True

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> TlsSettings:
        return cls(
            enabled=bool(cfg.get('enabled', False)),
            verify=bool(cfg.get('verify', True)),
        )


@dataclass(frozen=True)
class HttpSettings:
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass(frozen=True)
class ThingsboardSettings:
    """Per-device MQTT sessions to ThingsBoard."""

    server: str = "localhost"
    port: int = 1883
    keepalive: int = 60
    client_id_prefix: str = "tb_"
    attribute_topic: str = "v1/devices/me/attributes"
    rpc_request_topic: str = "v1/devices/me/rpc/request/+"
    reconnect_min_delay: int = 1
    reconnect_max_delay: int = 120
    tls: TlsSettings = TlsSettings()


@dataclass(frozen=True)
class ChirpstackSettings:
    """Shared ChirpStack MQTT integration session and gRPC API."""

    server: str = "localhost"
    port: int = 1883
    keepalive: int = 60
    client_id: str = "cstotb_uplink"
    username: str = ""
    password: str = ""
    uplink_topic: str = "application/+/device/+/event/up"
    subscribe_all: bool = True
    uplink_fport: int = 105
    downlink_fport: int = 15
    api_server: str = "localhost:8080"
    api_tls: bool = False
    api_key: str = ""
    enqueue_timeout: float = 10.0
    reconnect_min_delay: int = 1
    reconnect_max_delay: int = 120
    tls: TlsSettings = TlsSettings()

    def __repr__(self) -> str:
        # Keep credentials out of log output
        return (f"ChirpstackSettings(server={self.server!r}, port={self.port}, "
                f"api_server={self.api_server!r}, uplink_fport={self.uplink_fport}, "
                f"downlink_fport={self.downlink_fport})")


@dataclass(frozen=True)
class BridgeSettings:
    log_level: str = "INFO"
    http: HttpSettings = HttpSettings()
    thingsboard: ThingsboardSettings = ThingsboardSettings()
    chirpstack: ChirpstackSettings = ChirpstackSettings()
    stats_interval: int = 300

    @classmethod
    def from_config(cls, config: Mapping[str, Any], environ: Mapping[str, str] | None = None) -> BridgeSettings:
        """Build settings from a merged config dict, applying environment overrides."""
        if environ is None:
            environ = os.environ

        general = config.get('general', {})
        http_cfg = config.get('http', {})
        tb_cfg = config.get('thingsboard', {})
        cs_cfg = config.get('chirpstack', {})
        stats_cfg = config.get('stats', {})

        http_port = int(http_cfg.get('port', HttpSettings.port))
        if environ.get(HTTP_PORT_ENV):
            http_port = int(environ[HTTP_PORT_ENV])

        api_key = environ.get(API_KEY_ENV) or cs_cfg.get('api_key', '')
        if not api_key:
            logger.warning(f"No ChirpStack API key configured (set {API_KEY_ENV} or chirpstack.api_key)")

        tb_defaults = ThingsboardSettings()
        thingsboard = ThingsboardSettings(
            server=tb_cfg.get('server', tb_defaults.server),
            port=int(tb_cfg.get('port', tb_defaults.port)),
            keepalive=int(tb_cfg.get('keepalive', tb_defaults.keepalive)),
            client_id_prefix=tb_cfg.get('client_id_prefix', tb_defaults.client_id_prefix),
            attribute_topic=tb_cfg.get('attribute_topic', tb_defaults.attribute_topic),
            rpc_request_topic=tb_cfg.get('rpc_request_topic', tb_defaults.rpc_request_topic),
            reconnect_min_delay=int(tb_cfg.get('reconnect_min_delay', tb_defaults.reconnect_min_delay)),
            reconnect_max_delay=int(tb_cfg.get('reconnect_max_delay', tb_defaults.reconnect_max_delay)),
            tls=TlsSettings.from_config(tb_cfg.get('tls', {})),
        )

        cs_defaults = ChirpstackSettings()
        chirpstack = ChirpstackSettings(
            server=cs_cfg.get('server', cs_defaults.server),
            port=int(cs_cfg.get('port', cs_defaults.port)),
            keepalive=int(cs_cfg.get('keepalive', cs_defaults.keepalive)),
            client_id=cs_cfg.get('client_id', cs_defaults.client_id),
            username=cs_cfg.get('username', cs_defaults.username),
            password=cs_cfg.get('password', cs_defaults.password),
            uplink_topic=cs_cfg.get('uplink_topic', cs_defaults.uplink_topic),
            subscribe_all=bool(cs_cfg.get('subscribe_all', cs_defaults.subscribe_all)),
            uplink_fport=int(cs_cfg.get('uplink_fport', cs_defaults.uplink_fport)),
            downlink_fport=int(cs_cfg.get('downlink_fport', cs_defaults.downlink_fport)),
            api_server=cs_cfg.get('api_server', cs_defaults.api_server),
            api_tls=bool(cs_cfg.get('api_tls', cs_defaults.api_tls)),
            api_key=api_key,
            enqueue_timeout=float(cs_cfg.get('enqueue_timeout', cs_defaults.enqueue_timeout)),
            reconnect_min_delay=int(cs_cfg.get('reconnect_min_delay', cs_defaults.reconnect_min_delay)),
            reconnect_max_delay=int(cs_cfg.get('reconnect_max_delay', cs_defaults.reconnect_max_delay)),
            tls=TlsSettings.from_config(cs_cfg.get('tls', {})),
        )

        return cls(
            log_level=str(general.get('log_level', 'INFO')).upper(),
            http=HttpSettings(host=http_cfg.get('host', HttpSettings.host), port=http_port),
            thingsboard=thingsboard,
            chirpstack=chirpstack,
            stats_interval=int(stats_cfg.get('interval', 300)),
        )

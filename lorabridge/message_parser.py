"""Payload translation between ThingsBoard messages and ChirpStack frames."""
from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from .errors import DecodeError
from .models import UplinkFrame


def _compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _load_json(raw: bytes | str, what: str) -> Any:
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise DecodeError(f"Invalid JSON in {what}: {e}") from e


def build_downlink_payload(topic: str, payload: bytes | str) -> bytes:
    """Wrap a ThingsBoard message as the ``{"topic", "data"}`` downlink frame.

    The payload must be JSON; it is embedded as structured data, not as a
    string, so the device sees the original object.
    """
    data = _load_json(payload, f"message on {topic}")
    return _compact({"topic": topic, "data": data}).encode("utf-8")


def parse_uplink_event(payload: bytes | str) -> dict[str, Any]:
    """Parse the outer JSON of a ChirpStack uplink event."""
    event = _load_json(payload, "uplink event")
    if not isinstance(event, dict):
        raise DecodeError(f"Uplink event is not an object: {type(event).__name__}")
    return event


def uplink_fport(event: dict[str, Any]) -> int | None:
    """Return the event's fPort, or None when it is absent or not a number."""
    fport = event.get("fPort")
    if isinstance(fport, bool):
        return None
    if isinstance(fport, int):
        return fport
    if isinstance(fport, str) and fport.strip().isdigit():
        return int(fport)
    return None


def uplink_dev_eui(event: dict[str, Any]) -> str:
    device_info = event.get("deviceInfo")
    if not isinstance(device_info, dict):
        raise DecodeError("Uplink event has no deviceInfo")
    dev_eui = device_info.get("devEui")
    if not isinstance(dev_eui, str) or not dev_eui:
        raise DecodeError("Uplink event has no deviceInfo.devEui")
    return dev_eui


def decode_uplink_frame(event: dict[str, Any]) -> UplinkFrame:
    """Base64-decode the event's ``data`` field and parse the inner frame."""
    encoded = event.get("data")
    if not isinstance(encoded, str) or not encoded:
        raise DecodeError("Uplink event has no data field")

    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 uplink data: {e}") from e

    frame = _load_json(decoded, "uplink frame")
    if not isinstance(frame, dict):
        raise DecodeError(f"Uplink frame is not an object: {decoded}")

    topic = frame.get("topic")
    if not isinstance(topic, str) or not topic:
        raise DecodeError(f"Uplink frame has no topic: {decoded}")
    if "data" not in frame:
        raise DecodeError(f"Uplink frame has no data: {decoded}")

    data = frame["data"]
    if not isinstance(data, str):
        data = _compact(data)
    return UplinkFrame(topic=topic, data=data)

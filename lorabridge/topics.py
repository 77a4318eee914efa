"""Topic matching and topic/client-id helpers."""
from __future__ import annotations

import re

SINGLE_LEVEL_WILDCARD = "+"


def matches(topic: str, pattern: str) -> bool:
    """Return True if ``topic`` matches ``pattern``.

    A ``+`` segment matches exactly one non-empty topic segment, every other
    segment must match literally and both must have the same number of
    segments. Multi-level ``#`` wildcards are not supported.
    """
    topic_parts = topic.split("/")
    pattern_parts = pattern.split("/")
    if len(topic_parts) != len(pattern_parts):
        return False

    for topic_part, pattern_part in zip(topic_parts, pattern_parts):
        if pattern_part == SINGLE_LEVEL_WILDCARD:
            if not topic_part:
                return False
        elif topic_part != pattern_part:
            return False
    return True


def device_uplink_topic(dev_eui: str, uplink_pattern: str = "application/+/device/+/event/up") -> str:
    """Scope the uplink pattern to one device by filling its device segment."""
    parts = uplink_pattern.split("/")
    try:
        idx = parts.index("device") + 1
    except ValueError:
        return uplink_pattern
    if idx < len(parts):
        parts[idx] = dev_eui
    return "/".join(parts)


def sanitize_client_id(name: str, prefix: str = "tb_") -> str:
    """Convert a name to a valid MQTT client ID."""
    client_id = prefix + name.replace(" ", "_")
    client_id = re.sub(r"[^a-zA-Z0-9_-]", "", client_id)
    return client_id[:23]

"""Forwarding and drop counters."""
from __future__ import annotations

import time
from collections import Counter
from typing import Any

# Reasons an inbound message can be dropped without being forwarded
DROP_BAD_JSON = "bad_json"
DROP_FPORT_MISMATCH = "fport_mismatch"
DROP_UNKNOWN_DEVICE = "unknown_device"
DROP_BAD_FRAME = "bad_frame"
DROP_UNKNOWN_TOPIC = "unknown_topic"


class BridgeStats:
    """Counters updated from the dispatcher thread only."""

    def __init__(self) -> None:
        self.start_time = time.time()
        self.uplinks_forwarded = 0
        self.downlinks_enqueued = 0
        self.enqueue_failures = 0
        self.publish_failures = 0
        self.drops: Counter[str] = Counter()

    def record_drop(self, reason: str) -> None:
        self.drops[reason] += 1

    def snapshot(self) -> dict[str, Any]:
        return {
            'uptime': int(time.time() - self.start_time),
            'uplinks_forwarded': self.uplinks_forwarded,
            'downlinks_enqueued': self.downlinks_enqueued,
            'enqueue_failures': self.enqueue_failures,
            'publish_failures': self.publish_failures,
            'drops': dict(self.drops),
        }

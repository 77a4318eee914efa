"""Value types shared by the registry, sessions and the uplink listener."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from .session import DeviceSession


@dataclass(frozen=True)
class DeviceIdentifier:
    """ThingsBoard access token paired with the LoRaWAN devEUI of one device."""

    access_token: str
    dev_eui: str

    def __post_init__(self) -> None:
        if not isinstance(self.access_token, str) or not self.access_token.strip():
            raise ValueError("accessToken is required")
        if not isinstance(self.dev_eui, str) or not self.dev_eui.strip():
            raise ValueError("devEUI is required")

    def to_dict(self) -> dict[str, str]:
        return {"accessToken": self.access_token, "devEUI": self.dev_eui}


@dataclass
class Device:
    """A registered device and its live ThingsBoard session."""

    identifier: DeviceIdentifier
    session: DeviceSession

    def to_dict(self) -> dict[str, Any]:
        return {
            "deviceIdentifier": self.identifier.to_dict(),
            "state": self.session.state.value,
        }


@dataclass(frozen=True)
class UplinkFrame:
    """Inner frame carried in a ChirpStack uplink: where to publish, and what."""

    topic: str
    data: str

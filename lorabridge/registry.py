"""In-memory table of registered devices."""
from __future__ import annotations

import logging
from typing import Callable, TYPE_CHECKING

from .errors import DeviceNotFound, DuplicateDevice
from .models import Device, DeviceIdentifier

if TYPE_CHECKING:
    from .session import DeviceSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[DeviceIdentifier], "DeviceSession"]


def normalize_dev_eui(dev_eui: str) -> str:
    return dev_eui.strip().lower()


class DeviceRegistry:
    """Registered devices keyed by access token and by devEUI.

    The registry owns every device session: it creates the session on
    :meth:`register` and closes it on :meth:`deregister`. Both keys are
    unique. Listing preserves registration order.

    Not thread-safe; call it from the dispatcher thread only.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory
        self._by_token: dict[str, Device] = {}
        self._by_dev_eui: dict[str, Device] = {}

    def __len__(self) -> int:
        return len(self._by_token)

    def __contains__(self, access_token: object) -> bool:
        return access_token in self._by_token

    def list_devices(self) -> list[Device]:
        """Snapshot of registered devices in registration order."""
        return list(self._by_token.values())

    def register(self, identifier: DeviceIdentifier) -> Device:
        """Create and start a session for ``identifier`` and add it to the table."""
        if identifier.access_token in self._by_token:
            raise DuplicateDevice("access token", identifier.access_token)
        eui_key = normalize_dev_eui(identifier.dev_eui)
        if eui_key in self._by_dev_eui:
            raise DuplicateDevice("devEUI", identifier.dev_eui)

        session = self._session_factory(identifier)
        device = Device(identifier=identifier, session=session)
        self._by_token[identifier.access_token] = device
        self._by_dev_eui[eui_key] = device

        try:
            session.start()
        except Exception:
            self._remove(device)
            session.close()
            raise

        logger.info(f"[{identifier.access_token}] Registered device {identifier.dev_eui}")
        return device

    def deregister(self, access_token: str) -> Device:
        """Close the device's session and remove it. Raises DeviceNotFound."""
        device = self._by_token.get(access_token)
        if device is None:
            raise DeviceNotFound(access_token)

        self._remove(device)
        device.session.close()
        logger.info(f"[{access_token}] Deregistered device {device.identifier.dev_eui}")
        return device

    def find_by_dev_eui(self, dev_eui: str) -> Device | None:
        return self._by_dev_eui.get(normalize_dev_eui(dev_eui))

    def close_all(self) -> None:
        """Close every session and empty the table (shutdown)."""
        for device in self.list_devices():
            self._remove(device)
            device.session.close()
        logger.debug("Closed all device sessions")

    def _remove(self, device: Device) -> None:
        self._by_token.pop(device.identifier.access_token, None)
        self._by_dev_eui.pop(normalize_dev_eui(device.identifier.dev_eui), None)

"""Failure types raised by the bridge."""
from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge failures."""


class DecodeError(BridgeError):
    """A message payload could not be decoded."""


class BrokerError(BridgeError):
    """An MQTT broker refused or failed an operation."""


class EnqueueError(BridgeError):
    """A downlink enqueue RPC failed."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class RegistryError(BridgeError):
    """Base class for device registry failures."""


class DuplicateDevice(RegistryError):
    def __init__(self, field: str, value: str) -> None:
        super().__init__(f"Device with {field} {value} is already registered")
        self.field = field
        self.value = value


class DeviceNotFound(RegistryError):
    def __init__(self, access_token: str) -> None:
        super().__init__(f"No device with access token {access_token}")
        self.access_token = access_token

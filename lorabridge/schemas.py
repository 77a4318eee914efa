"""Request body models for the HTTP control plane."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import DeviceIdentifier


class DeviceIdentifierBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    accessToken: str = Field(min_length=1, pattern=r"\S")
    devEUI: str = Field(min_length=1, pattern=r"\S")

    def to_identifier(self) -> DeviceIdentifier:
        return DeviceIdentifier(access_token=self.accessToken, dev_eui=self.devEUI)


class AddDeviceRequest(BaseModel):
    deviceIdentifier: DeviceIdentifierBody


class DeleteDeviceRequest(BaseModel):
    accessToken: str = Field(min_length=1, pattern=r"\S")


def format_validation_errors(error: ValidationError) -> list[dict[str, Any]]:
    """Flatten pydantic errors to ``{"path", "message"}`` entries."""
    return [
        {
            'path': ".".join(str(part) for part in issue['loc']),
            'message': issue['msg'],
        }
        for issue in error.errors()
    ]

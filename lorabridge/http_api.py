"""HTTP control plane: add, delete and list devices."""
from __future__ import annotations

import logging
from typing import Any, TYPE_CHECKING

from flask import Blueprint, Flask, current_app, jsonify, request
from pydantic import BaseModel, ValidationError

from .errors import DeviceNotFound, DuplicateDevice
from .schemas import AddDeviceRequest, DeleteDeviceRequest, format_validation_errors

if TYPE_CHECKING:
    from .dispatcher import Dispatcher
    from .registry import DeviceRegistry

logger = logging.getLogger(__name__)

devices_bp = Blueprint('devices', __name__)


def _registry() -> DeviceRegistry:
    return current_app.extensions['lorabridge.registry']


def _dispatcher() -> Dispatcher:
    return current_app.extensions['lorabridge.dispatcher']


def _validate(model: type[BaseModel]) -> tuple[Any, Any]:
    """Validate the JSON body; returns (parsed, None) or (None, error response)."""
    body = request.get_json(silent=True)
    try:
        return model.model_validate(body), None
    except ValidationError as e:
        errors = format_validation_errors(e)
        logger.debug(f"[HTTP] Validation failed for {request.path}: {errors}")
        return None, (jsonify({'error': "Validation failed", 'details': errors}), 400)


@devices_bp.route('/health', methods=['GET'])
def health():
    return "Healthy", 200


@devices_bp.route('/devices', methods=['GET'])
def list_devices():
    registry = _registry()
    devices = _dispatcher().call(lambda: [device.to_dict() for device in registry.list_devices()])
    return jsonify(devices)


@devices_bp.route('/add-device', methods=['POST'])
def add_device():
    body, error = _validate(AddDeviceRequest)
    if error:
        return error

    identifier = body.deviceIdentifier.to_identifier()
    try:
        _dispatcher().call(_registry().register, identifier)
    except DuplicateDevice as e:
        logger.warning(f"[HTTP] {e}")
        return jsonify({'error': str(e)}), 409
    except Exception as e:
        logger.exception(f"[HTTP] Failed to add device {identifier.dev_eui}: {e}")
        return jsonify({'error': "Internal server error"}), 500

    return "", 201


@devices_bp.route('/delete-device', methods=['DELETE'])
def delete_device():
    body, error = _validate(DeleteDeviceRequest)
    if error:
        return error

    try:
        _dispatcher().call(_registry().deregister, body.accessToken)
    except DeviceNotFound as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        logger.exception(f"[HTTP] Failed to delete device: {e}")
        return jsonify({'error': "Internal server error"}), 500

    return "", 204


def create_app(registry: DeviceRegistry, dispatcher: Dispatcher) -> Flask:
    """Build the Flask app serving the control plane for ``registry``."""
    app = Flask(__name__)
    app.extensions['lorabridge.registry'] = registry
    app.extensions['lorabridge.dispatcher'] = dispatcher
    app.register_blueprint(devices_bp)
    return app

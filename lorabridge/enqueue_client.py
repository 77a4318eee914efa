"""ChirpStack downlink enqueue over gRPC."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, TYPE_CHECKING

import grpc
from chirpstack_api import api

from .errors import EnqueueError

if TYPE_CHECKING:
    from .settings import ChirpstackSettings

logger = logging.getLogger(__name__)

# Receives (error, item_id); exactly one of them is None.
EnqueueCallback = Callable[[EnqueueError | None, str | None], None]


class EnqueueClient(ABC):
    """Abstract interface for submitting downlink queue items."""

    @abstractmethod
    def enqueue(self, dev_eui: str, payload: bytes, callback: EnqueueCallback) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class ChirpstackEnqueueClient(EnqueueClient):
    """Enqueues unconfirmed downlinks through ``DeviceService.Enqueue``.

    One channel is opened at construction and shared by every call. Calls are
    non-blocking; the result is delivered to the callback on a grpc thread.
    """

    def __init__(self, settings: ChirpstackSettings, stub: Any = None, channel: grpc.Channel | None = None) -> None:
        self._fport = settings.downlink_fport
        self._timeout = settings.enqueue_timeout
        self._metadata = (("authorization", f"Bearer {settings.api_key}"),)

        if stub is None:
            if channel is None:
                if settings.api_tls:
                    channel = grpc.secure_channel(settings.api_server, grpc.ssl_channel_credentials())
                else:
                    channel = grpc.insecure_channel(settings.api_server)
            stub = api.DeviceServiceStub(channel)
        self._channel = channel
        self._stub = stub
        logger.debug(f"[CHIRPSTACK] Enqueue client for {settings.api_server} (fPort={self._fport}, tls={settings.api_tls})")

    def build_request(self, dev_eui: str, payload: bytes) -> api.EnqueueDeviceQueueItemRequest:
        req = api.EnqueueDeviceQueueItemRequest()
        req.queue_item.dev_eui = dev_eui
        req.queue_item.f_port = self._fport
        req.queue_item.confirmed = False
        req.queue_item.data = payload
        return req

    def enqueue(self, dev_eui: str, payload: bytes, callback: EnqueueCallback) -> None:
        req = self.build_request(dev_eui, payload)
        try:
            future = self._stub.Enqueue.future(req, metadata=self._metadata, timeout=self._timeout)
        except Exception as e:
            callback(EnqueueError(f"Enqueue call failed: {e}"), None)
            return
        future.add_done_callback(lambda f: self._on_done(f, callback))

    def close(self) -> None:
        if self._channel is not None:
            self._channel.close()
            self._channel = None

    @staticmethod
    def _on_done(future: Any, callback: EnqueueCallback) -> None:
        try:
            resp = future.result()
        except grpc.RpcError as e:
            code = e.code() if hasattr(e, 'code') else None
            details = e.details() if hasattr(e, 'details') else str(e)
            name = code.name if code is not None else None
            callback(EnqueueError(f"{name}: {details}", code=name), None)
            return
        except grpc.FutureCancelledError:
            callback(EnqueueError("Enqueue call cancelled", code="CANCELLED"), None)
            return
        callback(None, resp.id)

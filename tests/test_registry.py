"""Tests for the device registry."""
from __future__ import annotations

import pytest

from lorabridge.errors import DeviceNotFound, DuplicateDevice
from lorabridge.models import DeviceIdentifier
from lorabridge.registry import DeviceRegistry
from lorabridge.session import SessionState
from tests.fakes import drain


D1 = DeviceIdentifier(access_token="token-1", dev_eui="D1")
D2 = DeviceIdentifier(access_token="token-2", dev_eui="D2")


class TestDeviceIdentifier:
    def test_rejects_empty_token(self):
        with pytest.raises(ValueError):
            DeviceIdentifier(access_token="", dev_eui="D1")

    def test_rejects_empty_dev_eui(self):
        with pytest.raises(ValueError):
            DeviceIdentifier(access_token="t", dev_eui="")

    def test_rejects_blank_dev_eui(self):
        with pytest.raises(ValueError):
            DeviceIdentifier(access_token="t", dev_eui="   ")

    def test_to_dict(self):
        assert D1.to_dict() == {"accessToken": "token-1", "devEUI": "D1"}


class TestRegister:
    def test_find_after_register(self, bridge):
        device = bridge.registry.register(D1)
        assert bridge.registry.find_by_dev_eui("D1") is device
        assert device.identifier == D1

    def test_lookup_is_case_insensitive(self, bridge):
        device = bridge.registry.register(DeviceIdentifier("t", "0A0B0C0D0E0F1011"))
        assert bridge.registry.find_by_dev_eui("0a0b0c0d0e0f1011") is device

    def test_starts_session(self, bridge, client_factory):
        bridge.registry.register(D1)
        client = client_factory.by_username("token-1")[0]
        assert client.connect_calls == [("tb.local", 1883, 60)]
        assert client.loop_running is True
        assert client.client_id == "tb_D1"

    def test_duplicate_token_rejected(self, bridge):
        bridge.registry.register(D1)
        with pytest.raises(DuplicateDevice):
            bridge.registry.register(DeviceIdentifier("token-1", "D9"))
        assert len(bridge.registry) == 1

    def test_duplicate_dev_eui_rejected(self, bridge):
        bridge.registry.register(D1)
        with pytest.raises(DuplicateDevice):
            bridge.registry.register(DeviceIdentifier("token-9", "d1"))
        assert len(bridge.registry) == 1

    def test_list_preserves_order(self, bridge):
        bridge.registry.register(D2)
        bridge.registry.register(D1)
        assert [d.identifier for d in bridge.registry.list_devices()] == [D2, D1]

    def test_list_is_a_snapshot(self, bridge):
        bridge.registry.register(D1)
        snapshot = bridge.registry.list_devices()
        bridge.registry.register(D2)
        assert len(snapshot) == 1

    def test_failed_start_rolls_back(self):
        class BrokenSession:
            closed = False

            def start(self):
                raise OSError("boom")

            def close(self):
                self.closed = True

        session = BrokenSession()
        registry = DeviceRegistry(lambda identifier: session)
        with pytest.raises(OSError):
            registry.register(D1)
        assert len(registry) == 0
        assert registry.find_by_dev_eui("D1") is None
        assert session.closed is True


class TestDeregister:
    def test_removes_device(self, bridge):
        bridge.registry.register(D1)
        bridge.registry.deregister("token-1")
        assert bridge.registry.find_by_dev_eui("D1") is None
        assert "token-1" not in bridge.registry

    def test_closes_session(self, bridge, client_factory):
        device = bridge.registry.register(D1)
        bridge.registry.deregister("token-1")
        client = client_factory.by_username("token-1")[0]
        assert client.disconnect_calls == 1
        assert client.loop_running is False
        assert device.session.state is SessionState.CLOSED

    def test_unknown_token(self, bridge):
        bridge.registry.register(D1)
        with pytest.raises(DeviceNotFound) as exc:
            bridge.registry.deregister("nope")
        assert exc.value.access_token == "nope"
        assert len(bridge.registry) == 1

    def test_second_call_is_not_found(self, bridge):
        bridge.registry.register(D1)
        bridge.registry.deregister("token-1")
        with pytest.raises(DeviceNotFound):
            bridge.registry.deregister("token-1")

    def test_size_tracks_registrations(self, bridge):
        bridge.registry.register(D1)
        bridge.registry.register(D2)
        bridge.registry.deregister("token-1")
        assert len(bridge.registry.list_devices()) == 1

    def test_reregister_gets_fresh_session(self, bridge, client_factory, enqueue_client):
        first = bridge.registry.register(D1)
        old_client = client_factory.by_username("token-1")[0]
        old_client.simulate_connect()
        drain(bridge.state.dispatcher)

        bridge.registry.deregister("token-1")
        second = bridge.registry.register(D1)
        assert second.session is not first.session

        new_client = client_factory.by_username("token-1")[1]
        new_client.simulate_connect()
        drain(bridge.state.dispatcher)

        # Residual delivery on the old session is ignored
        old_client.deliver("v1/devices/me/attributes", '{"old":1}')
        new_client.deliver("v1/devices/me/attributes", '{"new":1}')
        drain(bridge.state.dispatcher)

        assert enqueue_client.calls == [("D1", b'{"topic":"v1/devices/me/attributes","data":{"new":1}}')]


class TestCloseAll:
    def test_closes_everything(self, bridge, client_factory):
        bridge.registry.register(D1)
        bridge.registry.register(D2)
        bridge.registry.close_all()
        assert len(bridge.registry) == 0
        assert all(c.disconnect_calls == 1 for c in client_factory.clients if c.username in ("token-1", "token-2"))

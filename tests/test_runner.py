"""Tests for runner startup and shutdown logic."""
from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

from lorabridge.models import DeviceIdentifier
from lorabridge.runner import _cleanup, handle_signal, load_client_version, run


class TestLoadClientVersion:
    def test_basic_version(self):
        assert load_client_version("1.0.0") == "cstotb/1.0.0"


class TestHandleSignal:
    def test_sets_exit(self, bridge):
        assert bridge.state.should_exit is False
        handle_signal(bridge.state, 15, None)
        assert bridge.state.should_exit is True


class TestCleanup:
    def test_closes_everything(self, bridge, client_factory, enqueue_client):
        bridge.registry.register(DeviceIdentifier("token-1", "D1"))
        bridge.state.dispatcher.start()
        stats_thread = threading.Thread(target=lambda: None)
        stats_thread.start()

        _cleanup(bridge.state, stats_thread)

        assert len(bridge.registry) == 0
        assert all(c.disconnect_calls == 1 for c in client_factory.clients)
        assert enqueue_client.closed is True
        assert bridge.state.should_exit is True


class TestRun:
    def test_run_until_exit(self, bridge, client_factory, enqueue_client):
        server = MagicMock()
        bridge.state.should_exit = True

        with patch("lorabridge.runner.make_server", return_value=server) as make_server:
            run(bridge.state)

        make_server.assert_called_once()
        host, port, _app = make_server.call_args.args
        assert (host, port) == ("127.0.0.1", 3000)
        server.shutdown.assert_called_once()
        listener_client = next(c for c in client_factory.clients if c.name == "CHIRPSTACK")
        assert listener_client.connect_calls == [("cs.local", 1883, 60)]
        assert enqueue_client.closed is True

    def test_http_bind_failure_exits(self, bridge, enqueue_client):
        with patch("lorabridge.runner.make_server", side_effect=OSError("address in use")):
            run(bridge.state)
        assert bridge.state.should_exit is True
        assert enqueue_client.closed is True

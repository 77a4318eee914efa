"""Shared fixtures."""

import pytest

from lorabridge import LoraBridge
from tests.fakes import FakeClientFactory, FakeEnqueueClient, make_config


@pytest.fixture(autouse=True)
def _no_env_overrides(monkeypatch):
    monkeypatch.delenv("CHIRPSTACK_API_KEY", raising=False)
    monkeypatch.delenv("PORT", raising=False)


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def enqueue_client():
    return FakeEnqueueClient()


@pytest.fixture
def bridge(client_factory, enqueue_client):
    """LoraBridge wired to fakes; the dispatcher thread is not started."""
    return LoraBridge(make_config(), version="1.0.0", enqueue_client=enqueue_client, client_factory=client_factory)

"""Shared fixtures: every test runs against an in-memory journal store."""

import pytest

from sdjournal.connection import Connection
from sdjournal.store import MemoryStore, reset_default_memory_store
from sdjournal.utils.config import reset_config


@pytest.fixture(autouse=True)
def memory_backend(monkeypatch):
    """Route the configured backend to the in-memory store."""
    monkeypatch.setenv("SDJOURNAL_BACKEND", "memory")
    monkeypatch.setenv("SDJOURNAL_WAIT_TIMEOUT_MS", "50")
    monkeypatch.delenv("SDJOURNAL_CONFIG", raising=False)
    monkeypatch.delenv("SDJOURNAL_STRICT_AFFINITY", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FORMAT", raising=False)
    reset_config()
    reset_default_memory_store()
    yield
    reset_config()
    reset_default_memory_store()


@pytest.fixture
def store():
    """Create an empty store."""
    return MemoryStore()


@pytest.fixture
def conn(store):
    """Open a connection to the test store."""
    connection = Connection.open(store=store)
    yield connection
    connection.close()

"""Shared test fixtures."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

import laptimer.main as main_module
from laptimer.config import AppConfig
from laptimer.storage.memory_storage import InMemoryKeyValueStore


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture(autouse=True)
def _init_server(store):
    """Initialize server singletons for every test, using an in-memory store."""
    config = AppConfig()
    config.storage.backend = "memory"
    config.logging.level = "warning"

    main_module.init_components(config, store=store)

    yield

    # Cleanup
    main_module._config = None
    main_module._stats = None
    main_module._repository = None
    main_module._tracker = None


@pytest.fixture
async def client():
    from laptimer.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

import os
from datetime import datetime, timezone

import pytest

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT", "10000/minute")

from fleetops.services.operations import FleetOperations  # noqa: E402
from fleetops.store.memory_provider import InMemoryRecordStore  # noqa: E402


FIXED_NOW = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def ops(store):
    operations = FleetOperations(store, clock=lambda: FIXED_NOW)
    yield operations
    operations.close()


@pytest.fixture
def client(ops):
    from fastapi.testclient import TestClient
    from fleetops.main import app

    previous = app.state.operations
    app.state.operations = ops
    with TestClient(app) as test_client:
        yield test_client
    app.state.operations = previous

import asyncio

import pytest
from fastapi.testclient import TestClient

from portal.services.file_storage import FileStorageService
from portal.store.memory import InMemoryDocumentStore
from portal.utils.auth import create_access_token
from tests.factories import CONSULTANT_ID, FakeClock, consultant_doc


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def storage(tmp_path):
    return FileStorageService(base_dir=str(tmp_path / "uploads"), static_url_prefix="/static")


@pytest.fixture
def seed(store):
    """Write documents from synchronous tests"""
    def _seed(collection, doc_id, data):
        asyncio.run(store.set(collection, doc_id, data))
    return _seed


@pytest.fixture
def token():
    return create_access_token(data={"sub": CONSULTANT_ID})


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(store, storage, seed):
    from portal.api.v1.profile import get_file_storage
    from portal.main import app

    seed("consultants", CONSULTANT_ID, consultant_doc())
    app.state.store = store
    app.dependency_overrides[get_file_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.store = None

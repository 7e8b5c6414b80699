"""Fixtures for API integration tests."""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from wialon_sync.api.deps import get_db_engine, get_wialon_client_factory
from wialon_sync.api.main import create_app
from wialon_sync.db.engine import get_session


def make_wialon_mock(resources=None, units=None):
    client = AsyncMock()
    client.login = AsyncMock(return_value="sid")
    client.get_clients = AsyncMock(return_value=resources or [{"id": "W100", "nm": "Acme", "crt": 55}])
    client.get_objects = AsyncMock(return_value=units or [])
    client.search_item = AsyncMock(return_value={"nm": "acme_admin"})
    return client


@pytest.fixture(name="wialon")
def wialon_fixture():
    """The mock Wialon client handed to the /start route."""
    return make_wialon_mock()


@pytest.fixture(name="client")
def client_fixture(engine, wialon):
    app = create_app()

    def override_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_db_engine] = lambda: engine
    app.dependency_overrides[get_wialon_client_factory] = lambda: (lambda: wialon)
    with TestClient(app) as c:
        yield c

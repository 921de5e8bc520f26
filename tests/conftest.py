"""
Shared fixtures.

Procore is replaced by an httpx.MockTransport serving canned JSON, and every
test gets its own sqlite database under tmp_path.
"""

import os
import tempfile

# main.py creates its tables on import; keep them out of the working directory
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(tempfile.mkdtemp(), 'lv_inventory_test.db')}"
)

from datetime import timedelta

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from lv_inventory_service import database, models
from lv_inventory_service.inventory import InventoryManager
from lv_inventory_service.procore import ProcoreClient
from lv_inventory_service.schemas import ProcoreSession, utcnow

BASE_URL = "https://procore.test/rest/v1.0"
BASE_PATH = "/rest/v1.0"


class FakeProcore:
    """Canned Procore responses keyed by method and path; records every request"""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, json=None, status_code=200, error=None):
        self.routes[(method, BASE_PATH + path)] = (status_code, json, error)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"errors": "not found"})

        status_code, body, error = route
        if error is not None:
            raise error(f"{request.method} {request.url.path} failed", request=request)
        return httpx.Response(status_code, json=body)

    def calls(self, method, path):
        return [
            request for request in self.requests
            if request.method == method and request.url.path == BASE_PATH + path
        ]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def session_factory(tmp_path):
    engine = database.make_engine(f"sqlite:///{tmp_path / 'inventory.db'}")
    models.Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def fake_procore():
    return FakeProcore()


@pytest.fixture
def procore(fake_procore):
    return ProcoreClient(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://testserver/auth/callback",
        base_url=BASE_URL,
        transport=httpx.MockTransport(fake_procore.handler),
    )


@pytest.fixture
def session():
    return ProcoreSession(
        access_token="access-token",
        refresh_token="refresh-token",
        expires_at=utcnow() + timedelta(hours=1),
    )


@pytest.fixture
def manager(procore, session_factory):
    return InventoryManager("42", procore, session_factory)

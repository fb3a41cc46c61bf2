import pytest
from fastapi.testclient import TestClient
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# main builds the gateway at import; never talk to a real backend from tests
os.environ["GEMINI_API_KEY"] = "test-key"

from main import app
from app.routers.tailor_router import get_gateway, get_store
from app.services.orchestrator import SessionStore


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def use_gateway():
    """Install a fake gateway for router tests: use_gateway(FakeGateway(...))."""
    def install(gateway):
        app.dependency_overrides[get_gateway] = lambda: gateway
        return gateway
    return install
